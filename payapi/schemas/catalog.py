from pydantic import BaseModel


class CreatorInfo(BaseModel):
    id: int
    user_id: int
    display_name: str
    is_adult: bool = False
    total_support: int = 0

    class Config:
        from_attributes = True


class PostInfo(BaseModel):
    id: int
    creator_id: int
    title: str
    price: int
    is_adult: bool = False

    class Config:
        from_attributes = True


class PlanInfo(BaseModel):
    id: int
    creator_id: int
    name: str
    price: int
    is_adult: bool = False
    is_active: bool = True
    subscriber_count: int = 0

    class Config:
        from_attributes = True
