from pydantic import BaseModel, EmailStr

from payapi.models.user import UserRole


class User(BaseModel):
    id: int
    email: EmailStr
    nickname: str
    role: UserRole = UserRole.USER
    is_active: bool = True

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin(self.role)
