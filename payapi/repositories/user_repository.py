from sqlalchemy.orm import Session

from payapi.models.user import User as UserModel
from payapi.repositories.base import BaseRepository
from payapi.schemas.user import User as UserSchema


class UserRepository(BaseRepository[UserModel, UserSchema]):
    def __init__(self, db: Session):
        super().__init__(UserModel, UserSchema, db)
