from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=8)


class UserLogin(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: int
    username: str
    role: str
    bio: Optional[str] = None
    avatar_path: Optional[str] = None

    model_config = {
        "from_attributes": True
    }


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class RoleChange(BaseModel):
    role: str


class RoleIn(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None


class RoleOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class NotificationOut(BaseModel):
    id: int
    message: str
    created_at: Optional[datetime] = None
    webtoon_id: Optional[str] = None
    chapter_id: Optional[int] = None
    webtoon_title: Optional[str] = None
    is_read: bool = False


class NotificationCount(BaseModel):
    count: int


class ReadChaptersOut(BaseModel):
    chapter_ids: List[int] = []


class FavoriteState(BaseModel):
    is_favorite: bool
