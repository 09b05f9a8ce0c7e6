from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from webtoon_api.config import USER_ROLE
from webtoon_api.database import Base, table_args, fk


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = table_args()

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = table_args()

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    # Role name, looked up on every request rather than trusted from the token
    role = Column(String, nullable=False, default=USER_ROLE)
    avatar_path = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserFavorite(Base):
    __tablename__ = "user_favorites"
    __table_args__ = table_args(
        UniqueConstraint("user_id", "webtoon_id", name="uq_user_favorites_user_webtoon"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey(fk("profiles.id"), ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    webtoon_id = Column(
        String(36),
        ForeignKey(fk("webtoons.id"), ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ChapterRead(Base):
    __tablename__ = "user_chapter_reads"
    __table_args__ = table_args(
        UniqueConstraint("user_id", "chapter_id", name="uq_user_chapter_reads_user_chapter"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey(fk("profiles.id"), ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chapter_id = Column(
        Integer,
        ForeignKey(fk("chapters.id"), ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    read_at = Column(DateTime(timezone=True), nullable=False)
