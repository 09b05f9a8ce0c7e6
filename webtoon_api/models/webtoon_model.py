import uuid

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from webtoon_api.database import Base, table_args


class Webtoon(Base):
    __tablename__ = "webtoons"
    __table_args__ = table_args()

    # Generated client-side so storage paths are known before the row exists
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, default="")
    tags = Column(JSON, nullable=False, default=list)

    cover_image_path = Column(String)
    banner_image_path = Column(String)

    views = Column(Integer, nullable=False, default=0)
    show_public_views = Column(Boolean, nullable=False, default=False)
    is_banner = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    chapters = relationship(
        "Chapter",
        back_populates="webtoon",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Chapter.number",
    )
