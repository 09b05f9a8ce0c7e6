from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from webtoon_api.database import Base, table_args, fk


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = table_args()

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
        nullable=True,
    )
    chapter_id = Column(
        Integer,
        ForeignKey(fk("chapters.id"), ondelete="CASCADE"),
        nullable=True,
    )
    message = Column(String, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    webtoon = relationship("Webtoon", lazy="joined")
