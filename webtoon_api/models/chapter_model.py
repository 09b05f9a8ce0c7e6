from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from webtoon_api.database import Base, table_args, fk


class Chapter(Base):
    __tablename__ = "chapters"
    __table_args__ = table_args(
        UniqueConstraint("webtoon_id", "number", name="uq_chapters_webtoon_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    webtoon_id = Column(
        String(36),
        ForeignKey(fk("webtoons.id"), ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Float so "10.5" style chapters can be slotted in between
    number = Column(Float, nullable=False)
    thumbnail_path = Column(String, nullable=True)
    views = Column(Integer, nullable=False, default=0)
    required_roles = Column(JSON, nullable=False, default=list)  # empty = public
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    webtoon = relationship("Webtoon", back_populates="chapters")
    pages = relationship(
        "Page",
        back_populates="chapter",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Page.page_number",
    )


class Page(Base):
    __tablename__ = "pages"
    __table_args__ = table_args(
        UniqueConstraint("chapter_id", "page_number", name="uq_pages_chapter_page_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    chapter_id = Column(
        Integer,
        ForeignKey(fk("chapters.id"), ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    page_number = Column(Integer, nullable=False)  # 1-based reading order
    image_path = Column(String, nullable=False)

    chapter = relationship("Chapter", back_populates="pages")
