import uuid

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.session import Base
from app.models.common import UUIDMixin, CreatedAtMixin

class Review(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "reviews"
    # One review per user per bootcamp.
    __table_args__ = (UniqueConstraint("bootcamp_id", "user_id", name="uq_reviews_bootcamp_user"),)

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    text: Mapped[str] = mapped_column(String(500), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    bootcamp_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("bootcamps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    bootcamp = relationship("Bootcamp", back_populates="reviews")
    user = relationship("User")
