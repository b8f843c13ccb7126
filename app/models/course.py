import uuid

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.session import Base
from app.models.common import UUIDMixin, CreatedAtMixin

SKILL_LEVELS = ("beginner", "intermediate", "advanced")

class Course(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "courses"
    title: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    weeks: Mapped[str] = mapped_column(String(20), nullable=False)
    tuition: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    minimum_skill: Mapped[str] = mapped_column(String(20), nullable=False)
    scholarship_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    bootcamp_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("bootcamps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    bootcamp = relationship("Bootcamp", back_populates="courses")
    user = relationship("User")
