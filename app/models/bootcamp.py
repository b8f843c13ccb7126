import re
import uuid

from sqlalchemy import Boolean, Float, ForeignKey, Integer, JSON, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.session import Base
from app.models.common import UUIDMixin, CreatedAtMixin

_SLUG_RE = re.compile(r"[^a-z0-9]+")

def slugify(name: str) -> str:
    return _SLUG_RE.sub("-", name.lower()).strip("-")

class Bootcamp(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "bootcamps"
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(80), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    address: Mapped[str | None] = mapped_column(String(300), nullable=True)
    careers: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    photo: Mapped[str] = mapped_column(String(255), default="no-photo.jpg", nullable=False)
    housing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    job_assistance: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    job_guarantee: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    accept_gi: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Derived from courses/reviews by app.services.aggregates; never written from request payloads.
    average_cost: Mapped[int | None] = mapped_column(Integer, nullable=True)
    average_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    user = relationship("User")
    courses = relationship("Course", back_populates="bootcamp", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="bootcamp", cascade="all, delete-orphan")
