from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.models.common import UUIDMixin, CreatedAtMixin

ROLES = ("user", "publisher", "admin")

class User(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "users"
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")  # user|publisher|admin
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
