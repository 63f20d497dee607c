"""
user_model.py — User, Role & Identity ORM Model
Cattle Breed Recognition API
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SAEnum
from sqlalchemy.orm import relationship
from app.database import Base, utcnow
import enum


class UserRole(str, enum.Enum):
    """Privilege tiers, declared from least to most privileged."""
    FARMER = "FARMER"
    OFFICER = "OFFICER"
    ADMIN = "ADMIN"

    @property
    def rank(self) -> int:
        return list(UserRole).index(self)

    def meets(self, floor: "UserRole") -> bool:
        """True if this role is ``floor`` or any more privileged role."""
        return self.rank >= floor.rank

    @classmethod
    def at_least(cls, floor: "UserRole") -> list["UserRole"]:
        return [r for r in cls if r.meets(floor)]


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firebase_uid = Column(String(128), unique=True, nullable=False, index=True)
    email = Column(String(200), unique=True, nullable=False)
    name = Column(String(200))
    profile_image = Column(String(500))
    role = Column(SAEnum(UserRole), nullable=False, default=UserRole.FARMER)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    predictions = relationship(
        "Prediction",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="raise",
    )
