"""
db_models.py — SQLAlchemy ORM Models
Cattle Breed Recognition API
"""

from sqlalchemy import Column, Integer, Float, String, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from app.database import Base, utcnow


# ── Predictions ───────────────────────────────────────────────────────────────
class Prediction(Base):
    """Breed classification result, immutable once written."""
    __tablename__ = "predictions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    breed_name = Column(String(200), nullable=False, index=True)
    confidence = Column(Float, nullable=False)
    processing_time = Column(Float)                 # seconds, measured around the classifier call
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="predictions", lazy="raise")

    __table_args__ = (
        Index("idx_predictions_user_created", "user_id", "created_at"),
    )
