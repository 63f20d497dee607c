"""
predictions.py — Prediction Store Accessor & Aggregates
Cattle Breed Recognition API
"""

from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from loguru import logger
from app.models.db_models import Prediction
from app.utils import page_offset


_NEWEST_FIRST = (Prediction.created_at.desc(), Prediction.id.desc())


async def create_prediction(
    db: AsyncSession,
    user_id: int,
    breed_name: str,
    confidence: float,
    processing_time: float,
    metadata: Optional[Dict[str, Any]] = None,
) -> Prediction:
    prediction = Prediction(
        user_id=user_id,
        breed_name=breed_name,
        confidence=confidence,
        processing_time=processing_time,
        extra_metadata=metadata or {},
    )
    db.add(prediction)
    await db.commit()
    await db.refresh(prediction)
    logger.info(
        f"Prediction {prediction.id} stored for user {user_id}: "
        f"{breed_name} ({confidence:.3f}) in {processing_time:.2f}s"
    )
    return prediction


async def get_user_prediction(db: AsyncSession, prediction_id: int, user_id: int) -> Optional[Prediction]:
    """Fetch a prediction only if it belongs to ``user_id``."""
    result = await db.execute(
        select(Prediction)
        .options(selectinload(Prediction.user))
        .where(Prediction.id == prediction_id, Prediction.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def list_predictions(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
    user_id: Optional[int] = None,
    with_user: bool = False,
) -> Tuple[List[Prediction], int]:
    """Page of predictions newest first (optionally one user's), plus the total."""
    filters = [Prediction.user_id == user_id] if user_id is not None else []
    total = await db.scalar(select(func.count(Prediction.id)).where(*filters))

    q = select(Prediction).where(*filters).order_by(*_NEWEST_FIRST)
    if with_user:
        q = q.options(selectinload(Prediction.user))
    q = q.offset(page_offset(page, limit)).limit(limit)
    rows = (await db.execute(q)).scalars().all()
    return list(rows), total or 0


async def prediction_stats(db: AsyncSession, user_id: Optional[int] = None) -> Dict:
    """Totals, mean confidence, top-10 breeds and five newest rows."""
    filters = [Prediction.user_id == user_id] if user_id is not None else []

    total = await db.scalar(select(func.count(Prediction.id)).where(*filters)) or 0
    avg_conf = await db.scalar(select(func.avg(Prediction.confidence)).where(*filters))

    breed_count = func.count(Prediction.id).label("count")
    breeds = (
        await db.execute(
            select(Prediction.breed_name, breed_count)
            .where(*filters)
            .group_by(Prediction.breed_name)
            .order_by(breed_count.desc(), Prediction.breed_name)
            .limit(10)
        )
    ).all()

    recent = (
        await db.execute(select(Prediction).where(*filters).order_by(*_NEWEST_FIRST).limit(5))
    ).scalars().all()

    return {
        "total_predictions": total,
        "average_confidence": float(avg_conf) if avg_conf is not None else 0.0,
        "breed_distribution": [{"breed": name, "count": count} for name, count in breeds],
        "recent_predictions": list(recent),
    }
