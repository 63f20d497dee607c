"""
users.py — User Store Accessor
Cattle Breed Recognition API

Users are keyed by the identity provider's subject id (``firebase_uid``) and
are never hard-deleted: deactivation only clears ``is_active``.
"""

from typing import Dict, List, Optional, Tuple
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger
from app.errors import InvalidRequest, NotFound
from app.models.db_models import Prediction
from app.models.user_model import User, UserRole
from app.utils import page_offset


# ── Lookups ───────────────────────────────────────────────────────────────────
async def get_user_by_subject(db: AsyncSession, subject_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.firebase_uid == subject_id))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    return await db.get(User, user_id)


async def require_user(db: AsyncSession, user_id: int) -> User:
    user = await get_user_by_id(db, user_id)
    if not user:
        raise NotFound("User not found")
    return user


# ── Create ────────────────────────────────────────────────────────────────────
async def create_user(
    db: AsyncSession,
    subject_id: str,
    email: str,
    name: Optional[str] = None,
    role: UserRole = UserRole.FARMER,
) -> Tuple[User, bool]:
    """
    Insert a new user for a verified subject.

    Returns (user, created). If a concurrent request registered the same subject
    first, that row is returned with created=False.
    """
    user = User(firebase_uid=subject_id, email=email, name=name, role=role, is_active=True)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_user_by_subject(db, subject_id)
        if existing:
            return existing, False
        raise InvalidRequest("Email is already registered to another account")
    await db.refresh(user)
    logger.info(f"User {user.id} registered ({email}, role={user.role.value}).")
    return user, True


# ── Update ────────────────────────────────────────────────────────────────────
async def update_profile(
    db: AsyncSession,
    user: User,
    name: Optional[str] = None,
    profile_image: Optional[str] = None,
) -> User:
    if name is not None:
        user.name = name
    if profile_image is not None:
        user.profile_image = profile_image
    await db.commit()
    await db.refresh(user)
    return user


async def update_role(db: AsyncSession, user: User, role: UserRole) -> User:
    previous = user.role
    user.role = role
    await db.commit()
    await db.refresh(user)
    logger.info(f"User {user.id} role changed {previous.value} → {role.value}.")
    return user


async def deactivate_user(db: AsyncSession, user: User) -> User:
    user.is_active = False
    await db.commit()
    await db.refresh(user)
    logger.info(f"User {user.id} deactivated.")
    return user


# ── Listing ───────────────────────────────────────────────────────────────────
def _with_prediction_counts(q):
    counts = (
        select(Prediction.user_id, func.count(Prediction.id).label("n"))
        .group_by(Prediction.user_id)
        .subquery()
    )
    return (
        q.add_columns(func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.user_id == User.id)
    )


async def search_users(
    db: AsyncSession,
    page: int = 1,
    limit: int = 10,
    query: Optional[str] = None,
    role: Optional[UserRole] = None,
    active: Optional[bool] = None,
) -> Tuple[List[Tuple[User, int]], int]:
    """Page of (user, prediction_count) newest first, plus the unpaged total."""
    filters = []
    if query:
        pattern = f"%{query}%"
        filters.append(or_(User.email.ilike(pattern), User.name.ilike(pattern)))
    if role is not None:
        filters.append(User.role == role)
    if active is not None:
        filters.append(User.is_active == active)

    total = await db.scalar(select(func.count(User.id)).where(*filters))
    q = (
        _with_prediction_counts(select(User).where(*filters))
        .order_by(User.created_at.desc(), User.id.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )
    rows = (await db.execute(q)).all()
    return [(user, count) for user, count in rows], total or 0


# ── Stats ─────────────────────────────────────────────────────────────────────
async def user_stats(db: AsyncSession) -> Dict:
    total = await db.scalar(select(func.count(User.id))) or 0
    active = await db.scalar(select(func.count(User.id)).where(User.is_active.is_(True))) or 0
    by_role = (await db.execute(select(User.role, func.count(User.id)).group_by(User.role))).all()
    recent = (
        await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()).limit(5))
    ).scalars().all()
    return {
        "total_users": total,
        "active_users": active,
        "inactive_users": total - active,
        "role_distribution": {role.value.lower(): count for role, count in by_role},
        "recent_users": recent,
    }
