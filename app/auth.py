"""
auth.py — Request Authorization Gate & Role Checks
Cattle Breed Recognition API
"""

from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from app.classifier import ClassifierClient
from app.database import get_db
from app.errors import Forbidden, NotFound, ServiceUnavailable, Unauthenticated
from app.identity import InvalidCredential, VerifiedIdentity
from app.models.user_model import User, UserRole
from app.users import get_user_by_subject


_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    subject_id: str
    user_id: int
    email: str
    role: UserRole


# ── Injected process-wide handles ─────────────────────────────────────────────
def get_identity_verifier(request: Request):
    """The configured identity verifier, or None when authentication is disabled."""
    return getattr(request.app.state, "identity", None)


def get_classifier(request: Request) -> ClassifierClient:
    return request.app.state.classifier


# ── Credential verification ───────────────────────────────────────────────────
async def verify_bearer(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    verifier=Depends(get_identity_verifier),
) -> VerifiedIdentity:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Access token required")
    if verifier is None:
        raise ServiceUnavailable("Authentication is not configured")
    try:
        return await verifier.verify(credentials.credentials)
    except InvalidCredential:
        raise Unauthenticated("Invalid or expired token")


async def get_current_user(
    identity: VerifiedIdentity = Depends(verify_bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await get_user_by_subject(db, identity.subject_id)
    if not user:
        raise NotFound("User not found in database")
    if not user.is_active:
        raise Forbidden("User account is deactivated")
    return user


async def get_auth_context(
    identity: VerifiedIdentity = Depends(verify_bearer),
    user: User = Depends(get_current_user),
) -> AuthContext:
    return AuthContext(
        subject_id=identity.subject_id,
        user_id=user.id,
        email=user.email,
        role=user.role,
    )


# ── Role checks ───────────────────────────────────────────────────────────────
def require_role(floor: UserRole):
    """Dependency accepting ``floor`` or any more privileged role."""
    async def check(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if not ctx.role.meets(floor):
            raise Forbidden(
                "Insufficient permissions",
                required=[r.value for r in UserRole.at_least(floor)],
                current=ctx.role.value,
            )
        return ctx
    return check


require_farmer = require_role(UserRole.FARMER)
require_officer = require_role(UserRole.OFFICER)
require_admin = require_role(UserRole.ADMIN)
