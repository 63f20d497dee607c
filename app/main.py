"""
main.py — FastAPI Application Entry Point
Cattle Breed Recognition API
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, BackgroundTasks, File, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from loguru import logger
from datetime import datetime, timezone
from typing import Optional
import sys
import time

from app.config import settings
from app.database import get_db, init_db, close_db
from app.models.user_model import User, UserRole
from app.auth import (
    AuthContext, get_auth_context, get_classifier, get_current_user, get_identity_verifier,
    require_admin, require_farmer, require_officer, verify_bearer,
)
from app.classifier import ClassifierClient
from app.errors import Forbidden, InvalidRequest, NotFound, ServiceUnavailable, register_exception_handlers
from app.identity import VerifiedIdentity, init_identity, sync_role
from app.predictions import create_prediction, get_user_prediction, list_predictions, prediction_stats
from app.users import (
    create_user, deactivate_user, get_user_by_subject, require_user, search_users,
    update_profile, update_role, user_stats,
)
from app.utils import (
    AuthResult, BreedPredictionOut, PredictionBrief, PredictionOut, PredictionWithUser,
    ProfileUpdate, RoleChange, RoleUpdate, UserBrief, UserListItem, UserOut,
    envelope, paginate,
)


P = settings.API_PREFIX


# ── Logging ───────────────────────────────────────────────────────────────────
def configure_logging() -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}",
    )


# ── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    app.state.identity = init_identity(settings)
    app.state.classifier = ClassifierClient(settings.CLASSIFIER_API_URL)
    await init_db()
    logger.info(f"API base path: {P} | classifier: {settings.CLASSIFIER_API_URL}")
    yield
    await close_db()
    logger.info("Application shutdown complete.")


# ── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Cattle breed recognition backend: identity-provider sign-in, user and "
        "prediction records, and image classification via the ML scoring service."
    ),
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app, P)


@app.middleware("http")
async def access_log(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} → {response.status_code} ({elapsed_ms:.1f}ms)")
    return response


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH
# ═══════════════════════════════════════════════════════════════════════════════
@app.get("/health", tags=["System"])
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning(f"Health check: database unreachable ({e.__class__.__name__})")
        database = "unavailable"
    return {
        "status": "OK",
        "message": f"{settings.APP_NAME} is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
        "database": database,
        "authentication": "enabled" if get_identity_verifier(request) else "disabled",
    }


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH
# ═══════════════════════════════════════════════════════════════════════════════
def _auth_result(user: User, is_new_user: bool) -> dict:
    return AuthResult(**UserBrief.model_validate(user).model_dump(), is_new_user=is_new_user).dump()


@app.post(f"{P}/auth/login", tags=["Auth"])
@app.post(f"{P}/auth/register", tags=["Auth"])
async def authenticate_or_register(
    response: Response,
    background_tasks: BackgroundTasks,
    identity: VerifiedIdentity = Depends(verify_bearer),
    verifier=Depends(get_identity_verifier),
    db: AsyncSession = Depends(get_db),
):
    """Create the local user on first sign-in, otherwise log the user in."""
    if not identity.email:
        raise InvalidRequest("Email is required")

    user = await get_user_by_subject(db, identity.subject_id)
    if user is None:
        user, created = await create_user(db, identity.subject_id, identity.email, identity.display_name)
        if created:
            background_tasks.add_task(sync_role, verifier, user.firebase_uid, user.role)
            response.status_code = 201
            return envelope(_auth_result(user, True), "User registered successfully")

    if not user.is_active:
        raise Forbidden("Account is deactivated")
    return envelope(_auth_result(user, False), "Login successful")


@app.post(f"{P}/auth/verify-token", tags=["Auth"])
async def verify_token(
    identity: VerifiedIdentity = Depends(verify_bearer),
    db: AsyncSession = Depends(get_db),
):
    user = await get_user_by_subject(db, identity.subject_id)
    if not user:
        raise NotFound("User not found")
    if not user.is_active:
        raise Forbidden("Account is deactivated")
    return envelope({**UserBrief.model_validate(user).dump(), "uid": identity.subject_id})


@app.post(f"{P}/auth/logout", tags=["Auth"])
async def logout(ctx: AuthContext = Depends(get_auth_context)):
    # Tokens live on the client; nothing to revoke server-side.
    logger.info(f"User {ctx.user_id} logged out.")
    return envelope(message="Logout successful")


@app.post(f"{P}/auth/refresh-token", tags=["Auth"])
async def refresh_token(ctx: AuthContext = Depends(get_auth_context)):
    return envelope(message="Token refresh is handled by the identity provider SDK on the client")


@app.get(f"{P}/auth/me", tags=["Auth"])
async def get_me(user: User = Depends(get_current_user)):
    return envelope(UserOut.model_validate(user).dump())


# ═══════════════════════════════════════════════════════════════════════════════
# USERS
# ═══════════════════════════════════════════════════════════════════════════════
@app.get(f"{P}/users/profile", tags=["Users"])
async def get_profile(user: User = Depends(get_current_user)):
    return envelope(UserOut.model_validate(user).dump())


@app.put(f"{P}/users/profile", tags=["Users"])
@app.put(f"{P}/auth/profile", tags=["Auth"])
async def update_own_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await update_profile(db, user, name=payload.name, profile_image=payload.profile_image)
    return envelope(UserOut.model_validate(user).dump(), "Profile updated successfully")


def _user_rows(rows) -> list:
    return [UserListItem.model_validate(u).model_copy(update={"prediction_count": n}).dump() for u, n in rows]


@app.get(f"{P}/users", tags=["Users"])
async def list_all_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    ctx: AuthContext = Depends(require_officer),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await search_users(db, page=page, limit=limit)
    data = _user_rows(rows)
    return envelope(data, pagination=paginate(page, limit, total))


@app.get(f"{P}/users/search", tags=["Users"])
async def search_all_users(
    query: Optional[str] = Query(None, max_length=200),
    role: Optional[str] = Query(None, max_length=20),
    active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    ctx: AuthContext = Depends(require_officer),
    db: AsyncSession = Depends(get_db),
):
    try:
        role_filter = UserRole(role.strip().upper()) if role else None
    except ValueError:
        raise InvalidRequest(f"role must be one of: {', '.join(r.value for r in UserRole)}")
    rows, total = await search_users(db, page=page, limit=limit, query=query, role=role_filter, active=active)
    data = _user_rows(rows)
    return envelope(data, pagination=paginate(page, limit, total))


@app.get(f"{P}/users/stats", tags=["Users"])
async def get_user_stats(ctx: AuthContext = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    stats = await user_stats(db)
    return envelope({
        "totalUsers": stats["total_users"],
        "activeUsers": stats["active_users"],
        "inactiveUsers": stats["inactive_users"],
        "roleDistribution": stats["role_distribution"],
        "recentUsers": [UserOut.model_validate(u).dump() for u in stats["recent_users"]],
    })


@app.get(f"{P}/users/{{user_id}}", tags=["Users"])
async def get_user(user_id: int, ctx: AuthContext = Depends(require_officer), db: AsyncSession = Depends(get_db)):
    user = await require_user(db, user_id)
    return envelope(UserOut.model_validate(user).dump())


@app.put(f"{P}/users/{{user_id}}/role", tags=["Users"])
async def change_user_role(
    user_id: int,
    payload: RoleUpdate,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(require_admin),
    verifier=Depends(get_identity_verifier),
    db: AsyncSession = Depends(get_db),
):
    user = await require_user(db, user_id)
    user = await update_role(db, user, payload.role)
    background_tasks.add_task(sync_role, verifier, user.firebase_uid, user.role)
    return envelope(RoleChange.model_validate(user).dump(), "User role updated successfully")


@app.delete(f"{P}/users/{{user_id}}", tags=["Users"])
async def deactivate(user_id: int, ctx: AuthContext = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    if user_id == ctx.user_id:
        raise InvalidRequest("Cannot deactivate your own account")
    user = await require_user(db, user_id)
    await deactivate_user(db, user)
    return envelope(message="User deactivated successfully")


# ═══════════════════════════════════════════════════════════════════════════════
# PREDICTIONS
# ═══════════════════════════════════════════════════════════════════════════════
@app.post(f"{P}/predictions/breed", tags=["Predictions"])
async def predict_breed(
    image: Optional[UploadFile] = File(None),
    ctx: AuthContext = Depends(require_farmer),
    classifier: ClassifierClient = Depends(get_classifier),
    db: AsyncSession = Depends(get_db),
):
    """
    Classify an uploaded cattle image and store the result.

    Steps: validate upload → probe classifier liveness → score → persist.
    Nothing is written unless scoring succeeds.
    """
    if image is None or not image.filename:
        raise InvalidRequest("Image file is required")
    content_type = (image.content_type or "").lower()
    if content_type not in settings.ALLOWED_IMAGE_TYPES:
        raise InvalidRequest("Invalid file type. Only JPEG, PNG, and WebP are allowed.")
    data = await image.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise InvalidRequest(f"File too large. Maximum size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB")
    if not data:
        raise InvalidRequest("Image file is empty")

    if not await classifier.is_healthy():
        raise ServiceUnavailable("Prediction service is currently unavailable. Please try again later.")

    started = time.perf_counter()
    result = await classifier.predict(data, image.filename, content_type)
    elapsed = time.perf_counter() - started

    prediction = await create_prediction(
        db,
        user_id=ctx.user_id,
        breed_name=result.breed_name,
        confidence=result.confidence,
        processing_time=elapsed,
        metadata={
            "original_filename": image.filename,
            "file_size": len(data),
            "mime_type": content_type,
            "classifier_processing_time": result.processing_time,
            "additional_info": result.additional_info,
        },
    )
    return envelope(BreedPredictionOut(
        id=prediction.id,
        breed_name=prediction.breed_name,
        confidence=prediction.confidence,
        processing_time=elapsed,
        additional_info=result.additional_info,
        timestamp=prediction.created_at,
    ).dump())


# Breed catalogue is public reference data.
@app.get(f"{P}/predictions/breeds", tags=["Predictions"])
async def get_available_breeds(classifier: ClassifierClient = Depends(get_classifier)):
    breeds = await classifier.list_breeds()
    return envelope({"breeds": breeds})


@app.get(f"{P}/predictions/breeds/{{breed_name}}/info", tags=["Predictions"])
async def get_breed_info(breed_name: str, classifier: ClassifierClient = Depends(get_classifier)):
    return envelope(await classifier.breed_info(breed_name))


@app.get(f"{P}/predictions/history", tags=["Predictions"])
async def get_prediction_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await list_predictions(db, page=page, limit=limit, user_id=ctx.user_id)
    data = [PredictionOut.model_validate(p).dump() for p in rows]
    return envelope(data, pagination=paginate(page, limit, total))


@app.get(f"{P}/predictions/stats", tags=["Predictions"])
async def get_prediction_stats(ctx: AuthContext = Depends(get_auth_context), db: AsyncSession = Depends(get_db)):
    scope = None if ctx.role == UserRole.ADMIN else ctx.user_id
    stats = await prediction_stats(db, user_id=scope)
    return envelope({
        "totalPredictions": stats["total_predictions"],
        "averageConfidence": stats["average_confidence"],
        "breedDistribution": stats["breed_distribution"],
        "recentPredictions": [PredictionBrief.model_validate(p).dump() for p in stats["recent_predictions"]],
    })


@app.get(f"{P}/predictions/system/classifier-status", tags=["Predictions"])
async def classifier_status(
    ctx: AuthContext = Depends(require_officer),
    classifier: ClassifierClient = Depends(get_classifier),
):
    return envelope(await classifier.connection_status())


@app.get(f"{P}/predictions", tags=["Predictions"])
async def get_all_predictions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(require_officer),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await list_predictions(db, page=page, limit=limit, with_user=True)
    data = [PredictionWithUser.model_validate(p).dump() for p in rows]
    return envelope(data, pagination=paginate(page, limit, total))


@app.get(f"{P}/predictions/{{prediction_id}}", tags=["Predictions"])
async def get_prediction(
    prediction_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    prediction = await get_user_prediction(db, prediction_id, ctx.user_id)
    if not prediction:
        raise NotFound("Prediction not found")
    return envelope(PredictionWithUser.model_validate(prediction).dump())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
