"""
identity.py — Identity Verification & Role Mirroring
Cattle Breed Recognition API

Bearer credentials are verified by an external identity provider:
  - firebase : Firebase Authentication ID tokens (firebase-admin SDK);
               roles are mirrored into Firestore for other consumers.
  - local    : HS256 JWTs signed with LOCAL_JWT_SECRET (development / tests).
  - disabled : no verifier; every authenticated route answers 503.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import firebase_admin
from firebase_admin import auth as firebase_auth, credentials, firestore
from jose import JWTError, jwt
from loguru import logger

from app.config import Settings, settings
from app.errors import ServiceUnavailable
from app.models.user_model import UserRole


class InvalidCredential(Exception):
    """The bearer token is malformed, has a bad signature, or has expired."""


@dataclass(frozen=True)
class VerifiedIdentity:
    subject_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    expires_at: Optional[datetime] = None


def _expiry(claims: dict) -> Optional[datetime]:
    exp = claims.get("exp")
    return datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None


# ── Firebase ──────────────────────────────────────────────────────────────────
class FirebaseIdentityVerifier:
    name = "firebase"

    def __init__(self, app: firebase_admin.App):
        self._app = app

    async def verify(self, token: str) -> VerifiedIdentity:
        try:
            # The SDK fetches signing certificates synchronously.
            claims = await asyncio.to_thread(firebase_auth.verify_id_token, token, self._app)
        except firebase_auth.CertificateFetchError as e:
            logger.error(f"Could not fetch Firebase signing certificates: {e}")
            raise ServiceUnavailable("Identity provider is unreachable")
        except (firebase_auth.InvalidIdTokenError, ValueError) as e:
            raise InvalidCredential(str(e)) from e

        return VerifiedIdentity(
            subject_id=claims["uid"],
            email=claims.get("email"),
            display_name=claims.get("name"),
            expires_at=_expiry(claims),
        )

    def mirror_role(self, subject_id: str, role: UserRole) -> None:
        db = firestore.client(app=self._app)
        db.collection("users").document(subject_id).set(
            {"role": role.value.lower(), "updatedAt": firestore.SERVER_TIMESTAMP},
            merge=True,
        )


def _firebase_credentials(cfg: Settings) -> Optional[credentials.Base]:
    if cfg.FIREBASE_CREDENTIALS_FILE:
        return credentials.Certificate(cfg.FIREBASE_CREDENTIALS_FILE)

    key = cfg.FIREBASE_PRIVATE_KEY or ""
    email = cfg.FIREBASE_CLIENT_EMAIL or ""
    if "BEGIN PRIVATE KEY" not in key or "YOUR_PRIVATE_KEY_HERE" in key or not email or "xxxxx" in email:
        return None

    return credentials.Certificate({
        "type": "service_account",
        "project_id": cfg.FIREBASE_PROJECT_ID,
        "private_key_id": cfg.FIREBASE_PRIVATE_KEY_ID,
        "private_key": key.replace("\\n", "\n"),
        "client_email": email,
        "client_id": cfg.FIREBASE_CLIENT_ID,
        "auth_uri": cfg.FIREBASE_AUTH_URI,
        "token_uri": cfg.FIREBASE_TOKEN_URI,
    })


def _init_firebase(cfg: Settings) -> Optional[FirebaseIdentityVerifier]:
    try:
        cred = _firebase_credentials(cfg)
        if cred is None:
            logger.warning(
                "Firebase Admin SDK credentials not configured; authenticated routes are disabled. "
                "Set FIREBASE_CREDENTIALS_FILE or the FIREBASE_* service-account variables."
            )
            return None
        try:
            fb_app = firebase_admin.get_app()
        except ValueError:
            fb_app = firebase_admin.initialize_app(cred, {"projectId": cfg.FIREBASE_PROJECT_ID})
    except (ValueError, IOError) as e:
        logger.error(f"Failed to initialise Firebase Admin SDK: {e}")
        return None

    logger.info("Firebase Admin SDK initialised.")
    return FirebaseIdentityVerifier(fb_app)


# ── Local JWT ─────────────────────────────────────────────────────────────────
class LocalTokenVerifier:
    name = "local"

    def __init__(self, secret: str, algorithm: str = "HS256", audience: Optional[str] = None):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience

    async def verify(self, token: str) -> VerifiedIdentity:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as e:
            raise InvalidCredential(str(e)) from e

        if not claims.get("sub"):
            raise InvalidCredential("Token has no subject")
        return VerifiedIdentity(
            subject_id=claims["sub"],
            email=claims.get("email"),
            display_name=claims.get("name"),
            expires_at=_expiry(claims),
        )

    def mirror_role(self, subject_id: str, role: UserRole) -> None:
        logger.debug(f"Local identity provider: role {role.value} for {subject_id} not mirrored.")


def create_local_token(
    subject_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    cfg: Settings = settings,
) -> str:
    """Mint a token accepted by LocalTokenVerifier."""
    claims = {"sub": subject_id}
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    if cfg.LOCAL_JWT_AUDIENCE:
        claims["aud"] = cfg.LOCAL_JWT_AUDIENCE
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=cfg.LOCAL_JWT_EXPIRE_MINUTES))
    claims["exp"] = expire
    return jwt.encode(claims, cfg.LOCAL_JWT_SECRET, algorithm=cfg.LOCAL_JWT_ALGORITHM)


# ── Factory ───────────────────────────────────────────────────────────────────
def init_identity(cfg: Settings = settings):
    """Build the configured verifier, or None when authentication is disabled."""
    provider = cfg.IDENTITY_PROVIDER.lower()
    if provider == "firebase":
        return _init_firebase(cfg)
    if provider == "local":
        logger.warning("Using locally signed tokens; do not enable in production.")
        return LocalTokenVerifier(cfg.LOCAL_JWT_SECRET, cfg.LOCAL_JWT_ALGORITHM, cfg.LOCAL_JWT_AUDIENCE)
    if provider == "disabled":
        logger.warning("Identity provider disabled; authenticated routes will answer 503.")
        return None
    raise ValueError(f"IDENTITY_PROVIDER must be one of firebase, local, disabled (got {cfg.IDENTITY_PROVIDER!r})")


# ── Role mirror (background task) ─────────────────────────────────────────────
def sync_role(verifier, subject_id: str, role: UserRole) -> None:
    """Best-effort copy of a user's role into the identity provider's store.

    Runs after the response; failures are logged and dropped.
    """
    if verifier is None:
        return
    try:
        verifier.mirror_role(subject_id, role)
        logger.debug(f"Mirrored role {role.value} for {subject_id} to {verifier.name}.")
    except Exception as e:
        logger.warning(f"Failed to mirror role for {subject_id} to {verifier.name}: {e}")
