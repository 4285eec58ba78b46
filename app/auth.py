"""Authentication: JWT bearer tokens for users, shared secret for the cron trigger.

Accounts and sign-in live in the web front end; this service only verifies
the tokens it is handed.
"""
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# FastAPI security
security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: str
    role: str = "USER"

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


# ── JWT helpers ───────────────────────────────────────────────

def create_access_token(user_id: str, role: str = "USER") -> str:
    expire = datetime.utcnow() + timedelta(hours=settings.access_token_expire_hours)
    payload = {"sub": str(user_id), "role": role, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])


def verify_cron_secret(provided: str) -> bool:
    """Constant-time check of the cron trigger's secret. No secret configured → deny."""
    if not settings.cron_secret or not provided:
        return False
    return hmac.compare_digest(provided.encode(), settings.cron_secret.encode())


# ── FastAPI dependencies ──────────────────────────────────────

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Extract and validate the JWT."""
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        payload = decode_access_token(credentials.credentials)
        user_id = str(payload["sub"])
    except (JWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    return CurrentUser(id=user_id, role=payload.get("role", "USER"))


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


async def require_cron_secret(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> None:
    if not credentials or not verify_cron_secret(credentials.credentials):
        logger.warning("Rejected cron trigger with missing or wrong secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")
