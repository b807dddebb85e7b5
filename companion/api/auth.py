"""Bearer credential verification."""
import base64
import hashlib
import hmac
import json
import logging
import math
import time
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from companion.core.config import settings
from companion.core.errors import AuthenticationFailure
from companion.db.database import get_db
from companion.services.persistence.users import UserPersistenceService
from companion.services.usage.models import AuthenticatedUser
from companion.services.usage.subscriptions import SubscriptionService

logger = logging.getLogger(__name__)


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def verify_token(
    token: str,
    secret: str,
    issuer: Optional[str] = None,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Verify an HS256 JWT and return its claims.

    Raises:
        AuthenticationFailure: malformed token, bad signature, expired,
            wrong issuer or no subject
    """
    try:
        header_b64, payload_b64, signature_b64 = token.split(".")
        header = json.loads(_b64url_decode(header_b64))
        claims = json.loads(_b64url_decode(payload_b64))
        signature = _b64url_decode(signature_b64)
    except ValueError as e:
        raise AuthenticationFailure("Invalid token", detail="malformed") from e
    if not isinstance(header, dict) or not isinstance(claims, dict):
        raise AuthenticationFailure("Invalid token", detail="malformed")

    if header.get("alg") != "HS256":
        raise AuthenticationFailure("Invalid token", detail="unsupported algorithm")

    expected = hmac.new(
        secret.encode(), f"{header_b64}.{payload_b64}".encode(), hashlib.sha256
    ).digest()
    if not hmac.compare_digest(expected, signature):
        raise AuthenticationFailure("Invalid token", detail="bad signature")

    now = time.time() if now is None else now
    try:
        exp = float(claims["exp"])
    except KeyError as e:
        raise AuthenticationFailure("Token expired", detail="expired") from e
    except (TypeError, ValueError) as e:
        raise AuthenticationFailure("Invalid token", detail="malformed") from e
    if not math.isfinite(exp):
        raise AuthenticationFailure("Invalid token", detail="malformed")
    if exp <= now:
        raise AuthenticationFailure("Token expired", detail="expired")
    if issuer and claims.get("iss") != issuer:
        raise AuthenticationFailure("Invalid token", detail="issuer mismatch")
    if not claims.get("sub"):
        raise AuthenticationFailure("Invalid token", detail="missing subject")
    return claims


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the bearer credential from the Authorization header."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_user(
    request: Request, db: AsyncSession = Depends(get_db)
) -> AuthenticatedUser:
    """Dependency resolving the calling user; 401 on any failure."""
    token = get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        claims = verify_token(token, settings.auth_jwt_secret, settings.auth_jwt_issuer)
    except AuthenticationFailure as e:
        logger.warning(f"[AUTH] Token rejected: {e.detail}")
        raise HTTPException(status_code=401, detail=str(e))

    user = await UserPersistenceService(db).get_user_by_external_id(claims["sub"])
    if user is None:
        logger.warning("[AUTH] Token subject has no user record")
        raise HTTPException(status_code=401, detail="User not found")

    is_premium = await SubscriptionService(db, settings.subscription_grace_days).is_premium(user)
    return AuthenticatedUser(user_id=user.id, external_id=user.external_id, is_premium=is_premium)
