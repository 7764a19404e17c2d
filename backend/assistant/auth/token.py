"""
JWT Token Verification

The identity provider issues HS256-signed access tokens with a shared
secret (settings.auth_jwt_secret) and audience settings.auth_audience.

Claims used:
  sub                 user id (required)
  email               optional, informational
  app_metadata.role   USER | ADMIN | SUPER_ADMIN
  role                fallback when app_metadata carries none

Any other or missing role degrades to USER. Providers that put a generic
value such as "authenticated" in the top-level `role` claim end up as USER
unless app_metadata says otherwise.

Failures raise AuthenticationError (401); the app's exception handler
renders the uniform error envelope.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from assistant.api.deps import AppServices
from assistant.core.config import Settings
from assistant.core.errors import AuthenticationError
from assistant.models.enums import UserRole

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# HTTP Bearer extractor
# A missing header is reported by get_current_user, not by FastAPI.
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)

ALGORITHMS = ["HS256"]


# ---------------------------------------------------------------------------
# Verified token payload
# ---------------------------------------------------------------------------

class TokenPayload(BaseModel):
    """Parsed, validated JWT claims — passed to route handlers."""
    sub:   str
    email: str = ""
    role:  UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SUPER_ADMIN)


def _extract_role(claims: dict) -> UserRole:
    app_metadata = claims.get("app_metadata") or {}
    raw = app_metadata.get("role") if isinstance(app_metadata, dict) else None
    raw = raw or claims.get("role")

    try:
        return UserRole(str(raw).upper())
    except ValueError:
        logger.debug("No application role in token (%r), defaulting to USER", raw)
        return UserRole.USER


def verify_token(token: str, settings: Settings) -> TokenPayload:
    """
    Verify signature, expiry and audience, then map claims to TokenPayload.

    Raises:
        AuthenticationError: any verification failure or a missing `sub`.
    """
    if not settings.auth_jwt_secret:
        logger.error("auth_jwt_secret is not configured; rejecting all tokens")
        raise AuthenticationError("Authentication is not configured.")

    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=ALGORITHMS,
            audience=settings.auth_audience,
            options={"verify_exp": True},
        )
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired.") from None
    except JWTError as exc:
        logger.info("Token rejected | reason=%s", exc)
        raise AuthenticationError("Invalid token.") from None

    sub = claims.get("sub")
    if not sub:
        raise AuthenticationError("Token missing sub claim.")

    return TokenPayload(
        sub=str(sub),
        email=claims.get("email") or "",
        role=_extract_role(claims),
    )


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    services:    AppServices,
) -> TokenPayload:
    """
    Inject into any route that requires authentication:

        @router.get("/documents")
        async def list_docs(user: CurrentUser): ...
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required. Provide a valid Bearer token.")
    return verify_token(credentials.credentials, services.settings)


CurrentUser = Annotated[TokenPayload, Depends(get_current_user)]
