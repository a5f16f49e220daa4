"""Bearer token verification.

Access tokens are issued by the external auth provider and signed with the
shared ``auth_secret_key``. This service only verifies them; the ``sub``
claim is the learner's user ID.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from coursetrack.config.settings import get_settings


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Mint an access token signed with the shared key.

    Used by tests and local tooling to impersonate the auth provider.

    Args:
        data: Payload data (typically {"sub": user_id})
        expires_delta: Token lifetime (default from settings)

    Returns:
        Encoded JWT string
    """
    settings = get_settings()

    to_encode = data.copy()
    now = datetime.now(UTC)
    to_encode.update(
        {
            "exp": now
            + (
                expires_delta
                or timedelta(minutes=settings.auth_access_token_expire_minutes)
            ),
            "iat": now,
            "type": "access",
        }
    )
    if settings.auth_audience and "aud" not in to_encode:
        to_encode["aud"] = settings.auth_audience

    return jwt.encode(
        to_encode,
        settings.auth_secret_key,
        algorithm=settings.auth_algorithm,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate an access token.

    Validates:
    - JWT signature and expiration
    - Audience, when ``auth_audience`` is configured
    - Token type, when the provider sets one (must be "access")
    - ``sub`` is a UUID

    Raises:
        JWTError: If the token is invalid, expired, or of the wrong type
    """
    settings = get_settings()

    payload = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
        audience=settings.auth_audience,
        options={"verify_aud": settings.auth_audience is not None},
    )

    if payload.get("type", "access") != "access":
        msg = "Invalid token type: expected 'access'"
        raise JWTError(msg)

    try:
        UUID(str(payload.get("sub")))
    except ValueError as e:
        msg = "Token subject is not a user ID"
        raise JWTError(msg) from e

    return payload
