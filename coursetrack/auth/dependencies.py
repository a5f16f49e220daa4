"""FastAPI dependencies for the authenticated learner.

The progress engine takes the user ID as an explicit argument; these
dependencies are the only place it is read from the request.
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from coursetrack.auth.security import decode_access_token
from coursetrack.core.context import set_user_id


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


async def get_current_user_id(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> UUID:
    """Get the authenticated learner's ID from the bearer token.

    Raises:
        HTTPException(401): If token is missing, invalid, or expired
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(token)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    user_id = UUID(str(payload["sub"]))
    # Log enrichment only
    set_user_id(user_id)
    return user_id


CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
