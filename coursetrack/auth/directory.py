"""Read-only user directory lookups."""

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from coursetrack.auth.models import DirectoryUser


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


class UserDirectory:
    """Resolves learner IDs against the ``users`` table."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._get_user = self.session.prepare(
            f"SELECT id, email, is_active, created_at FROM {keyspace}.users WHERE id = ?"
        )

    async def get_user(self, user_id: UUID) -> DirectoryUser | None:
        """Get a user by ID."""
        result = await self.session.aexecute(self._get_user, [user_id])
        row = result.one()
        return DirectoryUser.from_row(row) if row else None

    async def user_exists(self, user_id: UUID) -> bool:
        """Check that the user exists and has not been deactivated."""
        user = await self.get_user(user_id)
        if user is None:
            return False
        if not user.is_active:
            logger.debug("directory_user_inactive", user_id=str(user_id))
            return False
        return True
