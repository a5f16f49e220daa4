"""User directory table.

The ``users`` table is owned by the admin application and mirrored from the
external auth provider. This service only reads it to confirm that a
learner exists before progress is written for them.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID


USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.users (
    id UUID PRIMARY KEY,
    email TEXT,
    name TEXT,
    role TEXT,
    is_active BOOLEAN,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

AUTH_TABLES_CQL = [
    USER_TABLE_CQL,
]


class DirectoryUser:
    """Learner as seen by the progress engine."""

    def __init__(
        self,
        id: UUID,
        email: str | None = None,
        is_active: bool = True,
        created_at: datetime | None = None,
    ):
        self.id = id
        self.email = email
        self.is_active = is_active
        self.created_at = created_at or datetime.now(UTC)

    @classmethod
    def from_row(cls, row: Any) -> "DirectoryUser":
        """Create DirectoryUser from Cassandra row."""
        return cls(
            id=row.id,
            email=row.email,
            # Rows imported before the flag existed are active
            is_active=row.is_active is not False,
            created_at=row.created_at,
        )

    def __repr__(self) -> str:
        return f"<DirectoryUser {self.id} active={self.is_active}>"
