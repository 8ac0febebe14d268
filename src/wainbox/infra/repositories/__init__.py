"""Repository backends.

Selected via STORAGE_BACKEND env var:
- postgres (default): psycopg2, DATABASE_URL
- memory: process-local dicts (for dev/tests)
"""

from wainbox.infra.repositories.base import (
    ContactRepository,
    MessageRepository,
    StorageTransientError,
)

__all__ = [
    "ContactRepository",
    "MessageRepository",
    "StorageTransientError",
    "build_repositories",
]


def build_repositories(backend: str) -> tuple[MessageRepository, ContactRepository]:
    """Create the (messages, contacts) repository pair for a backend name.

    Raises:
        ValueError: If backend is unknown.
    """
    if backend == "memory":
        from wainbox.infra.repositories.memory import (
            InMemoryContactRepository,
            InMemoryMessageRepository,
        )

        return InMemoryMessageRepository(), InMemoryContactRepository()

    if backend == "postgres":
        from wainbox.infra.repositories.contact_repository import PgContactRepository
        from wainbox.infra.repositories.message_repository import PgMessageRepository

        return PgMessageRepository(), PgContactRepository()

    raise ValueError(f"Unknown STORAGE_BACKEND: {backend!r}")
