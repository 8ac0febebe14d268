"""FastAPI dependencies - one shared set of pipeline services per process.

Tests override get_services via app.dependency_overrides.
"""

from dataclasses import dataclass

from wainbox.config import IngestSettings
from wainbox.domain.contacts import ContactLedger
from wainbox.domain.conversations import ConversationService
from wainbox.domain.ingest import WebhookIngestor, build_ingestor
from wainbox.domain.messages import MessageStore
from wainbox.infra.repositories import build_repositories


@dataclass(frozen=True)
class Services:
    settings: IngestSettings
    ingestor: WebhookIngestor
    conversations: ConversationService

    @property
    def store(self) -> MessageStore:
        return self.ingestor.store

    @property
    def ledger(self) -> ContactLedger:
        return self.ingestor.ledger


_services: Services | None = None


def build_services(settings: IngestSettings | None = None) -> Services:
    """Wire repositories, domain services and the ingestor from settings."""
    settings = settings or IngestSettings.from_env()
    messages, contacts = build_repositories(settings.storage_backend)
    ingestor = build_ingestor(settings, messages=messages, contacts=contacts)
    return Services(
        settings=settings,
        ingestor=ingestor,
        conversations=ConversationService(messages, ingestor.ledger),
    )


def get_services() -> Services:
    """Process-wide services, built from the environment on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def reset_services() -> None:
    """Forget the cached services (useful for testing)."""
    global _services
    _services = None
