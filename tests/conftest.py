"""Shared pytest fixtures for wainbox tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from helpers import BUSINESS_NUMBER  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_services():
    """Drop the process-wide API services between tests.

    get_services() caches repositories on first use; a cached in-memory
    store would leak messages from one test into the next.
    """
    from wainbox.api import dependencies

    dependencies.reset_services()
    yield
    dependencies.reset_services()


@pytest.fixture
def settings():
    from wainbox.config import IngestSettings

    return IngestSettings(
        business_numbers=(BUSINESS_NUMBER,),
        batch_size=10,
        status_retry_attempts=3,
        status_retry_interval=0.01,
        storage_backend="memory",
    )


@pytest.fixture
def message_repo():
    from wainbox.infra.repositories.memory import InMemoryMessageRepository

    return InMemoryMessageRepository()


@pytest.fixture
def contact_repo():
    from wainbox.infra.repositories.memory import InMemoryContactRepository

    return InMemoryContactRepository()


@pytest.fixture
def ledger(contact_repo):
    from wainbox.domain.contacts import ContactLedger

    return ContactLedger(contact_repo)


@pytest.fixture
def store(message_repo, ledger):
    from wainbox.domain.messages import MessageStore

    return MessageStore(message_repo, ledger)


@pytest.fixture
def reconciler(message_repo, store, ledger):
    from wainbox.domain.status import StatusReconciler

    return StatusReconciler(message_repo, store, ledger, primary_business_number=BUSINESS_NUMBER)


@pytest.fixture
def ingestor(settings, message_repo, contact_repo):
    from wainbox.domain.ingest import build_ingestor

    return build_ingestor(settings, messages=message_repo, contacts=contact_repo)
