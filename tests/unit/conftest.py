import pytest

from chatqueue.core.config import Settings
from tests.unit.fakes import (
    DummySession,
    FakeCustomerRepository,
    FakeMessageRepository,
    FakeOperatorRepository,
    FakeSessionRepository,
    FakeStore,
    FakeTabulationRepository,
    RecordingGateway,
    RecordingNotifier,
)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore(
        db=DummySession(),
        sessions=FakeSessionRepository(),
        customers=FakeCustomerRepository(),
        operators=FakeOperatorRepository(),
        messages=FakeMessageRepository(),
        tabulations=FakeTabulationRepository(),
    )


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        evolution_instances_raw="default",
        evolution_bot_ids_raw="bot-1",
        fallback_supervisor_id=None,
        business_hours_enabled=False,
    )
