import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pinclaim.core.config import Config
from pinclaim.core.logging import LOGGER_NAME
from pinclaim.ledger.memory import InMemoryLedgerGateway
from pinclaim.notify.memory import InMemoryNotificationGateway
from pinclaim.pin.store import SecretStore
from pinclaim.registry.registry import EscrowRegistry
from pinclaim.service import ClaimService
from pinclaim.storage.memory import InMemoryStorage

SENDER = "GSENDERACCOUNT"
CLAIMANT = "GCLAIMANTACCOUNT"
PHONE = "+15551234567"


class FakeClock:
    """Controllable wall clock shared by the registry, ledger and service."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def restore_logging():
    """configure_logging changes the shared pinclaim logger; put it back after each test."""
    logger = logging.getLogger(LOGGER_NAME)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def config():
    """Fast settings: cheap hashing, no backoff, quick lock polling."""
    return Config(
        pin_hash_iterations=1_000,
        ledger_backoff_min=0.0,
        ledger_backoff_max=0.0,
        lock_retry_count=100,
        lock_retry_delay=0.01,
        request_timeout=5.0,
        claim_base_url="https://pay.example.com",
        app_name="PinClaim",
    )


@pytest.fixture
def registry(storage, clock):
    return EscrowRegistry(storage, clock=clock)


@pytest.fixture
def secret_store(registry, config):
    return SecretStore(
        registry,
        max_attempts=config.pin_max_attempts,
        iterations=config.pin_hash_iterations,
    )


@pytest.fixture
def ledger(clock):
    return InMemoryLedgerGateway(balances={SENDER: Decimal("1000")}, clock=clock)


@pytest.fixture
def notifier():
    return InMemoryNotificationGateway()


@pytest.fixture
def service(registry, secret_store, ledger, notifier, config, clock):
    return ClaimService(registry, secret_store, ledger, notifier, config=config, clock=clock)
