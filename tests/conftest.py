# tests/conftest.py
import os

# Pin the process-level configuration before chatbot_verifier.app is imported.
os.environ["LEDGER_BACKEND"] = "mock"
os.environ["MOCK_AUTH"] = "true"
os.environ["MOCK_LLM"] = "true"
os.environ["GENERATION_BACKEND"] = "template"
os.environ["LOG_AS_JSON"] = "false"

import pytest

from chatbot_verifier.config import LedgerConfig
from chatbot_verifier.coordinator import QueryCoordinator
from chatbot_verifier.generation import TemplateGenerator
from chatbot_verifier.ledger.client import LedgerClient

from fakes import FakeBackend


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def live_client(fake_backend):
    client = LedgerClient(LedgerConfig(backend="fake"), backend_factory=lambda cfg: fake_backend,
                          sleep=lambda s: None)
    client.init()
    yield client
    client.close()


@pytest.fixture
def mock_client():
    client = LedgerClient(LedgerConfig(backend="mock"))
    client.init()
    return client


@pytest.fixture
def local_client():
    client = LedgerClient(LedgerConfig(backend="local", database_url="sqlite://", identity="test-operator"))
    client.init()
    yield client
    client.close()


@pytest.fixture
def live_coordinator(live_client):
    return QueryCoordinator(ledger=live_client, generator=TemplateGenerator())


@pytest.fixture
def mock_coordinator(mock_client):
    return QueryCoordinator(ledger=mock_client, generator=TemplateGenerator())
