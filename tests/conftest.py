"""Test conftest for setting up the test environment."""

import os

# Set minimal required environment variables before importing any saasync modules
# This prevents Settings initialization errors during test collection
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DISPATCH_WORKERS", "false")
os.environ.setdefault("SYNC_RATE_LIMIT", "1000/minute")
os.environ.setdefault("APPS_CONFIG_PATH", "does-not-exist.json")

import pytest

from saasync.core.app_config import SyncConfig
from saasync.services.connectors.registry import ConnectorRegistry
from saasync.services.store import EntityStore, JobStore, SyncStateStore
from saasync.services.sync.orchestrator import SyncOrchestrator
from tests.fakes import AcmeConnector, FakeSupabase, acme_app

ADMIN_HEADERS = {"Authorization": "Bearer test-admin-key"}


@pytest.fixture
def db():
    """Empty in-memory database."""
    return FakeSupabase()


@pytest.fixture
def entity_store(db):
    return EntityStore(db, "saasync")


@pytest.fixture
def sync_state_store(db):
    return SyncStateStore(db, "saasync")


@pytest.fixture
def job_store(db):
    return JobStore(db, "saasync")


@pytest.fixture
def acme(entity_store):
    return AcmeConnector(entity_store)


@pytest.fixture
def registry(acme):
    registry = ConnectorRegistry()
    registry.register(acme)
    return registry


@pytest.fixture
def sync_config():
    return SyncConfig(apps=[acme_app("app1")])


@pytest.fixture
def orchestrator(registry, sync_config, entity_store, sync_state_store, job_store):
    return SyncOrchestrator(
        registry=registry,
        sync_config=sync_config,
        entity_store=entity_store,
        sync_state_store=sync_state_store,
        job_store=job_store,
    )


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit buckets are process-global."""
    from saasync.middleware.rate_limit import limiter

    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def api(db, sync_config, registry):
    """TestClient with the lifespan running against the in-memory database."""
    from fastapi.testclient import TestClient

    from main import create_app

    app = create_app(sync_config=sync_config, supabase_client=db, registry=registry)
    with TestClient(app) as client:
        yield client
