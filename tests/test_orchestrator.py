"""Tests for sync request resolution and immediate syncs."""

from datetime import datetime, timezone

import pytest

from saasync.core.app_config import AppConfig, SyncConfig
from saasync.services.connectors.registry import ConnectorRegistry
from saasync.services.connectors.stripe import StripeConnector
from saasync.services.connectors.types import SyncOptions
from saasync.services.sync.orchestrator import SyncOrchestrator, SyncRequestError
from tests.fakes import acme_app


def orchestrator_for(apps, registry, entity_store, sync_state_store, job_store):
    return SyncOrchestrator(
        registry=registry,
        sync_config=SyncConfig(apps=apps),
        entity_store=entity_store,
        sync_state_store=sync_state_store,
        job_store=job_store,
    )


@pytest.fixture
def seeded(acme):
    acme.remote["widget"] = [
        {"id": "w1", "created": 1_700_000_000, "updated": 1_700_000_000},
        {"id": "w2", "created": 1_700_000_100, "updated": 1_700_000_100},
    ]
    acme.remote["gadget"] = [{"id": "g1", "created": 1_700_000_000, "updated": 1_700_000_000}]
    return acme


# ============================================================================
# RESOLUTION
# ============================================================================


@pytest.mark.parametrize(
    "app_key, status_code",
    [("bad key!", 400), ("unknown", 404)],
)
def test_resolve_app_rejects_bad_or_unknown_keys(orchestrator, app_key, status_code):
    """Test that malformed keys are 400 and unconfigured keys are 404."""
    with pytest.raises(SyncRequestError) as exc_info:
        orchestrator.resolve_app(app_key)

    assert exc_info.value.status_code == status_code


def test_resolve_app_missing_connector(registry, entity_store, sync_state_store, job_store):
    """Test that an app pointing at an unregistered connector is a server error."""
    ghost = AppConfig(app_key="ghost", name="Ghost", connector="ghost", config={})
    orchestrator = orchestrator_for([ghost], registry, entity_store, sync_state_store, job_store)

    with pytest.raises(SyncRequestError) as exc_info:
        orchestrator.resolve_app("ghost")

    assert exc_info.value.status_code == 500


def test_resolve_app_invalid_config_lists_field_errors(registry, entity_store, sync_state_store, job_store):
    """Test that a config failing validation is a 400 with field-level errors."""
    orchestrator = orchestrator_for([acme_app("app1", secret="")], registry, entity_store, sync_state_store, job_store)

    with pytest.raises(SyncRequestError) as exc_info:
        orchestrator.resolve_app("app1")

    assert exc_info.value.status_code == 400
    assert exc_info.value.errors == [{"field": "config.webhook_secret", "message": "required"}]


def test_resolve_app_config_errors_keep_suggestions(entity_store, sync_state_store, job_store):
    """Test that field errors carry a suggestion only when the connector gives one."""
    registry = ConnectorRegistry()
    registry.register(StripeConnector(entity_store))
    app = AppConfig(
        app_key="stripe_prod",
        name="Stripe Production",
        connector="stripe",
        config={"api_key": "sk_test_123", "sync_resources": ["invoice"]},
    )
    orchestrator = orchestrator_for([app], registry, entity_store, sync_state_store, job_store)

    with pytest.raises(SyncRequestError) as exc_info:
        orchestrator.resolve_app("stripe_prod")

    [error] = exc_info.value.errors
    assert error["field"] == "config.sync_resources"
    assert error["suggestion"].startswith("Valid values: customer")


def test_resource_types_exclude_nested_resources(orchestrator, acme, sync_config):
    """Test that the default resource list never includes nested resources."""
    app_config = sync_config.get_app("app1")

    assert orchestrator.resolve_resource_types(acme, app_config) == ["widget", "gadget", "gizmo"]


def test_resource_types_honour_sync_resources(registry, acme, entity_store, sync_state_store, job_store):
    """Test that an app can narrow its default resources."""
    app = acme_app("app1", sync_resources=["gizmo"])
    orchestrator = orchestrator_for([app], registry, entity_store, sync_state_store, job_store)

    assert orchestrator.resolve_resource_types(acme, app) == ["gizmo"]


@pytest.mark.parametrize("requested", [["sprocket"], ["part"]])
def test_unknown_or_nested_requested_resource_is_rejected(orchestrator, acme, sync_config, requested):
    """Test that requesting an unsupported or nested resource is a 400."""
    with pytest.raises(SyncRequestError) as exc_info:
        orchestrator.resolve_resource_types(acme, sync_config.get_app("app1"), requested)

    assert exc_info.value.status_code == 400


def test_requested_resources_are_deduplicated(orchestrator, acme, sync_config):
    """Test that duplicate requested resources yield one entry each."""
    resolved = orchestrator.resolve_resource_types(acme, sync_config.get_app("app1"), ["gadget", "widget", "gadget"])

    assert resolved == ["gadget", "widget"]


def test_incremental_without_watermark_falls_back_to_full(orchestrator, acme, sync_config):
    """Test that incremental without sync state runs as full."""
    mode, since = orchestrator.resolve_mode(acme, sync_config.get_app("app1"), "widget", "incremental")

    assert (mode, since) == ("full", None)


def test_incremental_with_watermark(orchestrator, acme, sync_config, sync_state_store):
    """Test that a stored watermark turns on incremental mode."""
    watermark = datetime(2024, 3, 1, tzinfo=timezone.utc)
    sync_state_store.update_sync_state("app1", "acme_widgets", watermark, {"mode": "full"})

    mode, since = orchestrator.resolve_mode(acme, sync_config.get_app("app1"), "widget", "incremental")

    assert mode == "incremental"
    assert since == watermark


def test_full_mode_ignores_watermark(orchestrator, acme, sync_config, sync_state_store):
    """Test that an explicit full request stays full."""
    sync_state_store.update_sync_state("app1", "acme_widgets", datetime(2024, 3, 1, tzinfo=timezone.utc), {})

    mode, _ = orchestrator.resolve_mode(acme, sync_config.get_app("app1"), "widget", "full")

    assert mode == "full"


# ============================================================================
# IMMEDIATE SYNC
# ============================================================================


@pytest.mark.asyncio
async def test_run_immediate_summarizes_every_collection(seeded, orchestrator, db, sync_state_store):
    """Test that an immediate sync reports per-collection counts and records watermarks."""
    summary = await orchestrator.run_immediate("app1", "full")

    assert summary["success"]
    assert summary["created"] == 3
    assert [c["resource_type"] for c in summary["collections"]] == ["widget", "gadget", "gizmo"]
    assert len(db.rows("entities")) == 3
    assert db.rows("sync_jobs") == []
    assert sync_state_store.get_sync_state("app1", "acme_gadgets") is not None


@pytest.mark.asyncio
async def test_run_immediate_partial_failure(seeded, orchestrator):
    """Test that one failing collection makes the run unsuccessful but others still sync."""
    seeded.failing_resources.add("gadget")

    summary = await orchestrator.run_immediate("app1", "full")

    assert not summary["success"]
    by_resource = {c["resource_type"]: c for c in summary["collections"]}
    assert not by_resource["gadget"]["success"]
    assert by_resource["widget"]["created"] == 2


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(seeded, orchestrator, db):
    """Test that a dry run reports counts without entity or watermark writes."""
    summary = await orchestrator.run_immediate("app1", "full", ["widget"], SyncOptions(dry_run=True))

    assert summary["created"] == 2
    assert db.rows("entities") == []
    assert db.rows("sync_state") == []


@pytest.mark.asyncio
async def test_second_full_sync_reconciles_deletions(seeded, orchestrator, entity_store):
    """Test that a record removed upstream is deleted by the next full sync."""
    await orchestrator.run_immediate("app1", "full", ["widget"])
    seeded.remote["widget"] = seeded.remote["widget"][:1]

    summary = await orchestrator.run_immediate("app1", "full", ["widget"])

    assert summary["deleted"] == 1
    assert summary["updated"] == 1
    assert entity_store.get_entity("app1", "acme_widgets", "w2") is None


@pytest.mark.asyncio
async def test_run_immediate_rejects_unknown_app(orchestrator):
    """Test that immediate syncs resolve the app first."""
    with pytest.raises(SyncRequestError) as exc_info:
        await orchestrator.run_immediate("nope", "full")

    assert exc_info.value.status_code == 404


def test_create_job_returns_task_summary(orchestrator, db):
    """Test that creating a job returns its id and one task per resource."""
    created = orchestrator.create_job("app1", "incremental", ["widget", "gizmo"])

    assert created["success"]
    assert created["total_tasks"] == 2
    assert created["status"] == "pending"
    assert created["resource_types"] == ["widget", "gizmo"]
    assert len(db.rows("sync_job_tasks")) == 2
