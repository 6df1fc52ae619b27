"""
Connector Framework
Provider-agnostic contract, registry, errors and shared types
"""
from saasync.services.connectors.base import (
    ChunkedSyncCapable,
    ConfigValidator,
    Connector,
    IncrementalSyncCapable,
    MultiEntityExtractor,
)
from saasync.services.connectors.registry import ConnectorRegistry, build_connector_registry

__all__ = [
    "Connector",
    "IncrementalSyncCapable",
    "MultiEntityExtractor",
    "ConfigValidator",
    "ChunkedSyncCapable",
    "ConnectorRegistry",
    "build_connector_registry",
]
