"""
Connector Registry
Static name -> connector map, built once at process start
"""
import logging
from typing import Dict, List, Optional

from saasync.core.app_config import AppConfig
from saasync.services.connectors.base import ConfigValidator, Connector
from saasync.services.connectors.errors import ConfigurationError
from saasync.services.connectors.types import ConfigValidationResult

logger = logging.getLogger(__name__)


class ConnectorRegistry:

    def __init__(self):
        self._connectors: Dict[str, Connector] = {}

    def register(self, connector: Connector) -> None:
        name = connector.metadata.name
        if name in self._connectors:
            raise ValueError(f"Connector '{name}' is already registered")
        self._connectors[name] = connector
        logger.info(f"✅ Registered connector: {name}")

    def get(self, name: str) -> Optional[Connector]:
        return self._connectors.get(name)

    def names(self) -> List[str]:
        return sorted(self._connectors)

    def __contains__(self, name: str) -> bool:
        return name in self._connectors

    def validate_app_config(self, app_config: AppConfig) -> ConfigValidationResult:
        """
        Run the connector's config validation, if it has one.

        Raises ConfigurationError with field-level errors on failure.
        """
        connector = self.get(app_config.connector)
        if connector is None:
            raise ConfigurationError(
                f"Unknown connector '{app_config.connector}'",
                field="connector",
                connector=app_config.connector,
            )

        if not isinstance(connector, ConfigValidator):
            return ConfigValidationResult(valid=True)

        result = connector.validate_config(app_config)
        if not result.valid:
            summary = "; ".join(f"{error.field}: {error.message}" for error in result.errors)
            logger.warning(f"⚠️  Invalid config for {app_config.app_key}: {summary}")
            raise ConfigurationError(
                f"Invalid configuration for {app_config.app_key}: {summary}",
                field=result.errors[0].field if result.errors else None,
                connector=connector.name,
                errors=result.errors,
            )
        return result


def build_connector_registry(entity_store) -> ConnectorRegistry:
    """One register() call per shipped connector."""
    from saasync.services.connectors.stripe import StripeConnector

    registry = ConnectorRegistry()
    registry.register(StripeConnector(entity_store))
    return registry
