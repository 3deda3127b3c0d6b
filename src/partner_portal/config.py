"""Portal configuration via pydantic-settings."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic_settings import BaseSettings

from .d365.retry import RetryPolicy
from .errors import ConfigurationError
from .tenancy import (
    DEFAULT_GROUP_MAPPINGS,
    GroupMapping,
    InitiativeRegistry,
    group_mappings_from_table,
)

logger = logging.getLogger(__name__)


class PortalSettings(BaseSettings):
    environment: str = "development"
    log_level: str = "INFO"

    # Dynamics 365
    d365_url: str | None = None
    d365_api_version: str = "v9.2"
    d365_timeout_seconds: float = 30.0
    d365_max_retries: int = 3
    d365_retry_initial_delay: float = 1.0
    d365_retry_max_delay: float = 30.0
    d365_retry_backoff_factor: float = 2.0
    d365_retry_jitter: bool = True

    # Azure AD app registration used for the client-credentials grant
    azure_tenant_id: str | None = None
    d365_client_id: str | None = None
    d365_client_secret: str | None = None

    default_page_size: int = 25
    max_page_size: int = 100

    # JSON tables; built-in defaults are used when unset
    initiatives_json: str | None = None
    group_mappings_json: str | None = None

    audit_min_severity: str = "INFO"
    audit_console_enabled: bool = True

    model_config = {"env_prefix": "PORTAL_", "env_file": ".env", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}

    @property
    def d365_configured(self) -> bool:
        return bool(
            self.d365_url and self.azure_tenant_id and self.d365_client_id and self.d365_client_secret
        )

    @property
    def d365_api_url(self) -> str | None:
        if not self.d365_url:
            return None
        return f"{self.d365_url.rstrip('/')}/api/data/{self.d365_api_version}"

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.d365_max_retries,
            initial_delay=self.d365_retry_initial_delay,
            max_delay=self.d365_retry_max_delay,
            backoff_factor=self.d365_retry_backoff_factor,
            jitter=self.d365_retry_jitter,
        )

    def _load_json(self, raw: str, name: str) -> dict[str, Any] | None:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"{name} must be a JSON object")
            return data
        except ValueError as exc:
            if self.is_production:
                raise ConfigurationError(f"Failed to load {name}: {exc}") from exc
            logger.error("Failed to load %s, using defaults: %s", name, exc)
            return None

    def load_initiatives(self) -> InitiativeRegistry:
        """Initiative registry from ``initiatives_json`` or the built-in table.

        Production refuses a malformed table or an enabled initiative with
        an unusable GUID; other environments log and fall back.
        """
        if self.initiatives_json:
            data = self._load_json(self.initiatives_json, "initiatives_json")
            if data is not None:
                table = data.get("initiatives", data)
                try:
                    registry = InitiativeRegistry.from_table(table, strict=self.is_production)
                except (ConfigurationError, AttributeError) as exc:
                    if self.is_production:
                        raise
                    logger.error("Invalid initiatives_json, using defaults: %s", exc)
                else:
                    logger.info("Loaded %d initiatives from settings", len(registry))
                    return registry

        registry = InitiativeRegistry.default()
        problems = registry.validate(enabled_only=True)
        if problems and self.is_production:
            raise ConfigurationError("Invalid initiative configuration: " + "; ".join(problems))
        logger.info("Using default initiative configuration")
        return registry

    def load_group_mappings(self) -> list[GroupMapping]:
        if self.group_mappings_json:
            data = self._load_json(self.group_mappings_json, "group_mappings_json")
            if data is not None:
                try:
                    return group_mappings_from_table(data.get("groups", data))
                except (ConfigurationError, AttributeError) as exc:
                    if self.is_production:
                        raise
                    logger.error("Invalid group_mappings_json, using defaults: %s", exc)
        return list(DEFAULT_GROUP_MAPPINGS)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_settings() -> PortalSettings:
    return PortalSettings()
