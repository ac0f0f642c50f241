"""Application server settings extracted from provisioning internal attributes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from apps.repositories.models import APPLICATION_SERVER_DATA_MODEL, ProviderIdentity
from apps.services.errors import ProvisioningValidationError

APP_EUI_PATTERN = re.compile(r"^[0-9A-Fa-f]{16}$")


@dataclass(frozen=True)
class AppServerConfig:
    host: str
    provider: ProviderIdentity
    app_eui: str
    application_id: str
    username: Optional[str] = None
    password: Optional[str] = None
    application_key: Optional[str] = None
    data_model: Optional[str] = None

    @property
    def tenant_id(self) -> Optional[str]:
        # TTNv3 scopes applications by tenant, carried as "user@tenant".
        if self.provider is not ProviderIdentity.TTN_V3 or not isinstance(self.username, str):
            return None
        parts = self.username.split("@")
        return parts[1] if len(parts) > 1 else None

    @property
    def identity(self) -> Tuple[ProviderIdentity, str, Optional[str]]:
        return (self.provider, self.application_id, self.tenant_id)

    @property
    def uses_application_server_model(self) -> bool:
        return self.data_model == APPLICATION_SERVER_DATA_MODEL


def _fail(message: str) -> ProvisioningValidationError:
    return ProvisioningValidationError(message)


def resolve_app_server_config(lorawan_conf: Dict[str, Any]) -> AppServerConfig:
    """Validate the ``lorawan`` internal attribute section and build the config."""

    lorawan = lorawan_conf.get("lorawan") if isinstance(lorawan_conf, dict) else None
    if not isinstance(lorawan, dict):
        raise _fail("lorawan attribute must be specified inside internal_attributes")

    server = lorawan.get("application_server")
    if not isinstance(server, dict):
        raise _fail("lorawan.application_server attribute must be specified inside internal_attributes")

    if not isinstance(server.get("host"), str):
        raise _fail("Host for application server is required")

    provider = server.get("provider")
    if not isinstance(provider, str) or provider not in ProviderIdentity.aliases():
        raise _fail("Provider for application server is required. Supported values: TTN, TTNv3 and ChirpStack")

    app_eui = lorawan.get("app_eui")
    if not isinstance(app_eui, str) or not APP_EUI_PATTERN.match(app_eui):
        raise _fail("Missing or invalid mandatory configuration attributes for lorawan: app_eui")

    application_id = lorawan.get("application_id")
    if not isinstance(application_id, str) or not application_id:
        raise _fail("Missing mandatory configuration attributes for lorawan: application_id")

    config = AppServerConfig(
        host=server["host"],
        provider=ProviderIdentity.from_provider(provider),
        app_eui=app_eui,
        application_id=application_id,
        username=server.get("username"),
        password=server.get("password"),
        application_key=lorawan.get("application_key"),
        data_model=lorawan.get("data_model"),
    )
    if config.provider is ProviderIdentity.TTN_V3 and not config.tenant_id:
        raise _fail("Username for TTNv3 application server must include the tenant: <user>@<tenant>")
    return config


__all__ = ["APP_EUI_PATTERN", "AppServerConfig", "resolve_app_server_config"]
