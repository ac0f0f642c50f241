"""Errors raised across provisioning, registry and adapter boundaries."""

from __future__ import annotations


class LoRaBridgeError(Exception):
    """Base class for every error this service raises on purpose."""


class ProvisioningValidationError(LoRaBridgeError):
    """Provisioning payload is missing or has malformed LoRaWAN attributes."""


class AppServerConflictError(LoRaBridgeError):
    """Application server is already bound to another provisioning scope."""


class AppServerStartError(LoRaBridgeError):
    """Application server could not connect its transport."""


class AdapterStateError(LoRaBridgeError):
    """Operation is not valid in the adapter's current lifecycle state."""


class UplinkFormatError(LoRaBridgeError):
    """Inbound message has a bad topic shape or an undecodable body."""


__all__ = [
    "AdapterStateError",
    "AppServerConflictError",
    "AppServerStartError",
    "LoRaBridgeError",
    "ProvisioningValidationError",
    "UplinkFormatError",
]
