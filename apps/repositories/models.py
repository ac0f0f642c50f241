"""Provisioning records shared with the external device/group store."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ProviderIdentity(str, Enum):
    """LoRaWAN application server families."""

    TTN = "TTN"
    TTN_V3 = "TTNv3"
    CHIRPSTACK = "ChirpStack"

    @classmethod
    def aliases(cls) -> Dict[str, "ProviderIdentity"]:
        # loraserver.io is the pre-rename ChirpStack, still accepted but not advertised.
        return {
            "TTN": cls.TTN,
            "TTNv3": cls.TTN_V3,
            "ChirpStack": cls.CHIRPSTACK,
            "loraserver.io": cls.CHIRPSTACK,
        }

    @classmethod
    def from_provider(cls, provider: str) -> "ProviderIdentity":
        try:
            return cls.aliases()[provider]
        except KeyError:
            raise ValueError(f"unsupported provider: {provider}") from None


APPLICATION_SERVER_DATA_MODEL = "application_server"

InternalAttributes = Union[Dict[str, Any], List[Dict[str, Any]]]


def find_lorawan_section(internal_attributes: Optional[InternalAttributes]) -> Dict[str, Any]:
    """Return the mapping holding ``lorawan`` (first list entry wins), or ``{}``."""

    if isinstance(internal_attributes, list):
        for entry in internal_attributes:
            if isinstance(entry, dict) and "lorawan" in entry:
                return entry
        return {}
    if isinstance(internal_attributes, dict):
        return internal_attributes
    return {}


@dataclass(frozen=True)
class GroupKey:
    service: str
    subservice: str
    apikey: str
    resource: str


@dataclass
class GroupConfig:
    """Device group as stored by the provisioning layer."""

    service: str
    subservice: str
    apikey: str
    resource: str
    type: str
    attributes: List[Dict[str, Any]] = field(default_factory=list)
    lazy: List[Dict[str, Any]] = field(default_factory=list)
    commands: List[Dict[str, Any]] = field(default_factory=list)
    static_attributes: List[Dict[str, Any]] = field(default_factory=list)
    internal_attributes: InternalAttributes = field(default_factory=dict)

    @property
    def key(self) -> GroupKey:
        return GroupKey(
            service=self.service,
            subservice=self.subservice,
            apikey=self.apikey,
            resource=self.resource,
        )

    @property
    def lorawan_section(self) -> Dict[str, Any]:
        return find_lorawan_section(self.internal_attributes)


@dataclass
class DeviceRecord:
    """Device as stored by the provisioning layer."""

    id: str
    name: str
    type: str
    service: str
    subservice: str
    active: List[Dict[str, Any]] = field(default_factory=list)
    lazy: List[Dict[str, Any]] = field(default_factory=list)
    commands: List[Dict[str, Any]] = field(default_factory=list)
    static_attributes: List[Dict[str, Any]] = field(default_factory=list)
    internal_attributes: InternalAttributes = field(default_factory=dict)

    @property
    def lorawan(self) -> Dict[str, Any]:
        section = find_lorawan_section(self.internal_attributes).get("lorawan")
        return section if isinstance(section, dict) else {}

    @property
    def eui(self) -> Optional[str]:
        return self.lorawan.get("dev_eui")

    @property
    def data_model(self) -> Optional[str]:
        return self.lorawan.get("data_model")

    @classmethod
    def from_group(cls, device_id: str, device_eui: Optional[str], group: GroupConfig) -> "DeviceRecord":
        """Build the record of a first-seen device from its group templates."""

        internal_attributes = copy.deepcopy(group.internal_attributes)
        section = find_lorawan_section(internal_attributes)
        if isinstance(section.get("lorawan"), dict):
            section["lorawan"]["dev_eui"] = device_eui
        return cls(
            id=device_id,
            name=f"{device_id}:{group.type}",
            type=group.type,
            service=group.service,
            subservice=group.subservice,
            active=copy.deepcopy(group.attributes),
            lazy=copy.deepcopy(group.lazy),
            commands=copy.deepcopy(group.commands),
            static_attributes=copy.deepcopy(group.static_attributes),
            internal_attributes=internal_attributes,
        )


__all__ = [
    "APPLICATION_SERVER_DATA_MODEL",
    "DeviceRecord",
    "GroupConfig",
    "GroupKey",
    "ProviderIdentity",
    "find_lorawan_section",
]
