"""The Things Network (v2) application server adapter."""

from __future__ import annotations

from typing import List, Optional

from apps.repositories.models import APPLICATION_SERVER_DATA_MODEL, ProviderIdentity
from .base import AppServerAdapter, NormalizedUplink


class TTNAdapter(AppServerAdapter):
    """Topics: ``<application_id>/devices/<device_id>/up``."""

    provider = ProviderIdentity.TTN

    def device_topics(self, device_id: Optional[str], device_eui: Optional[str]) -> List[str]:
        return [f"{self.application_id}/devices/{device_id}/up"]

    def wildcard_topics(self) -> List[str]:
        return [f"{self.application_id}/devices/+/up"]

    def parse_message(self, topic: str, raw: bytes) -> NormalizedUplink:
        device_id = self._split_topic(topic, (4,))[2]
        message = self._decode_json(raw)
        device_eui = message.get("hardware_serial")
        data_model = self.data_model_for(device_id=device_id)

        payload_fields = message.get("payload_fields")
        payload_raw = message.get("payload_raw")
        if data_model == APPLICATION_SERVER_DATA_MODEL and isinstance(payload_fields, dict):
            return NormalizedUplink(device_id, device_eui, payload_fields)
        if isinstance(payload_raw, str):
            return NormalizedUplink(device_id, device_eui, payload_raw)
        return NormalizedUplink(device_id, device_eui, None)
