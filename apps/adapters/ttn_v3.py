"""The Things Stack (TTNv3) application server adapter."""

from __future__ import annotations

from typing import List, Optional

from apps.repositories.models import APPLICATION_SERVER_DATA_MODEL, ProviderIdentity
from .base import AppServerAdapter, NormalizedUplink


class TTNv3Adapter(AppServerAdapter):
    """Topics: ``v3/<application_id>@<tenant_id>/devices/<device_id>/up``.

    The tenant comes from the MQTT username (``user@tenant``), see
    https://www.thethingsindustries.com/docs/integrations/mqtt/#note-on-using-the-tenant-id
    """

    provider = ProviderIdentity.TTN_V3

    @property
    def tenant_id(self) -> Optional[str]:
        return self.config.tenant_id

    def _prefix(self) -> str:
        return f"v3/{self.application_id}@{self.tenant_id}/devices"

    def device_topics(self, device_id: Optional[str], device_eui: Optional[str]) -> List[str]:
        return [f"{self._prefix()}/{device_id}/up"]

    def wildcard_topics(self) -> List[str]:
        return [f"{self._prefix()}/+/up"]

    def parse_message(self, topic: str, raw: bytes) -> NormalizedUplink:
        device_id = self._split_topic(topic, (5,))[3]
        message = self._decode_json(raw)
        device_ids = message.get("end_device_ids")
        device_eui = device_ids.get("dev_eui") if isinstance(device_ids, dict) else None
        data_model = self.data_model_for(device_id=device_id)

        uplink = message.get("uplink_message")
        if not isinstance(uplink, dict):
            uplink = {}
        decoded_payload = uplink.get("decoded_payload")
        frm_payload = uplink.get("frm_payload")
        if data_model == APPLICATION_SERVER_DATA_MODEL and isinstance(decoded_payload, dict):
            return NormalizedUplink(device_id, device_eui, decoded_payload)
        if isinstance(frm_payload, str):
            return NormalizedUplink(device_id, device_eui, frm_payload)
        return NormalizedUplink(device_id, device_eui, None)
