"""ChirpStack (formerly loraserver.io) application server adapter."""

from __future__ import annotations

import json
from typing import List, Optional

from apps.repositories.models import APPLICATION_SERVER_DATA_MODEL, ProviderIdentity
from apps.services.errors import ProvisioningValidationError, UplinkFormatError
from .base import AppServerAdapter, NormalizedUplink


class ChirpStackAdapter(AppServerAdapter):
    """Topics: ``application/<application_id>/device/<dev_eui>/event/up``.

    ChirpStack moved uplinks to ``event/up`` in v3.11.0; the legacy ``rx``
    topic is always (un)subscribed alongside so both server generations work.
    """

    provider = ProviderIdentity.CHIRPSTACK

    def _topics_for(self, dev_eui: str) -> List[str]:
        base = f"application/{self.application_id}/device/{dev_eui}"
        return [f"{base}/event/up", f"{base}/rx"]

    @classmethod
    def validate_device(cls, device_id: Optional[str], device_eui: Optional[str]) -> None:
        if not device_eui:
            raise ProvisioningValidationError("Missing mandatory configuration attribute for ChirpStack: dev_eui")

    def device_topics(self, device_id: Optional[str], device_eui: Optional[str]) -> List[str]:
        self.validate_device(device_id, device_eui)
        return self._topics_for(device_eui.lower())

    def wildcard_topics(self) -> List[str]:
        return self._topics_for("+")

    def parse_message(self, topic: str, raw: bytes) -> NormalizedUplink:
        dev_eui = self._split_topic(topic, (5, 6))[3]
        device = self.get_device_by_eui(dev_eui)
        message = self._decode_json(raw)
        data_model = self.data_model_for(device_eui=dev_eui)
        device_id = device.id if device is not None else message.get("deviceName")

        object_json = message.get("objectJSON")
        decoded_object = message.get("object")
        data = message.get("data")
        if data_model == APPLICATION_SERVER_DATA_MODEL and isinstance(object_json, str):
            try:
                payload = json.loads(object_json)
            except ValueError as exc:
                raise UplinkFormatError(f"Error decoding objectJSON: {exc}") from exc
            return NormalizedUplink(device_id, dev_eui, payload)
        # "json_v3" marshaler, deprecated by ChirpStack
        if data_model == APPLICATION_SERVER_DATA_MODEL and isinstance(decoded_object, dict):
            return NormalizedUplink(device_id, dev_eui, decoded_object)
        if data_model != APPLICATION_SERVER_DATA_MODEL and isinstance(data, str):
            return NormalizedUplink(device_id, message.get("devEUI") or dev_eui, data)
        return NormalizedUplink(device_id, dev_eui, None)
