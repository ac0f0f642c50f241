"""Test doubles for the MQTT transport."""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from apps.repositories.models import ProviderIdentity
from apps.services.app_server_config import AppServerConfig


class FakeBinding:
    """In-memory stand-in for ``MQTTBinding`` recording every call."""

    instances: List["FakeBinding"] = []
    fail_start = False

    def __init__(self, *, host: str, listener, username: Optional[str] = None, password: Optional[str] = None) -> None:
        self.host = host
        self.username = username
        self.password = password
        self.listener = listener
        self.started = False
        self.stopped = False
        self.calls: List[Tuple[str, Optional[str]]] = []
        self._topics: set = set()
        FakeBinding.instances.append(self)

    @classmethod
    def reset(cls) -> None:
        cls.instances = []
        cls.fail_start = False

    @property
    def topics(self) -> FrozenSet[str]:
        return frozenset(self._topics)

    async def start(self) -> None:
        self.calls.append(("start", None))
        if FakeBinding.fail_start:
            raise ConnectionError("MQTT connect failed: broker:1883")
        self.started = True

    async def subscribe(self, topic: str) -> None:
        self.calls.append(("subscribe", topic))
        self._topics.add(topic)

    async def unsubscribe(self, topic: str) -> None:
        self.calls.append(("unsubscribe", topic))
        self._topics.discard(topic)

    async def stop(self) -> None:
        self.calls.append(("stop", None))
        self._topics.clear()
        self.stopped = True

    async def deliver(self, topic: str, raw: bytes) -> None:
        await self.listener(topic, raw)


def make_config(provider: ProviderIdentity = ProviderIdentity.TTN, **overrides: Any) -> AppServerConfig:
    values: Dict[str, Any] = {
        "host": "localhost",
        "provider": provider,
        "app_eui": "70B3D57ED000985F",
        "application_id": "ari_ioe_app_demo1",
        "username": "ari_ioe_app_demo1",
        "password": "secret",
        "data_model": "application_server",
    }
    values.update(overrides)
    return AppServerConfig(**values)


def lorawan_attributes(provider: str = "TTN", **overrides: Any) -> Dict[str, Any]:
    """Internal attributes as sent by the provisioning layer."""

    lorawan: Dict[str, Any] = {
        "application_server": {
            "host": "localhost",
            "username": "ari_ioe_app_demo1",
            "password": "secret",
            "provider": provider,
        },
        "app_eui": "70B3D57ED000985F",
        "application_id": "ari_ioe_app_demo1",
        "application_key": "9BE6B8EF16415B5F6ED4FBEAFE695C49",
        "data_model": "application_server",
    }
    lorawan.update(overrides)
    return {"lorawan": lorawan}
