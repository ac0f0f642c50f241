"""MQTT transport binding: one Paho client per application server adapter."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Set
from urllib.parse import urlparse
from uuid import uuid4

import paho.mqtt.client as mqtt
from django.conf import settings

from apps.telemetry.logging import get_logger
from apps.telemetry.metrics import mark_connect_failure
from .retry import RetryPolicy

DEFAULT_MQTT_PORT = 1883

UplinkListener = Callable[[str, bytes], Awaitable[None]]


def _is_success(reason_code) -> bool:
    """Paho/MQTT result code helper (0 is success)."""

    return getattr(reason_code, "value", reason_code) == 0


def _is_failure(reason_code) -> bool:
    return bool(getattr(reason_code, "is_failure", False))


@dataclass(frozen=True)
class MQTTEndpoint:
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_host(cls, host: str, username: Optional[str] = None, password: Optional[str] = None) -> "MQTTEndpoint":
        """Accept ``host``, ``host:port`` or ``mqtt://host:port``."""

        url = urlparse(host if "://" in host else f"mqtt://{host}")
        if not url.hostname:
            raise ValueError(f"MQTT host is invalid: {host!r}")
        return cls(
            host=url.hostname,
            port=url.port or DEFAULT_MQTT_PORT,
            username=username or url.username,
            password=password or url.password,
        )


class MQTTBinding:
    """Thin pub/sub connection that hands ``(topic, raw bytes)`` to one listener.

    Paho runs its network loop in a background thread. Every callback hops
    back onto the asyncio loop with ``call_soon_threadsafe`` and each inbound
    message is delivered by its own task.
    """

    def __init__(
        self,
        *,
        host: str,
        listener: UplinkListener,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: Optional[str] = None,
        keepalive: Optional[int] = None,
        ack_timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        if not host or listener is None:
            raise ValueError("MQTT binding requires a host and a listener")
        self._endpoint = MQTTEndpoint.from_host(host, username, password)
        self._listener = listener
        self._client_id = client_id or f"lorabridge-{uuid4().hex[:12]}"
        self._keepalive = keepalive or int(getattr(settings, "LORABRIDGE_MQTT_KEEPALIVE", 60))
        self._ack_timeout = ack_timeout or float(getattr(settings, "LORABRIDGE_MQTT_ACK_TIMEOUT", 10.0))
        self._policy = retry_policy or RetryPolicy.from_settings()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected = asyncio.Event()
        self._topics: Set[str] = set()
        self._pending_acks: Dict[int, asyncio.Future] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._loop_running = False

        self._logger = get_logger(
            "mqtt_binding",
            client_id=self._client_id,
            broker=self._endpoint.host,
            port=self._endpoint.port,
        )

        self._client = mqtt.Client(
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        if self._endpoint.username:
            self._client.username_pw_set(self._endpoint.username, self._endpoint.password)
        self._client.reconnect_delay_set(
            min_delay=max(1, int(self._policy.base_delay)),
            max_delay=max(1, int(self._policy.max_delay)),
        )

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.on_subscribe = self._on_ack
        self._client.on_unsubscribe = self._on_ack

    @property
    def topics(self) -> FrozenSet[str]:
        return frozenset(self._topics)

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # Paho callbacks (network thread)

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None) -> None:
        if _is_success(reason_code):
            self._logger.info("MQTT connected")
            if self._loop:
                self._loop.call_soon_threadsafe(self._connected.set)
                # Broker sessions are clean; restore subscriptions after every (re)connect.
                self._loop.call_soon_threadsafe(self._resubscribe_all)
        else:
            code = getattr(reason_code, "value", reason_code)
            self._logger.warning(f"MQTT connect refused; code={code}")

    def _on_disconnect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None) -> None:
        code = getattr(reason_code, "value", reason_code)
        self._logger.info(f"MQTT disconnected; code={code}")
        if self._loop:
            self._loop.call_soon_threadsafe(self._connected.clear)

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage) -> None:
        if self._loop:
            self._loop.call_soon_threadsafe(self._dispatch_message, msg.topic, bytes(msg.payload))

    def _on_ack(self, client: mqtt.Client, userdata, mid: int, reason_codes=None, properties=None) -> None:
        failed = any(_is_failure(code) for code in (reason_codes or []))
        if self._loop:
            self._loop.call_soon_threadsafe(self._resolve_ack, mid, failed)

    # Event loop side

    def _dispatch_message(self, topic: str, payload: bytes) -> None:
        task = asyncio.create_task(self._listener(topic, payload), name=f"uplink-{topic}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def _resolve_ack(self, mid: int, failed: bool) -> None:
        future = self._pending_acks.pop(mid, None)
        if future and not future.done():
            future.set_result(not failed)

    def _resubscribe_all(self) -> None:
        for topic in sorted(self._topics):
            self._client.subscribe(topic)

    async def _await_ack(self, mid: int, action: str, topic: str) -> bool:
        # The ack callback is scheduled on this loop, so registering before the first await cannot miss it.
        future = asyncio.get_running_loop().create_future()
        self._pending_acks[mid] = future
        try:
            return await asyncio.wait_for(future, timeout=self._ack_timeout)
        except asyncio.TimeoutError:
            self._logger.warning(f"MQTT {action} not acknowledged: {topic}")
            return False
        finally:
            self._pending_acks.pop(mid, None)

    async def start(self) -> None:
        """Connect to the broker, retrying with back-off; raises ``ConnectionError``."""

        self._loop = asyncio.get_running_loop()
        self._logger.info("Connecting to MQTT server")
        async for attempt in self._policy.attempts():
            try:
                await self._loop.run_in_executor(
                    None,
                    self._client.connect,
                    self._endpoint.host,
                    self._endpoint.port,
                    self._keepalive,
                )
                if not self._loop_running:
                    self._client.loop_start()
                    self._loop_running = True
                await asyncio.wait_for(self._connected.wait(), timeout=self._ack_timeout)
                return
            except Exception as exc:
                mark_connect_failure(type(exc).__name__)
                self._logger.error(f"MQTT connect attempt={attempt}, error={exc!r}")
                if self._policy.is_last(attempt):
                    await self._stop_network_loop()
                    raise ConnectionError(
                        f"MQTT connect failed: {self._endpoint.host}:{self._endpoint.port}"
                    ) from exc
        raise ConnectionError(f"MQTT connect not attempted: max_attempts={self._policy.max_attempts}")

    async def subscribe(self, topic: str) -> None:
        if topic in self._topics:
            return
        self._topics.add(topic)
        if not self.is_connected:
            self._logger.warning(f"MQTT offline; topic will be subscribed on reconnect: {topic}")
            return
        self._logger.info(f"Subscribing to MQTT topic: {topic}")
        result, mid = self._client.subscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._topics.discard(topic)
            raise ConnectionError(f"MQTT subscribe failed: {topic}")
        if not await self._await_ack(mid, "subscribe", topic):
            self._logger.warning(f"MQTT subscription kept for resubscribe on reconnect: {topic}")

    async def unsubscribe(self, topic: str) -> None:
        if topic not in self._topics:
            return
        self._topics.discard(topic)
        self._logger.info(f"Unsubscribing from MQTT topic: {topic}")
        if not self.is_connected:
            return
        result, mid = self._client.unsubscribe(topic)
        if result == mqtt.MQTT_ERR_SUCCESS:
            await self._await_ack(mid, "unsubscribe", topic)

    async def stop(self) -> None:
        """Unsubscribe whatever is left, then disconnect and join the network thread."""

        for topic in sorted(self._topics):
            await self.unsubscribe(topic)
        if self._client.is_connected():
            self._client.disconnect()
        await self._stop_network_loop()
        self._connected.clear()
        self._logger.info("MQTT client stopped")

    async def _stop_network_loop(self) -> None:
        if self._loop_running:
            await asyncio.get_running_loop().run_in_executor(None, self._client.loop_stop)
            self._loop_running = False


__all__ = ["MQTTBinding", "MQTTEndpoint", "UplinkListener"]
