from __future__ import annotations

import json
from unittest.mock import AsyncMock

from asgiref.sync import async_to_sync
from django.test import SimpleTestCase

from apps.adapters.base import AdapterState
from apps.adapters.ttn import TTNAdapter
from apps.repositories.models import DeviceRecord
from apps.services.errors import AdapterStateError, AppServerStartError
from .fakes import FakeBinding, make_config


class TTNAdapterParsingTests(SimpleTestCase):
    def setUp(self) -> None:
        FakeBinding.reset()
        self.handler = AsyncMock()

    def _adapter(self, **overrides) -> TTNAdapter:
        return TTNAdapter(
            config=make_config(application_id="app1", **overrides),
            message_handler=self.handler,
            binding_factory=FakeBinding,
        )

    def _deliver(self, adapter: TTNAdapter, topic: str, body) -> None:
        raw = body if isinstance(body, bytes) else json.dumps(body).encode()
        async_to_sync(adapter.pre_process_message)(topic, raw)

    def test_uses_payload_fields_for_application_server_model(self) -> None:
        adapter = self._adapter()
        self._deliver(
            adapter,
            "app1/devices/lora_n_003/up",
            {"payload_fields": {"temperature_1": 27.2}, "dev_id": "lora_n_003", "hardware_serial": "3339343752356A14"},
        )

        self.handler.assert_awaited_once_with(adapter, "lora_n_003", "3339343752356A14", {"temperature_1": 27.2})

    def test_device_id_comes_from_topic(self) -> None:
        adapter = self._adapter()
        self._deliver(adapter, "app1/devices/other_device/up", {"payload_fields": {"t": 1}, "dev_id": "lora_n_003"})

        self.assertEqual(self.handler.await_args.args[1], "other_device")

    def test_falls_back_to_payload_raw(self) -> None:
        adapter = self._adapter(data_model="cayennelpp")
        self._deliver(
            adapter,
            "app1/devices/lora_n_003/up",
            {"payload_fields": {"temperature_1": 27.2}, "payload_raw": "AHMnSwFnARY="},
        )

        self.handler.assert_awaited_once_with(adapter, "lora_n_003", None, "AHMnSwFnARY=")

    def test_null_payload_when_nothing_usable(self) -> None:
        adapter = self._adapter()
        self._deliver(adapter, "app1/devices/lora_n_003/up", {"payload_fields": None, "payload_raw": None})

        self.handler.assert_awaited_once_with(adapter, "lora_n_003", None, None)

    def test_drops_topic_with_wrong_segment_count(self) -> None:
        adapter = self._adapter()
        for topic in ("app1/devices/up", "app1/devices/lora_n_003/up/extra"):
            self._deliver(adapter, topic, {"payload_fields": {"t": 1}})

        self.handler.assert_not_awaited()

    def test_drops_malformed_json_without_raising(self) -> None:
        adapter = self._adapter()
        self._deliver(adapter, "app1/devices/lora_n_003/up", b"{not json")
        self._deliver(adapter, "app1/devices/lora_n_003/up", b"[1, 2]")

        self.handler.assert_not_awaited()

    def test_handler_errors_do_not_escape_listener(self) -> None:
        self.handler.side_effect = RuntimeError("context broker down")
        adapter = self._adapter()

        self._deliver(adapter, "app1/devices/lora_n_003/up", {"payload_fields": {"t": 1}})

        self.handler.assert_awaited_once()

    def test_device_data_model_overrides_application(self) -> None:
        adapter = self._adapter(data_model="cayennelpp")
        device = DeviceRecord(
            id="lora_n_003",
            name="LORA-N-003",
            type="LoraDevice",
            service="smartgondor",
            subservice="/gardens",
            internal_attributes={"lorawan": {"dev_eui": "3339343752356A14", "data_model": "application_server"}},
        )
        adapter.cache_device("lora_n_003", "3339343752356A14", device)

        self._deliver(
            adapter,
            "app1/devices/lora_n_003/up",
            {"payload_fields": {"temperature_1": 27.2}, "payload_raw": "AHMnSwFnARY="},
        )

        self.assertEqual(self.handler.await_args.args[3], {"temperature_1": 27.2})


class TTNAdapterSubscriptionTests(SimpleTestCase):
    def setUp(self) -> None:
        FakeBinding.reset()
        self.adapter = TTNAdapter(
            config=make_config(application_id="app1"),
            message_handler=AsyncMock(),
            binding_factory=FakeBinding,
        )

    def test_topics(self) -> None:
        self.assertEqual(self.adapter.device_topics("dev1", None), ["app1/devices/dev1/up"])
        self.assertEqual(self.adapter.wildcard_topics(), ["app1/devices/+/up"])

    def test_observe_requires_running_adapter(self) -> None:
        with self.assertRaises(AdapterStateError):
            async_to_sync(self.adapter.observe_device)("dev1", None)

    def test_observe_then_stop_observing_restores_topics(self) -> None:
        async_to_sync(self.adapter.start)()
        async_to_sync(self.adapter.observe_all_devices)()
        before = self.adapter.topics

        async_to_sync(self.adapter.observe_device)("dev1", None)
        self.assertIn("app1/devices/dev1/up", self.adapter.topics)
        async_to_sync(self.adapter.stop_observing_device)("dev1", None)

        self.assertEqual(self.adapter.topics, before)

    def test_stop_observing_unknown_device_is_noop(self) -> None:
        async_to_sync(self.adapter.start)()
        async_to_sync(self.adapter.stop_observing_device)("never_seen", None)

        binding = FakeBinding.instances[0]
        self.assertNotIn("unsubscribe", [call[0] for call in binding.calls])

    def test_stop_unsubscribes_before_disconnect(self) -> None:
        async_to_sync(self.adapter.start)()
        async_to_sync(self.adapter.observe_all_devices)()
        async_to_sync(self.adapter.stop)()

        binding = FakeBinding.instances[0]
        self.assertEqual(binding.calls[-2:], [("unsubscribe", "app1/devices/+/up"), ("stop", None)])
        self.assertEqual(self.adapter.state, AdapterState.STOPPED)
        self.assertEqual(self.adapter.topics, frozenset())

    def test_start_failure_leaves_adapter_unusable(self) -> None:
        FakeBinding.fail_start = True

        with self.assertRaises(AppServerStartError):
            async_to_sync(self.adapter.start)()

        self.assertEqual(self.adapter.state, AdapterState.STOPPED)
        with self.assertRaises(AdapterStateError):
            async_to_sync(self.adapter.observe_all_devices)()

    def test_add_and_remove_device(self) -> None:
        device = DeviceRecord(id="dev1", name="dev1:LoraDevice", type="LoraDevice", service="s", subservice="/ss")
        async_to_sync(self.adapter.start)()

        async_to_sync(self.adapter.add_device)("dev1", "0004A30B001C0530", device)
        self.assertIs(self.adapter.get_device("dev1"), device)
        self.assertIs(self.adapter.get_device_by_eui("0004a30b001c0530"), device)

        async_to_sync(self.adapter.remove_device)("dev1", "0004A30B001C0530")
        self.assertIsNone(self.adapter.get_device("dev1"))
        self.assertEqual(self.adapter.topics, frozenset())
