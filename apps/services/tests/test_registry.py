from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from asgiref.sync import async_to_sync
from django.test import SimpleTestCase

from apps.adapters.base import AdapterState
from apps.adapters.chirpstack import ChirpStackAdapter
from apps.adapters.tests.fakes import FakeBinding, make_config
from apps.adapters.ttn import TTNAdapter
from apps.adapters.ttn_v3 import TTNv3Adapter
from apps.repositories.models import DeviceRecord, GroupKey, ProviderIdentity
from apps.services.app_server_registry import AdapterFactory, AppServerRegistry
from apps.services.errors import AppServerConflictError, AppServerStartError

GROUP = GroupKey(service="smartgondor", subservice="/gardens", apikey="1234", resource="/iot/d")
OTHER_GROUP = GroupKey(service="smartgondor", subservice="/gardens", apikey="5678", resource="/iot/d")


class AdapterFactoryTests(SimpleTestCase):
    def test_dispatches_on_provider(self) -> None:
        factory = AdapterFactory(binding_factory=FakeBinding)
        expected = {
            ProviderIdentity.TTN: TTNAdapter,
            ProviderIdentity.TTN_V3: TTNv3Adapter,
            ProviderIdentity.CHIRPSTACK: ChirpStackAdapter,
        }
        for provider, variant in expected.items():
            adapter = factory.create(make_config(provider), AsyncMock())
            self.assertIsInstance(adapter, variant)

    def test_deprecated_alias_maps_to_chirpstack(self) -> None:
        self.assertIs(ProviderIdentity.from_provider("loraserver.io"), ProviderIdentity.CHIRPSTACK)


class AppServerRegistryTests(SimpleTestCase):
    def setUp(self) -> None:
        FakeBinding.reset()
        self.registry = AppServerRegistry(
            message_handler=AsyncMock(),
            adapter_factory=AdapterFactory(binding_factory=FakeBinding),
        )

    def _register(self, config=None, group_key=None):
        return async_to_sync(self.registry.register_app_server)(config or make_config(), group_key)

    def test_register_creates_and_starts_adapter(self) -> None:
        adapter = self._register(group_key=GROUP)

        self.assertEqual(adapter.state, AdapterState.RUNNING)
        self.assertEqual(adapter.group_key, GROUP)
        self.assertEqual(self.registry.adapters, (adapter,))

    def test_registering_same_group_twice_replaces_adapter(self) -> None:
        first = self._register(group_key=GROUP)
        async_to_sync(first.observe_all_devices)()

        second = self._register(group_key=GROUP)

        self.assertIsNot(first, second)
        self.assertEqual(first.state, AdapterState.STOPPED)
        self.assertEqual(first.topics, frozenset())
        self.assertEqual(self.registry.adapters, (second,))
        old_binding, new_binding = FakeBinding.instances
        self.assertEqual(old_binding.calls[-1], ("stop", None))
        self.assertTrue(new_binding.started)

    def test_device_scope_conflicts_with_group_scope(self) -> None:
        group_adapter = self._register(group_key=GROUP)

        with self.assertRaises(AppServerConflictError):
            self._register(group_key=None)

        self.assertEqual(self.registry.adapters, (group_adapter,))
        self.assertEqual(group_adapter.state, AdapterState.RUNNING)
        self.assertEqual(len(FakeBinding.instances), 1)

    def test_group_scope_conflicts_with_device_scope(self) -> None:
        device_adapter = self._register(group_key=None)

        with self.assertRaises(AppServerConflictError):
            self._register(group_key=GROUP)

        self.assertEqual(self.registry.adapters, (device_adapter,))

    def test_conflicting_group_update_keeps_current_group_adapter(self) -> None:
        group_adapter = self._register(make_config(application_id="appA"), GROUP)
        async_to_sync(group_adapter.observe_all_devices)()
        device_adapter = self._register(make_config(application_id="appB"))

        with self.assertRaises(AppServerConflictError):
            self._register(make_config(application_id="appB"), GROUP)

        self.assertEqual(self.registry.adapters, (group_adapter, device_adapter))
        self.assertEqual(group_adapter.state, AdapterState.RUNNING)
        self.assertEqual(group_adapter.topics, frozenset({"appA/devices/+/up"}))
        self.assertEqual(len(FakeBinding.instances), 2)

    def test_group_update_may_switch_application(self) -> None:
        first = self._register(make_config(application_id="appA"), GROUP)

        second = self._register(make_config(application_id="appB"), GROUP)

        self.assertEqual(first.state, AdapterState.STOPPED)
        self.assertEqual([adapter.application_id for adapter in self.registry.adapters], ["appB"])
        self.assertEqual(second.group_key, GROUP)

    def test_second_group_for_same_application_conflicts(self) -> None:
        self._register(group_key=GROUP)

        with self.assertRaises(AppServerConflictError):
            self._register(group_key=OTHER_GROUP)

        self.assertEqual(len(self.registry.adapters), 1)

    def test_device_scope_reuses_existing_adapter(self) -> None:
        first = self._register()
        second = self._register()

        self.assertIs(first, second)
        self.assertEqual(len(FakeBinding.instances), 1)

    def test_different_applications_get_their_own_adapters(self) -> None:
        self._register(make_config(application_id="app1"))
        self._register(make_config(application_id="app2"))
        self._register(make_config(ProviderIdentity.CHIRPSTACK, application_id="app1"))

        self.assertEqual(len(self.registry.adapters), 3)

    def test_concurrent_registrations_share_one_adapter(self) -> None:
        async def scenario():
            return await asyncio.gather(*(self.registry.register_app_server(make_config()) for _ in range(5)))

        adapters = async_to_sync(scenario)()

        self.assertEqual(len({id(adapter) for adapter in adapters}), 1)
        self.assertEqual(len(self.registry.adapters), 1)

    def test_start_failure_does_not_mutate_registry(self) -> None:
        FakeBinding.fail_start = True

        with self.assertRaises(AppServerStartError):
            self._register(group_key=GROUP)

        self.assertEqual(self.registry.adapters, ())

    def test_remove_by_group_key(self) -> None:
        adapter = self._register(group_key=GROUP)

        self.assertTrue(async_to_sync(self.registry.remove_app_server_by_group_key)(GROUP))
        self.assertFalse(async_to_sync(self.registry.remove_app_server_by_group_key)(GROUP))
        self.assertEqual(adapter.state, AdapterState.STOPPED)
        self.assertEqual(self.registry.adapters, ())

    def test_remove_device_leaves_adapter_running(self) -> None:
        config = make_config()
        adapter = self._register(config)
        device = DeviceRecord(id="dev1", name="dev1", type="t", service="s", subservice="/ss")
        async_to_sync(adapter.add_device)("dev1", None, device)

        removed = async_to_sync(self.registry.remove_device)(config.identity, "dev1", None)

        self.assertTrue(removed)
        self.assertIsNone(adapter.get_device("dev1"))
        self.assertEqual(adapter.topics, frozenset())
        self.assertEqual(adapter.state, AdapterState.RUNNING)
        self.assertEqual(self.registry.adapters, (adapter,))

    def test_remove_device_of_unknown_application(self) -> None:
        removed = async_to_sync(self.registry.remove_device)(make_config().identity, "dev1", None)

        self.assertFalse(removed)

    def test_stop_all(self) -> None:
        first = self._register(make_config(application_id="app1"), GROUP)
        second = self._register(make_config(application_id="app2"))

        async_to_sync(self.registry.stop_all)()

        self.assertEqual(self.registry.adapters, ())
        self.assertEqual(first.state, AdapterState.STOPPED)
        self.assertEqual(second.state, AdapterState.STOPPED)
        self.assertTrue(all(binding.stopped for binding in FakeBinding.instances))

    def test_snapshot(self) -> None:
        adapter = self._register(group_key=GROUP)
        async_to_sync(adapter.observe_all_devices)()

        [item] = self.registry.snapshot()

        self.assertEqual(item["provider"], "TTN")
        self.assertEqual(item["group"], {"service": "smartgondor", "subservice": "/gardens", "resource": "/iot/d"})
        self.assertEqual(item["topics"], ["ari_ioe_app_demo1/devices/+/up"])
