from __future__ import annotations

from asgiref.sync import async_to_sync
from django.conf import settings
from django.test import SimpleTestCase
from django.utils.module_loading import import_string

from apps.repositories.memory import JSONObjectTranslator, LoggingContextUpdater
from apps.repositories.models import DeviceRecord


def make_device(**overrides) -> DeviceRecord:
    values = {
        "id": "dev1",
        "name": "dev1:LoraDevice",
        "type": "LoraDevice",
        "service": "smartgondor",
        "subservice": "/gardens",
        "active": [{"object_id": "t", "name": "temperature", "type": "Number"}],
    }
    values.update(overrides)
    return DeviceRecord(**values)


class LoggingContextUpdaterTests(SimpleTestCase):
    def test_is_the_default_updater(self) -> None:
        self.assertIs(import_string(settings.LORABRIDGE_CONTEXT_UPDATER), LoggingContextUpdater)

    def test_logs_updates_without_keeping_them(self) -> None:
        updater = LoggingContextUpdater()
        updates = [{"name": "temperature", "type": "Number", "value": 21}]

        with self.assertLogs("apps.repositories.memory", "INFO") as logs:
            for _ in range(3):
                async_to_sync(updater.push_update)("dev1:LoraDevice", "LoraDevice", updates, make_device())

        self.assertEqual(len(logs.output), 3)
        self.assertIn("dev1:LoraDevice (LoraDevice) attributes=[temperature]", logs.output[0])
        self.assertEqual(vars(updater), {})


class JSONObjectTranslatorTests(SimpleTestCase):
    def test_object_ids_are_renamed(self) -> None:
        updates = async_to_sync(JSONObjectTranslator().translate)({"t": 21.5, "h": 40, "on": True}, make_device())

        self.assertEqual(
            updates,
            [
                {"name": "temperature", "type": "Number", "value": 21.5},
                {"name": "h", "type": "Number", "value": 40},
                {"name": "on", "type": "Boolean", "value": True},
            ],
        )

    def test_raw_payload_yields_nothing(self) -> None:
        self.assertEqual(async_to_sync(JSONObjectTranslator().translate)("AQID", make_device()), [])
