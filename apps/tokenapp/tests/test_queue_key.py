import pickle
from datetime import date, datetime

from django.test import SimpleTestCase

from apps.tokenapp.exceptions import InvalidArgument, PermissionScope
from apps.tokenapp.services.queue_key import OfficialScope, QueueKey, ensure_scope, resolve


class ResolveQueueKeyTest(SimpleTestCase):
    def test_resolve_accepts_date_datetime_and_iso_string(self):
        expected = resolve("OFF1", "DEPT1", date(2026, 10, 19))

        self.assertEqual(resolve("OFF1", "DEPT1", datetime(2026, 10, 19, 14, 5)), expected)
        self.assertEqual(resolve("OFF1", "DEPT1", "2026-10-19"), expected)

    def test_resolve_strips_whitespace(self):
        key = resolve("  OFF1 ", "DEPT1\n", "2026-10-19")
        self.assertEqual(key.office_id, "OFF1")
        self.assertEqual(key.department_id, "DEPT1")

    def test_missing_components_are_rejected(self):
        for office_id, department_id in [(None, "D"), ("", "D"), ("O", None), ("O", "   ")]:
            with self.assertRaises(InvalidArgument):
                resolve(office_id, department_id, "2026-10-19")

    def test_separator_in_id_is_rejected(self):
        with self.assertRaises(InvalidArgument) as ctx:
            resolve("OFF:1", "DEPT1", "2026-10-19")
        self.assertEqual(ctx.exception.detail["field"], "office_id")

    def test_bad_date_is_rejected(self):
        with self.assertRaises(InvalidArgument):
            resolve("OFF1", "DEPT1", "19/10/2026")
        with self.assertRaises(InvalidArgument):
            resolve("OFF1", "DEPT1", None)


class QueueKeyTest(SimpleTestCase):
    def setUp(self):
        self.key = resolve("OFF1", "DEPT1", "2026-10-19")

    def test_string_form_round_trips_through_parse(self):
        self.assertEqual(str(self.key), "OFF1:DEPT1:2026-10-19")
        self.assertEqual(QueueKey.parse(str(self.key)), self.key)

    def test_parse_rejects_malformed_keys(self):
        with self.assertRaises(InvalidArgument):
            QueueKey.parse("OFF1:DEPT1")

    def test_keys_are_immutable_and_hashable(self):
        with self.assertRaises(AttributeError):
            self.key.office_id = "OFF2"

        keys = {self.key, resolve("OFF1", "DEPT1", date(2026, 10, 19))}
        self.assertEqual(len(keys), 1)

    def test_keys_differ_by_any_component(self):
        self.assertNotEqual(self.key, resolve("OFF2", "DEPT1", "2026-10-19"))
        self.assertNotEqual(self.key, resolve("OFF1", "DEPT2", "2026-10-19"))
        self.assertNotEqual(self.key, resolve("OFF1", "DEPT1", "2026-10-20"))

    def test_group_and_lock_names_are_stable_and_channel_safe(self):
        self.assertTrue(self.key.group_name.startswith("queue_"))
        self.assertLess(len(self.key.group_name), 100)
        self.assertRegex(self.key.group_name, r"^[a-z0-9_]+$")
        self.assertEqual(self.key.lock_name, resolve("OFF1", "DEPT1", "2026-10-19").lock_name)
        self.assertNotEqual(
            self.key.lock_name, resolve("OFF1", "DEPT2", "2026-10-19").lock_name
        )

    def test_keys_can_be_pickled(self):
        self.assertEqual(pickle.loads(pickle.dumps(self.key)), self.key)


class OfficialScopeTest(SimpleTestCase):
    def setUp(self):
        self.scope = OfficialScope("OFF1", "DEPT1")

    def test_scope_covers_its_department_on_any_date(self):
        self.assertTrue(self.scope.covers(resolve("OFF1", "DEPT1", "2026-10-19")))
        self.assertTrue(self.scope.covers(resolve("OFF1", "DEPT1", "2026-12-01")))
        self.assertFalse(self.scope.covers(resolve("OFF1", "DEPT2", "2026-10-19")))

    def test_queue_key_for_date(self):
        self.assertEqual(
            self.scope.queue_key_for(date(2026, 10, 19)), resolve("OFF1", "DEPT1", "2026-10-19")
        )

    def test_ensure_scope(self):
        ensure_scope(None, resolve("OFF9", "DEPT9", "2026-10-19"))
        ensure_scope(self.scope, resolve("OFF1", "DEPT1", "2026-10-19"))

        with self.assertRaises(PermissionScope):
            ensure_scope(self.scope, resolve("OFF2", "DEPT1", "2026-10-19"))
