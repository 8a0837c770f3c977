from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import requests
from django.test import SimpleTestCase

from vmx_migration.netapp_client import (
    NetappSnapshotClient,
    SnapshotClientError,
    lock_expiry,
    snapshot_name,
)


def response(payload=None, *, error=None):
    resp = MagicMock()
    resp.content = b"{}" if payload is not None else b""
    resp.json.return_value = payload
    if error is not None:
        resp.raise_for_status.side_effect = error
    return resp


class SnapshotNamingTests(SimpleTestCase):
    def test_name_format(self):
        self.assertEqual(snapshot_name("Migration", datetime(2026, 3, 4, 5, 6, 7)), "BP_Migration-2026-03-04-05_06-07")

    def test_lock_expiry_units(self):
        created = datetime(2026, 1, 1, 12, 0, 0)
        self.assertEqual(lock_expiry(created, 2, "Days"), datetime(2026, 1, 3, 12, 0, 0))
        self.assertEqual(lock_expiry(created, 1, "weeks"), datetime(2026, 1, 8, 12, 0, 0))

    def test_lock_expiry_rejects_bad_input(self):
        created = datetime(2026, 1, 1)
        for count, unit in ((None, "days"), (3, None), (3, "fortnights"), (-1, "hours")):
            with self.subTest(count=count, unit=unit):
                with self.assertRaises(SnapshotClientError):
                    lock_expiry(created, count, unit)


class NetappSnapshotClientTests(SimpleTestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = NetappSnapshotClient(verify_tls=False, timeout=5, session=self.session)
        self.controller = SimpleNamespace(
            hostname="cluster-a",
            ip_address="10.1.1.10",
            username="admin",
            password="secret",
        )

    def test_create_with_known_uuid_posts_once(self):
        self.session.request.return_value = response({"job": {"uuid": "j1"}})

        result = self.client.create_snapshot(self.controller, volume_name="nfs1", volume_uuid="vol-uuid", label="Migration")

        self.assertTrue(result.success)
        self.assertTrue(result.snapshot_name.startswith("BP_Migration-"))
        method, url = self.session.request.call_args.args
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://10.1.1.10/api/storage/volumes/vol-uuid/snapshots")
        self.assertEqual(kwargs["auth"], ("admin", "secret"))
        self.assertFalse(kwargs["verify"])
        self.assertEqual(kwargs["json"], {"name": result.snapshot_name, "snapmirror_label": "Migration"})

    def test_uuid_looked_up_by_name_and_svm(self):
        self.session.request.side_effect = [
            response({"records": [{"uuid": "looked-up"}]}),
            response(),
        ]

        result = self.client.create_snapshot(self.controller, volume_name="nfs1", svm="svm1", label="Migration")

        self.assertTrue(result.success)
        lookup, post = self.session.request.call_args_list
        self.assertEqual(lookup.kwargs["params"], {"name": "nfs1", "fields": "uuid,svm.name", "svm.name": "svm1"})
        self.assertEqual(post.args[1], "https://10.1.1.10/api/storage/volumes/looked-up/snapshots")

    def test_unknown_volume_returns_failed_result(self):
        self.session.request.return_value = response({"records": []})

        result = self.client.create_snapshot(self.controller, volume_name="nfs9", label="Migration")

        self.assertFalse(result.success)
        self.assertIn("Volume 'nfs9' not found on cluster-a", result.error_message)

    def test_http_error_returns_failed_result(self):
        self.session.request.return_value = response({}, error=requests.HTTPError("403 Forbidden"))

        result = self.client.create_snapshot(self.controller, volume_name="nfs1", volume_uuid="u", label="Migration")

        self.assertFalse(result.success)
        self.assertIn("403 Forbidden", result.error_message)

    def test_locking_adds_expiry_time(self):
        self.session.request.return_value = response({})

        result = self.client.create_snapshot(
            self.controller,
            volume_name="nfs1",
            volume_uuid="u",
            label="Migration",
            snap_locking=True,
            lock_retention_count=7,
            lock_retention_unit="days",
        )

        self.assertTrue(result.success)
        self.assertIn("expiry_time", self.session.request.call_args.kwargs["json"])

    def test_hostname_used_when_no_ip(self):
        self.controller.ip_address = ""
        self.assertEqual(NetappSnapshotClient.base_url(self.controller), "https://cluster-a/api/")
