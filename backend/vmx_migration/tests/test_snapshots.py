from __future__ import annotations

from django.test import TestCase

from vmx_migration.cancellation import CancellationToken, OperationCancelled
from vmx_migration.models import NetappController, SelectedNetappVolume
from vmx_migration.snapshots import SnapshotError, StorageSnapshotCoordinator, distinct_names

from .fakes import FakeSnapshotClient


def controller(hostname: str, *, primary: bool = False) -> NetappController:
    return NetappController.objects.create(
        hostname=hostname,
        ip_address="",
        is_primary=primary,
        username="admin",
        password="secret",
    )


class DistinctNamesTests(TestCase):
    def test_blank_and_case_duplicates_removed(self):
        self.assertEqual(distinct_names(["nfs1", "NFS1", " ", None, "nfs2", "nfs1 "]), ["nfs1", "nfs2"])


class StorageSnapshotCoordinatorTests(TestCase):
    def setUp(self):
        self.primary = controller("cluster-a", primary=True)
        self.secondary = controller("cluster-b")
        self.client = FakeSnapshotClient()
        self.coordinator = StorageSnapshotCoordinator(self.client, label="Migration")

    def volume(self, name, ctrl=None, **kwargs):
        return SelectedNetappVolume.objects.create(controller=ctrl or self.primary, volume_name=name, **kwargs)

    def test_each_distinct_storage_snapshotted_once(self):
        self.volume("nfs1", uuid="u-1", vserver="svm1")
        self.volume("nfs2", uuid="u-2")

        created = self.coordinator.ensure_snapshots(["nfs1", "NFS1", "nfs2"])

        self.assertEqual(created, ["BP_Migration-test", "BP_Migration-test"])
        self.assertEqual(self.client.volume_names, ["nfs1", "nfs2"])
        first = self.client.calls[0]
        self.assertEqual(first["volume_uuid"], "u-1")
        self.assertEqual(first["svm"], "svm1")
        self.assertEqual(first["label"], "Migration")
        self.assertFalse(first["snap_locking"])

    def test_empty_input_is_a_no_op(self):
        self.assertEqual(self.coordinator.ensure_snapshots([" ", None]), [])
        self.assertEqual(self.client.calls, [])

    def test_unmapped_storage_fails_before_any_snapshot(self):
        self.volume("nfs1")
        with self.assertRaisesMessage(SnapshotError, "No SelectedNetappVolume mapping found for storage 'nfs9'"):
            self.coordinator.ensure_snapshots(["nfs1", "nfs9"])
        self.assertEqual(self.client.calls, [])

    def test_ambiguous_mapping_prefers_primary_controller(self):
        self.volume("nfs1", self.secondary)
        self.volume("nfs1", self.primary)

        with self.assertLogs("vmx_migration.snapshots", level="WARNING") as captured:
            self.coordinator.ensure_snapshots(["nfs1"])

        self.assertEqual(self.client.calls[0]["controller_id"], self.primary.id)
        self.assertIn("snapshot.resolve ambiguous", captured.output[0])

    def test_ambiguous_mapping_fails_under_fail_policy(self):
        self.volume("nfs1", self.secondary)
        self.volume("nfs1", self.primary)
        coordinator = StorageSnapshotCoordinator(self.client, ambiguous_policy="fail")

        with self.assertRaisesMessage(SnapshotError, "cluster-a, cluster-b"):
            coordinator.ensure_snapshots(["nfs1"])

    def test_disabled_volume_rejected(self):
        self.volume("nfs1", disabled=True)
        with self.assertRaisesMessage(SnapshotError, "disabled for snapshots"):
            self.coordinator.ensure_snapshots(["nfs1"])
        self.assertEqual(self.client.calls, [])

    def test_lookup_is_case_insensitive_and_uses_stored_name(self):
        self.volume("NFS_Prod")
        self.coordinator.ensure_snapshots(["nfs_prod"])
        self.assertEqual(self.client.volume_names, ["NFS_Prod"])

    def test_missing_uuid_logs_by_name_warning(self):
        self.volume("nfs1")
        with self.assertLogs("vmx_migration.snapshots", level="WARNING") as captured:
            self.coordinator.ensure_snapshots(["nfs1"])
        self.assertIn("snapshot.create by_name", captured.output[0])
        self.assertIsNone(self.client.calls[0]["volume_uuid"])

    def test_client_failure_raises(self):
        self.volume("nfs1")
        coordinator = StorageSnapshotCoordinator(FakeSnapshotClient(fail_for={"nfs1"}))
        with self.assertRaisesMessage(
            SnapshotError,
            f"Snapshot failed for storage 'nfs1' on controller {self.primary.id}: aggregate offline",
        ):
            coordinator.ensure_snapshots(["nfs1"])

    def test_by_volume_ids_warns_once_for_unknown_ids(self):
        known = self.volume("nfs1", uuid="u-1")

        with self.assertLogs("vmx_migration.snapshots", level="WARNING") as captured:
            created = self.coordinator.ensure_snapshots_by_volume_ids([known.id, 9001, 9002, known.id])

        self.assertEqual(created, ["BP_Migration-test"])
        self.assertEqual(self.client.volume_names, ["nfs1"])
        warnings = [line for line in captured.output if "unknown_volume_ids" in line]
        self.assertEqual(len(warnings), 1)

    def test_by_volume_ids_disabled_volume_fails_whole_set(self):
        ok = self.volume("nfs1")
        off = self.volume("nfs2", disabled=True)
        with self.assertRaisesMessage(SnapshotError, f"Volume 'nfs2' (id={off.id}) is disabled"):
            self.coordinator.ensure_snapshots_by_volume_ids([ok.id, off.id])
        self.assertEqual(self.client.calls, [])

    def test_cancelled_token_stops_before_client_call(self):
        self.volume("nfs1")
        token = CancellationToken()
        token.cancel()
        with self.assertRaises(OperationCancelled):
            self.coordinator.ensure_snapshots(["nfs1"], token)
        self.assertEqual(self.client.calls, [])
