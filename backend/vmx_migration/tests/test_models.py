from __future__ import annotations

import logging

from django.test import TestCase

from vmx_migration.models import (
    InvalidTransitionError,
    MigrationQueueItem,
    MigrationQueueLog,
    ProxmoxCluster,
)

Status = MigrationQueueItem.Status


class QueueItemTransitionTests(TestCase):
    def test_happy_path(self):
        item = MigrationQueueItem.objects.create(vm_id=100, name="vm1")
        self.assertEqual(item.status, Status.QUEUED)

        item.transition(Status.PROCESSING)
        item.transition(Status.DONE)

        item.refresh_from_db()
        self.assertEqual(item.status, Status.DONE)

    def test_processing_can_return_to_queued(self):
        item = MigrationQueueItem.objects.create(vm_id=100, name="vm1", status=Status.PROCESSING)
        item.transition(Status.QUEUED)
        self.assertEqual(item.status, Status.QUEUED)

    def test_terminal_states_reject_everything(self):
        for terminal in (Status.DONE, Status.FAILED):
            item = MigrationQueueItem.objects.create(vm_id=100, name="vm1", status=terminal)
            for target in Status.values:
                with self.subTest(source=terminal, target=target):
                    self.assertFalse(item.can_transition_to(target))
                    with self.assertRaises(InvalidTransitionError):
                        item.transition(target)

    def test_queued_cannot_skip_processing(self):
        item = MigrationQueueItem.objects.create(vm_id=100, name="vm1")
        with self.assertRaisesMessage(InvalidTransitionError, "Invalid transition from 'Queued' to 'Done'"):
            item.transition(Status.DONE)

    def test_unknown_status(self):
        item = MigrationQueueItem.objects.create(vm_id=100, name="vm1")
        self.assertFalse(item.can_transition_to("Paused"))
        with self.assertRaisesMessage(InvalidTransitionError, "Unknown target status 'Paused'"):
            item.transition("Paused")


class QueueLogTests(TestCase):
    def test_record_mirrors_to_logger(self):
        logger = logging.getLogger("vmx_migration.tests.record")
        with self.assertLogs(logger, level="WARNING") as captured:
            row = MigrationQueueLog.record(7, "CheckVmid", "VMID busy", MigrationQueueLog.Level.WARNING,
                                           run_id="r1", logger=logger)

        self.assertEqual((row.item_id, row.run_id, row.level), (7, "r1", "Warning"))
        self.assertIn("migration.step CheckVmid: VMID busy", captured.output[0])

    def test_long_step_truncated_and_batch_rows_allowed(self):
        row = MigrationQueueLog.record(None, "x" * 100, "hello")
        row.refresh_from_db()
        self.assertIsNone(row.item_id)
        self.assertEqual(len(row.step), 64)

    def test_rows_survive_item_deletion(self):
        item = MigrationQueueItem.objects.create(vm_id=100, name="vm1")
        MigrationQueueLog.record(item.id, "Queue", "Processing start (run r1)")
        item_id = item.id
        item.delete()
        self.assertEqual(MigrationQueueLog.objects.filter(item_id=item_id).count(), 1)


class ClusterTests(TestCase):
    def test_ssh_username_drops_realm(self):
        cluster = ProxmoxCluster(name="lab", username="root@pam", password="x")
        self.assertEqual(cluster.ssh_username, "root")
        self.assertEqual(ProxmoxCluster(username="admin").ssh_username, "admin")
