from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from vmx_migration.runner import MigrationQueueRunner, get_queue_runner
from vmx_migration.snapshots import StorageSnapshotCoordinator


class Command(BaseCommand):
    help = "Run the VMX migration queue once in the foreground"

    def add_arguments(self, parser):
        parser.add_argument(
            "--wait",
            type=float,
            default=None,
            help="Seconds to wait for queued items when none are present (defaults to MIGRATION_QUEUE_WAIT_SECONDS)",
        )
        parser.add_argument(
            "--skip-snapshots",
            action="store_true",
            help="Do not take NetApp snapshots before processing (logged as a warning)",
        )

    def handle(self, *args, **options):
        if options["wait"] is None and not options["skip_snapshots"]:
            runner = get_queue_runner()
        else:
            runner = MigrationQueueRunner(
                snapshot_coordinator=None if options["skip_snapshots"] else StorageSnapshotCoordinator(),
                wait_timeout=options["wait"],
            )

        run_id = runner.run()
        if run_id is None:
            raise CommandError("A migration run is already active in this process.")
        self.stdout.write(self.style.SUCCESS(f"Migration run {run_id} finished; see MigrationQueueLog for details."))
