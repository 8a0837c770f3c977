import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ProxmoxCluster",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("username", models.CharField(max_length=255)),
                ("password", models.CharField(max_length=1024)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="NetappController",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("hostname", models.CharField(max_length=255)),
                ("ip_address", models.CharField(max_length=255)),
                ("is_primary", models.BooleanField(default=False)),
                ("username", models.CharField(max_length=255)),
                ("password", models.CharField(max_length=1024)),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="ProxmoxHost",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("host_address", models.CharField(max_length=255)),
                ("hostname", models.CharField(blank=True, default="", max_length=255)),
                (
                    "cluster",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="hosts",
                        to="vmx_migration.proxmoxcluster",
                    ),
                ),
            ],
            options={
                "ordering": ["cluster_id", "id"],
            },
        ),
        migrations.CreateModel(
            name="SelectedNetappVolume",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("vserver", models.CharField(blank=True, default="", max_length=255)),
                ("volume_name", models.CharField(db_index=True, max_length=255)),
                ("uuid", models.CharField(blank=True, default="", max_length=64)),
                ("mount_ip", models.CharField(blank=True, default="", max_length=255)),
                ("snapshot_locking_enabled", models.BooleanField(blank=True, null=True)),
                ("disabled", models.BooleanField(default=False)),
                (
                    "controller",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="volumes",
                        to="vmx_migration.netappcontroller",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="MigrationSelection",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("storage_identifier", models.CharField(blank=True, default="", max_length=255)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "cluster",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="migration_selections",
                        to="vmx_migration.proxmoxcluster",
                    ),
                ),
                (
                    "host",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="migration_selections",
                        to="vmx_migration.proxmoxhost",
                    ),
                ),
                (
                    "selected_volume",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="migration_selections",
                        to="vmx_migration.selectednetappvolume",
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="MigrationQueueItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("vm_id", models.PositiveIntegerField(blank=True, null=True)),
                ("name", models.CharField(blank=True, default="", max_length=200)),
                ("cpu_type", models.CharField(blank=True, default="", max_length=100)),
                ("os_type", models.CharField(blank=True, default="", max_length=100)),
                ("memory_mib", models.PositiveIntegerField(blank=True, null=True)),
                ("sockets", models.PositiveIntegerField(blank=True, null=True)),
                ("cores", models.PositiveIntegerField(blank=True, null=True)),
                ("vcpus", models.PositiveIntegerField(blank=True, null=True)),
                ("prepare_driver_staging", models.BooleanField(default=False)),
                ("mount_driver_iso", models.BooleanField(default=False)),
                ("driver_iso_name", models.CharField(blank=True, default="", max_length=500)),
                ("scsi_controller", models.CharField(blank=True, default="", max_length=100)),
                ("vmx_path", models.CharField(blank=True, default="", max_length=1024)),
                ("uuid", models.CharField(blank=True, default="", max_length=100)),
                ("uefi", models.BooleanField(default=False)),
                ("disks", models.JSONField(blank=True, default=list)),
                ("nics", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("Queued", "Queued"),
                            ("Processing", "Processing"),
                            ("Done", "Done"),
                            ("Failed", "Failed"),
                        ],
                        db_index=True,
                        default="Queued",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="MigrationQueueLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("item_id", models.IntegerField(blank=True, db_index=True, null=True)),
                ("run_id", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("step", models.CharField(blank=True, default="", max_length=64)),
                (
                    "level",
                    models.CharField(
                        choices=[("Info", "Info"), ("Warning", "Warning"), ("Error", "Error")],
                        default="Info",
                        max_length=16,
                    ),
                ),
                ("message", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
    ]
