import logging

from django.core.exceptions import ValidationError
from django.db import models


class InvalidTransitionError(ValidationError):
    """Raised when a state transition is not allowed."""


class ProxmoxCluster(models.Model):
    name = models.CharField(max_length=255)
    # Includes the realm, eg. "root@pam".
    username = models.CharField(max_length=255)
    password = models.CharField(max_length=1024)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name

    @property
    def ssh_username(self) -> str:
        return self.username.split("@", 1)[0]


class ProxmoxHost(models.Model):
    cluster = models.ForeignKey(ProxmoxCluster, on_delete=models.CASCADE, related_name="hosts")
    host_address = models.CharField(max_length=255)
    hostname = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["cluster_id", "id"]

    def __str__(self) -> str:
        return self.hostname or self.host_address


class NetappController(models.Model):
    hostname = models.CharField(max_length=255)
    ip_address = models.CharField(max_length=255)
    is_primary = models.BooleanField(default=False)
    username = models.CharField(max_length=255)
    password = models.CharField(max_length=1024)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        role = "primary" if self.is_primary else "secondary"
        return f"{self.hostname} ({role})"


class SelectedNetappVolume(models.Model):
    controller = models.ForeignKey(NetappController, on_delete=models.CASCADE, related_name="volumes")
    vserver = models.CharField(max_length=255, blank=True, default="")
    volume_name = models.CharField(max_length=255, db_index=True)
    uuid = models.CharField(max_length=64, blank=True, default="")
    mount_ip = models.CharField(max_length=255, blank=True, default="")
    snapshot_locking_enabled = models.BooleanField(null=True, blank=True)
    disabled = models.BooleanField(default=False)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.vserver}:{self.volume_name}" if self.vserver else self.volume_name


class MigrationSelection(models.Model):
    cluster = models.ForeignKey(ProxmoxCluster, on_delete=models.CASCADE, related_name="migration_selections")
    host = models.ForeignKey(ProxmoxHost, on_delete=models.CASCADE, related_name="migration_selections")
    # Proxmox storage id of the NFS mount holding the VMware artifacts.
    storage_identifier = models.CharField(max_length=255, blank=True, default="")
    selected_volume = models.ForeignKey(
        SelectedNetappVolume,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="migration_selections",
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.cluster} / {self.host} / {self.storage_identifier or '-'}"


class MigrationQueueItem(models.Model):
    class Status(models.TextChoices):
        QUEUED = "Queued", "Queued"
        PROCESSING = "Processing", "Processing"
        DONE = "Done", "Done"
        FAILED = "Failed", "Failed"

    TRANSITIONS = {
        Status.QUEUED: {Status.PROCESSING},
        # Processing -> Queued is the cancellation path (retried on the next run).
        Status.PROCESSING: {Status.DONE, Status.FAILED, Status.QUEUED},
        Status.DONE: set(),
        Status.FAILED: set(),
    }

    vm_id = models.PositiveIntegerField(null=True, blank=True)
    name = models.CharField(max_length=200, blank=True, default="")
    cpu_type = models.CharField(max_length=100, blank=True, default="")
    os_type = models.CharField(max_length=100, blank=True, default="")
    memory_mib = models.PositiveIntegerField(null=True, blank=True)
    sockets = models.PositiveIntegerField(null=True, blank=True)
    cores = models.PositiveIntegerField(null=True, blank=True)
    vcpus = models.PositiveIntegerField(null=True, blank=True)

    prepare_driver_staging = models.BooleanField(default=False)
    mount_driver_iso = models.BooleanField(default=False)
    driver_iso_name = models.CharField(max_length=500, blank=True, default="")

    scsi_controller = models.CharField(max_length=100, blank=True, default="")
    vmx_path = models.CharField(max_length=1024, blank=True, default="")
    uuid = models.CharField(max_length=100, blank=True, default="")
    uefi = models.BooleanField(default=False)

    disks = models.JSONField(default=list, blank=True)
    nics = models.JSONField(default=list, blank=True)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.QUEUED,
        db_index=True,
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.name or '-'} (vmid={self.vm_id}) [{self.status}]"

    def can_transition_to(self, new_status: str) -> bool:
        if new_status not in self.Status.values:
            return False
        return new_status in self.TRANSITIONS.get(self.status, set())

    def transition(self, new_status: str) -> None:
        if new_status not in self.Status.values:
            raise InvalidTransitionError(
                f"Unknown target status '{new_status}'. Allowed values: {', '.join(self.Status.values)}"
            )

        if not self.can_transition_to(new_status):
            allowed = sorted(self.TRANSITIONS.get(self.status, set()))
            raise InvalidTransitionError(
                f"Invalid transition from '{self.status}' to '{new_status}'. "
                f"Allowed targets: {allowed if allowed else 'none'}"
            )

        self.status = new_status
        self.save(update_fields=["status", "updated_at"])


class MigrationQueueLog(models.Model):
    class Level(models.TextChoices):
        INFO = "Info", "Info"
        WARNING = "Warning", "Warning"
        ERROR = "Error", "Error"

    LOGGING_LEVELS = {
        Level.INFO: logging.INFO,
        Level.WARNING: logging.WARNING,
        Level.ERROR: logging.ERROR,
    }

    # Null for batch-wide entries. Not a foreign key: items may be deleted by admins
    # while their history is kept.
    item_id = models.IntegerField(null=True, blank=True, db_index=True)
    run_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    step = models.CharField(max_length=64, blank=True, default="")
    level = models.CharField(max_length=16, choices=Level.choices, default=Level.INFO)
    message = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"[{self.level}] item={self.item_id} {self.step}: {self.message[:80]}"

    @classmethod
    def record(
        cls,
        item_id: int | None,
        step: str,
        message: str,
        level: str = Level.INFO,
        *,
        run_id: str = "",
        logger: logging.Logger | None = None,
    ) -> "MigrationQueueLog":
        """Append one log row, mirroring it to ``logger`` at the matching level."""
        if logger is not None:
            logger.log(
                cls.LOGGING_LEVELS.get(level, logging.INFO),
                "migration.step %s: %s",
                step,
                message,
                extra={"item_id": item_id, "run_id": run_id, "step": step},
            )
        return cls.objects.create(
            item_id=item_id,
            run_id=run_id,
            step=step[:64],
            level=level,
            message=message,
        )
