from __future__ import annotations

from rest_framework import serializers

from .models import MigrationQueueItem, MigrationQueueLog
from .pve_config import parse_disks

ALLOWED_BUSES = {"scsi", "sata", "ide", "nvme", "virtio"}


class MigrationQueueItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = MigrationQueueItem
        fields = (
            "id",
            "vm_id",
            "name",
            "cpu_type",
            "os_type",
            "memory_mib",
            "sockets",
            "cores",
            "vcpus",
            "prepare_driver_staging",
            "mount_driver_iso",
            "driver_iso_name",
            "scsi_controller",
            "vmx_path",
            "uuid",
            "uefi",
            "disks",
            "nics",
            "status",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "status", "created_at", "updated_at")

    def validate_disks(self, value):
        if not isinstance(value, list) or any(not isinstance(entry, dict) for entry in value):
            raise serializers.ValidationError("disks must be a list of objects.")
        for position, disk in enumerate(parse_disks(value)):
            if not disk.source:
                raise serializers.ValidationError(f"Disk[{position}] source missing.")
            if disk.bus not in ALLOWED_BUSES:
                raise serializers.ValidationError(
                    f"Disk[{position}] bus '{disk.bus}' is not one of {sorted(ALLOWED_BUSES)}."
                )
        return value

    def validate_nics(self, value):
        if not isinstance(value, list) or any(not isinstance(entry, dict) for entry in value):
            raise serializers.ValidationError("nics must be a list of objects.")
        return value


class MigrationQueueLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = MigrationQueueLog
        fields = ("id", "item_id", "run_id", "step", "level", "message", "created_at")
