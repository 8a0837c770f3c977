"""Per-item preparation of a Proxmox VM from VMware disk descriptors."""

from __future__ import annotations

import logging
import posixpath
import re
from contextlib import contextmanager
from typing import Callable, Iterator

from django.conf import settings

from .cancellation import CancellationToken, OperationCancelled
from .models import MigrationQueueItem, MigrationQueueLog, MigrationSelection
from .pve_config import DiskSpec, build_qemu_config, parse_disks, parse_nics
from .remote import ProxmoxNode, RemoteCommandError, RemoteConnectionError, node_for_host
from .vmdk import file_name, flat_extent_path, is_rewritten, rewrite_descriptor

logger = logging.getLogger(__name__)

Level = MigrationQueueLog.Level

CDROM_STUB_LINE = re.compile(r"^\s*ide2:\s*none,media=cdrom\s*$", re.MULTILINE)
CDROM_MOUNTED_LINE = re.compile(r"^\s*ide2:\s*(?!none\b)[^,\s]+[^\n]*media=cdrom", re.MULTILINE)
EFIDISK_LINE = re.compile(r"^\s*efidisk0:", re.MULTILINE)


class MigrationStepError(Exception):
    """Raised when a preparation step cannot complete for one queue item."""


class ProxmoxMigrationExecutor:
    """Turn one queued item into a prepared (not started) Proxmox VM.

    Steps run in order and each one is journaled as ``START`` followed by ``OK``, ``ERROR``
    or ``CANCELED``. Any failure is re-raised so the queue runner can mark the item.
    """

    def __init__(
        self,
        node_factory: Callable[[], ProxmoxNode],
        *,
        mount_root: str | None = None,
        default_storage: str | None = None,
        driver_disk_gib: int | None = None,
    ) -> None:
        self.node_factory = node_factory
        self.mount_root = mount_root or getattr(settings, "PVE_STORAGE_MOUNT_ROOT", "/mnt/pve")
        self.default_storage = default_storage or getattr(settings, "MIGRATION_DEFAULT_STORAGE", "vm_migration")
        self.driver_disk_gib = driver_disk_gib or getattr(settings, "MIGRATION_DRIVER_DISK_GIB", 1)
        self.run_id = ""

    def _log(self, item: MigrationQueueItem, step: str, message: str, level: str = Level.INFO) -> None:
        MigrationQueueLog.record(item.id, step, message, level, run_id=self.run_id, logger=logger)

    @contextmanager
    def _step(self, item: MigrationQueueItem, step: str) -> Iterator[None]:
        self._log(item, step, "START")
        try:
            yield
        except OperationCancelled:
            self._log(item, step, "CANCELED", Level.WARNING)
            raise
        except (RemoteCommandError, RemoteConnectionError) as exc:
            self._log(item, step, f"ERROR SSH: {exc}", Level.ERROR)
            raise
        except Exception as exc:
            self._log(item, step, f"ERROR: {exc}", Level.ERROR)
            raise
        self._log(item, step, "OK")

    def image_dir(self, storage: str, vmid: int) -> str:
        return posixpath.join(self.mount_root, storage, "images", str(vmid))

    def staging_storage(self, disks: list[DiskSpec]) -> str:
        return (disks[0].storage if disks else None) or self.default_storage

    def execute(self, item: MigrationQueueItem, token: CancellationToken | None = None, *, run_id: str = "") -> None:
        token = token or CancellationToken()
        self.run_id = run_id
        disks = parse_disks(item.disks)
        nics = parse_nics(item.nics)

        with self._step(item, "Validate"):
            if not item.vm_id or item.vm_id <= 0:
                raise MigrationStepError("VMID missing.")
            if not (item.name or "").strip():
                raise MigrationStepError("Name missing.")
            if not disks:
                self._log(item, "Validate", "No disks defined.", Level.WARNING)

        vmid = item.vm_id
        token.raise_if_cancelled()

        with self.node_factory() as node:
            with self._step(item, "CheckVmid"):
                if not node.is_vmid_available(vmid, token):
                    raise MigrationStepError(f"VMID {vmid} is already in use on node {node.node_name}.")

            for position, disk in enumerate(disks):
                token.raise_if_cancelled()
                with self._step(item, f"PlaceDescriptor[{position}]"):
                    self.place_descriptor(node, vmid, position, disk, token)

            conf_path = node.conf_path(vmid)
            with self._step(item, "WriteConf"):
                config = build_qemu_config(
                    vmid=vmid,
                    name=item.name,
                    uefi=item.uefi,
                    disks=disks,
                    nics=nics,
                    uuid=item.uuid,
                    cpu_type=item.cpu_type,
                    os_type=item.os_type,
                    memory_mib=item.memory_mib,
                    sockets=item.sockets,
                    cores=item.cores,
                    vcpus=item.vcpus,
                    scsi_controller=item.scsi_controller,
                    driver_staging=item.prepare_driver_staging,
                    default_storage=self.default_storage,
                )
                node.write_text_file(conf_path, config, token)
                written = node.read_text_file(conf_path, token)
                if f"name: {item.name}" not in written:
                    self._log(item, "WriteConf", f"Config name differs or is missing for VMID {vmid}.", Level.WARNING)
                if not CDROM_STUB_LINE.search(written):
                    raise MigrationStepError("CD-ROM (ide2) not present in config.")

            storage = self.staging_storage(disks)

            if item.prepare_driver_staging:
                with self._step(item, "AddDummyDisk"):
                    slot = node.first_free_driver_slot(vmid, token)
                    if slot is None:
                        raise MigrationStepError(f"No free virtio slot for the driver staging disk on VMID {vmid}.")
                    node.add_staging_disk(vmid, storage, slot, self.driver_disk_gib, token)

            if item.mount_driver_iso and (item.driver_iso_name or "").strip():
                with self._step(item, "MountISO"):
                    node.set_removable_media(vmid, item.driver_iso_name, token)
                    if not CDROM_MOUNTED_LINE.search(node.read_text_file(conf_path, token)):
                        raise MigrationStepError("CD-ROM not present after ISO mount.")

            if item.uefi:
                with self._step(item, "AddEfiDisk"):
                    if EFIDISK_LINE.search(node.read_text_file(conf_path, token)):
                        self._log(item, "AddEfiDisk", f"efidisk0 already present for VMID {vmid}.")
                    else:
                        node.add_firmware_vars_disk(vmid, storage, token)
                        if not EFIDISK_LINE.search(node.read_text_file(conf_path, token)):
                            raise MigrationStepError("efidisk0 missing after add.")

            self._log(item, "Finalize", f"VM {vmid} prepared on node {node.node_name} (storage {storage}).")

    def place_descriptor(
        self,
        node: ProxmoxNode,
        vmid: int,
        position: int,
        disk: DiskSpec,
        token: CancellationToken,
    ) -> str:
        """Copy one rewritten descriptor into the VM's image directory; returns its path."""
        if not disk.source:
            raise MigrationStepError(f"Disk[{position}] source missing.")
        if not disk.storage:
            raise MigrationStepError(f"Disk[{position}] storage missing.")

        target_dir = self.image_dir(disk.storage, vmid)
        node.ensure_directory(target_dir, token)
        target = posixpath.join(target_dir, file_name(disk.source))

        original = node.read_text_file(disk.source, token)
        node.write_text_file(target, rewrite_descriptor(original, flat_extent_path(disk.source)), token)

        if not is_rewritten(node.read_text_file(target, token)):
            raise MigrationStepError("Descriptor copy/rewrite verification failed.")
        return target


def executor_for_selection(selection: MigrationSelection) -> ProxmoxMigrationExecutor:
    host = selection.host
    return ProxmoxMigrationExecutor(lambda: node_for_host(host))
