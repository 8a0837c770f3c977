"""In-memory stand-ins for the SSH node channel and the snapshot client."""

from __future__ import annotations

import fnmatch
import posixpath
import re
from typing import Callable

from vmx_migration.cancellation import CancellationToken
from vmx_migration.models import MigrationSelection, ProxmoxCluster, ProxmoxHost, SelectedNetappVolume
from vmx_migration.netapp_client import SnapshotResult
from vmx_migration.remote import RemoteCommandError, iso_volume_id, used_driver_slots

_RW_SECTORS = re.compile(r"^\s*RW\s+(\d+)", re.MULTILINE)

DESCRIPTOR = """# Disk DescriptorFile
version=1
encoding="UTF-8"
CID=fffffffe
parentCID=ffffffff
createType="vmfs"

# Extent description
RW 83886080 VMFS "{flat}"

# The Disk Data Base
#DDB

ddb.adapterType = "lsilogic"
ddb.virtualHWVersion = "19"
"""


def descriptor(flat: str = "disk-flat.vmdk") -> str:
    return DESCRIPTOR.format(flat=flat)


class FakeNode:
    """Filesystem and qemu-server behaviour of one Proxmox node, kept in dictionaries."""

    def __init__(
        self,
        files: dict[str, str] | None = None,
        *,
        node_name: str = "pve1",
        vmids_in_use: set[int] | None = None,
        qemu_conf_dir: str = "/etc/pve/qemu-server",
    ) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.sizes: dict[str, int] = {}
        self.dirs: set[str] = set()
        self.node_name = node_name
        self.vmids_in_use = set(vmids_in_use or ())
        self.qemu_conf_dir = qemu_conf_dir
        self.calls: list[str] = []
        self.write_overrides: dict[str, str] = {}
        self.on_call: Callable[[str], None] | None = None
        self.opened = 0
        self.next_vmid: int | None = None

    def __enter__(self) -> "FakeNode":
        self.opened += 1
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def _enter(self, name: str, token: CancellationToken | None) -> None:
        self.calls.append(name)
        if self.on_call is not None:
            self.on_call(name)
        if token is not None:
            token.raise_if_cancelled()

    def conf_path(self, vmid: int) -> str:
        return posixpath.join(self.qemu_conf_dir, f"{vmid}.conf")

    def read_text_file(self, path, token=None):
        self._enter("read_text_file", token)
        if path not in self.files:
            raise RemoteCommandError(f"cat -- {path}", 1, "No such file or directory")
        return self.files[path]

    def write_text_file(self, path, text, token=None):
        self._enter("write_text_file", token)
        self.files[path] = self.write_overrides.get(path, text)

    def ensure_directory(self, path, token=None):
        self._enter("ensure_directory", token)
        self.dirs.add(path)

    def path_exists(self, path, token=None):
        self._enter("path_exists", token)
        return path in self.files or self.is_directory(path)

    def is_directory(self, path, token=None):
        self._enter("is_directory", token)
        prefix = path.rstrip("/") + "/"
        return path in self.dirs or any(p.startswith(prefix) for p in self.files)

    def find_files(self, base, pattern, token=None):
        self._enter("find_files", token)
        prefix = base.rstrip("/") + "/"
        return sorted(
            p
            for p in self.files
            if p.startswith(prefix)
            and "/.snapshot/" not in p
            and fnmatch.fnmatch(posixpath.basename(p).lower(), pattern.lower())
        )

    def file_size(self, path, token=None):
        self._enter("file_size", token)
        if path in self.sizes:
            return self.sizes[path]
        if path in self.files:
            return len(self.files[path].encode("utf-8"))
        return None

    def sum_extent_sectors(self, path, token=None):
        self._enter("sum_extent_sectors", token)
        return sum(int(n) for n in _RW_SECTORS.findall(self.files.get(path, "")))

    def cluster_vmids(self, token=None):
        self._enter("cluster_vmids", token)
        return set(self.vmids_in_use)

    def cluster_next_vmid(self, token=None):
        self._enter("cluster_next_vmid", token)
        return self.next_vmid

    def is_vmid_available(self, vmid, token=None):
        self._enter("is_vmid_available", token)
        return vmid not in self.vmids_in_use and self.conf_path(vmid) not in self.files

    def first_free_driver_slot(self, vmid, token=None):
        self._enter("first_free_driver_slot", token)
        used = used_driver_slots(self.files.get(self.conf_path(vmid), ""))
        return next((slot for slot in range(16) if slot not in used), None)

    def _append_conf(self, vmid: int, line: str) -> None:
        path = self.conf_path(vmid)
        self.files[path] = self.files.get(path, "") + line + "\n"

    def add_staging_disk(self, vmid, storage, slot, size_gib, token=None):
        self._enter("add_staging_disk", token)
        self._append_conf(vmid, f"virtio{slot}: {storage}:vm-{vmid}-disk-0,size={size_gib}G")

    def set_removable_media(self, vmid, iso_name, token=None):
        self._enter("set_removable_media", token)
        path = self.conf_path(vmid)
        mounted = f"ide2: {iso_volume_id(iso_name)},media=cdrom"
        self.files[path] = re.sub(r"^ide2:.*$", mounted, self.files.get(path, ""), flags=re.MULTILINE)

    def add_firmware_vars_disk(self, vmid, storage, token=None):
        self._enter("add_firmware_vars_disk", token)
        self._append_conf(vmid, f"efidisk0: {storage}:vm-{vmid}-disk-1,size=4M")


class FakeSnapshotClient:
    def __init__(self, *, fail_for: set[str] | None = None) -> None:
        self.fail_for = {name.lower() for name in fail_for or ()}
        self.calls: list[dict] = []

    def create_snapshot(self, controller, **kwargs):
        self.calls.append({"controller_id": controller.id, **kwargs})
        if kwargs["volume_name"].lower() in self.fail_for:
            return SnapshotResult(success=False, error_message="aggregate offline")
        return SnapshotResult(success=True, snapshot_name=f"BP_{kwargs['label']}-test")

    @property
    def volume_names(self) -> list[str]:
        return [call["volume_name"] for call in self.calls]


def create_selection(
    storage: str = "nfs1",
    volume: SelectedNetappVolume | None = None,
) -> MigrationSelection:
    cluster = ProxmoxCluster.objects.create(name="lab", username="root@pam", password="secret")
    host = ProxmoxHost.objects.create(cluster=cluster, host_address="10.0.0.11", hostname="pve1")
    return MigrationSelection.objects.create(
        cluster=cluster,
        host=host,
        storage_identifier=storage,
        selected_volume=volume,
    )
