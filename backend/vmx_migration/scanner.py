"""Discover VMware guests on a Proxmox storage mount."""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Mapping

from django.conf import settings

from .cancellation import CancellationToken, OperationCancelled
from .models import ProxmoxHost
from .remote import ProxmoxNode, RemoteConnectionError, node_for_host
from .vmdk import SECTOR_SIZE, flat_extent_path, size_gib
from .vmx import guest_os_label, parse_vmx, vmx_bool, vmx_int

logger = logging.getLogger(__name__)

NOT_QUEUED = "Not queued"
DEFAULT_NIC_MODEL = "vmxnet3"
EMPTY_BACKING = "emptybackingstring"

_DISK_KEY = re.compile(r"^(?P<prefix>(?P<bus>scsi|sata|ide|nvme)\d+:(?P<unit>\d+))\.filename$", re.IGNORECASE)
_NIC_KEY = re.compile(r"^ethernet(\d+)\.", re.IGNORECASE)
_SCSI_MODEL_KEY = re.compile(r"^scsi(\d+)\.virtualdev$", re.IGNORECASE)
_BUS_PRESENT_KEY = re.compile(r"^(sata|nvme)(\d+)\.present$", re.IGNORECASE)


@dataclass
class ScannedDisk:
    source: str
    storage: str
    bus: str
    index: int
    size_gib: int | None = None


@dataclass
class ScannedNic:
    model: str
    mac: str | None = None


@dataclass
class ScannedController:
    type: str
    index: int
    model: str | None = None
    present: bool = True


@dataclass
class ScanResult:
    name: str
    vmx_path: str
    guest_os: str
    guest_os_raw: str | None = None
    cpu_cores: int | None = None
    memory_mib: int | None = None
    disk_size_gib: int | None = None
    disks: list[ScannedDisk] = field(default_factory=list)
    nics: list[ScannedNic] = field(default_factory=list)
    uuid_bios: str | None = None
    vc_uuid: str | None = None
    firmware: str | None = None
    secure_boot: bool | None = None
    tpm_present: bool | None = None
    nvram_path: str | None = None
    disk_enable_uuid: bool | None = None
    controllers: list[ScannedController] = field(default_factory=list)
    status: str = NOT_QUEUED

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _is_true(values: Mapping[str, str], key: str) -> bool:
    return (values.get(key) or "").strip().upper() == "TRUE"


def scanned_disks(values: Mapping[str, str], storage: str, vmx_path: str) -> list[ScannedDisk]:
    """Hard disks backed by a ``.vmdk`` descriptor, in file order."""
    vmx_dir = posixpath.dirname(vmx_path)
    disks: list[ScannedDisk] = []
    for key, raw in values.items():
        match = _DISK_KEY.match(key)
        if not match:
            continue
        prefix = match.group("prefix")

        if values.get(f"{prefix}.present") is not None and not _is_true(values, f"{prefix}.present"):
            continue
        device_type = values.get(f"{prefix}.deviceType")
        if device_type is not None and "harddisk" not in device_type.lower():
            continue

        backing = (raw or "").strip()
        lowered = backing.lower()
        if not backing or lowered == EMPTY_BACKING or lowered.endswith("/" + EMPTY_BACKING):
            continue
        if not lowered.endswith(".vmdk"):
            continue

        source = backing if backing.startswith("/") else posixpath.join(vmx_dir, backing)
        disks.append(
            ScannedDisk(
                source=source,
                storage=storage,
                bus=match.group("bus").lower(),
                index=int(match.group("unit")),
            )
        )
    return disks


def scanned_nics(values: Mapping[str, str]) -> list[ScannedNic]:
    indexes = sorted({int(m.group(1)) for m in (_NIC_KEY.match(k) for k in values) if m})
    nics: list[ScannedNic] = []
    for index in indexes:
        prefix = f"ethernet{index}."
        if not _is_true(values, prefix + "present"):
            continue
        model = (values.get(prefix + "virtualDev") or "").strip() or DEFAULT_NIC_MODEL
        mac = (values.get(prefix + "address") or "").strip() or (values.get(prefix + "generatedAddress") or "").strip()
        nics.append(ScannedNic(model=model, mac=mac or None))
    return nics


def scanned_controllers(values: Mapping[str, str]) -> list[ScannedController]:
    controllers: list[ScannedController] = []
    for key, raw in values.items():
        scsi = _SCSI_MODEL_KEY.match(key)
        if scsi:
            index = int(scsi.group(1))
            present_key = f"scsi{index}.present"
            controllers.append(
                ScannedController(
                    type="scsi",
                    index=index,
                    model=raw,
                    present=_is_true(values, present_key) if values.get(present_key) is not None else True,
                )
            )
            continue
        bus = _BUS_PRESENT_KEY.match(key)
        if bus:
            controllers.append(
                ScannedController(type=bus.group(1).lower(), index=int(bus.group(2)), present=_is_true(values, key))
            )
    return sorted(controllers, key=lambda c: (c.type, c.index))


def descriptor_size_gib(node: ProxmoxNode, descriptor_path: str, token: CancellationToken) -> int | None:
    """Virtual size from extent lines, else the flat extent's size, else the descriptor's own."""
    sectors = node.sum_extent_sectors(descriptor_path, token)
    if sectors > 0:
        return size_gib(sectors * SECTOR_SIZE)

    for path in (flat_extent_path(descriptor_path), descriptor_path):
        size = node.file_size(path, token)
        if size and size > 0:
            return size_gib(size)
    return None


class VmxScanner:
    """List ``.vmx`` guests below ``<mount_root>/<storage>`` on a Proxmox node."""

    def __init__(
        self,
        node_factory: Callable[[ProxmoxHost], ProxmoxNode] = node_for_host,
        mount_root: str | None = None,
    ) -> None:
        self.node_factory = node_factory
        self.mount_root = mount_root or getattr(settings, "PVE_STORAGE_MOUNT_ROOT", "/mnt/pve")

    def scan(
        self,
        cluster_id: int,
        host_id: int,
        storage: str,
        token: CancellationToken | None = None,
    ) -> list[ScanResult]:
        token = token or CancellationToken()
        host = ProxmoxHost.objects.select_related("cluster").get(id=host_id, cluster_id=cluster_id)
        base = posixpath.join(self.mount_root, storage)

        with self.node_factory(host) as node:
            if not node.is_directory(base, token):
                logger.info("scan.skip missing_mount", extra={"host": host.host_address, "path": base})
                return []

            results: list[ScanResult] = []
            for vmx_path in node.find_files(base, "*.vmx", token):
                token.raise_if_cancelled()
                try:
                    results.append(self.describe(node, vmx_path, storage, token))
                except (OperationCancelled, RemoteConnectionError):
                    raise
                except Exception as exc:
                    # One unreadable or malformed guest must not hide the rest of the storage.
                    logger.warning("scan.skip descriptor", extra={"path": vmx_path, "error": str(exc)}, exc_info=True)

        logger.info("scan.done", extra={"host": host.host_address, "storage": storage, "count": len(results)})
        return results

    def describe(self, node: ProxmoxNode, vmx_path: str, storage: str, token: CancellationToken) -> ScanResult:
        values = parse_vmx(node.read_text_file(vmx_path, token))

        disks = scanned_disks(values, storage, vmx_path)
        total = 0
        for disk in disks:
            disk.size_gib = descriptor_size_gib(node, disk.source, token)
            total += disk.size_gib or 0

        guest_raw = (values.get("guestOS") or "").strip()
        stem = posixpath.splitext(posixpath.basename(vmx_path))[0]
        tpm = vmx_bool(values, "tpm2.present")

        return ScanResult(
            name=(values.get("displayName") or "").strip() or stem,
            vmx_path=vmx_path,
            guest_os=guest_os_label(guest_raw),
            guest_os_raw=guest_raw or None,
            cpu_cores=vmx_int(values, "numvcpus"),
            memory_mib=vmx_int(values, "memsize"),
            disk_size_gib=total or None,
            disks=disks,
            nics=scanned_nics(values),
            uuid_bios=values.get("uuid.bios"),
            vc_uuid=values.get("vc.uuid"),
            firmware=values.get("firmware"),
            secure_boot=vmx_bool(values, "uefi.secureBoot.enabled"),
            tpm_present=tpm if tpm is not None else vmx_bool(values, "tpm.present"),
            nvram_path=values.get("nvram"),
            disk_enable_uuid=vmx_bool(values, "disk.EnableUUID"),
            controllers=scanned_controllers(values),
        )
