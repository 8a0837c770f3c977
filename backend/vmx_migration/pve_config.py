"""Proxmox ``qemu-server`` configuration synthesis."""

from __future__ import annotations

import re
import uuid as uuidlib
from dataclasses import dataclass
from typing import Any, Iterable

from .vmdk import file_name

STORAGE_KEYS = ("storage", "datastore", "targetstorage", "dststorage", "storagename")
SOURCE_KEYS = ("source", "path", "vmdkpath")
DEFAULT_STORAGE = "vm_migration"
MULTIQUEUE_SCSI = "virtio-scsi-single"
CDROM_STUB = "ide2: none,media=cdrom"

_NON_HEX = re.compile(r"[^A-Fa-f0-9]")
_TRAILING_ANNOTATION = re.compile(r"\s*\(.*?\)\s*$")


def _lowered(record: Any) -> dict[str, Any]:
    if not isinstance(record, dict):
        return {}
    return {str(k).lower(): v for k, v in record.items()}


def first_str(record: dict[str, Any], keys: Iterable[str]) -> str | None:
    """Return the first non-blank string among ``keys`` (already lowercase)."""
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def first_int(record: dict[str, Any], keys: Iterable[str]) -> int | None:
    for key in keys:
        value = record.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def storage_of(record: Any) -> str | None:
    """Target storage of one serialized disk entry, trying the known synonyms in order."""
    return first_str(_lowered(record), STORAGE_KEYS)


@dataclass
class DiskSpec:
    source: str | None = None
    storage: str | None = None
    bus: str = "sata"
    index: int = 0

    @classmethod
    def from_dict(cls, record: Any) -> "DiskSpec":
        data = _lowered(record)
        return cls(
            source=first_str(data, SOURCE_KEYS),
            storage=first_str(data, STORAGE_KEYS),
            bus=(first_str(data, ("bus",)) or "sata").lower(),
            index=first_int(data, ("index", "unit")) or 0,
        )


@dataclass
class NicSpec:
    model: str | None = None
    mac: str | None = None
    bridge: str | None = None
    vlan: int | None = None

    @classmethod
    def from_dict(cls, record: Any) -> "NicSpec":
        data = _lowered(record)
        return cls(
            model=first_str(data, ("model",)),
            mac=first_str(data, ("mac", "macaddress")),
            bridge=first_str(data, ("bridge",)),
            vlan=first_int(data, ("vlan", "tag")),
        )


def parse_disks(raw: Any) -> list[DiskSpec]:
    if not isinstance(raw, list):
        return []
    return [DiskSpec.from_dict(entry) for entry in raw if isinstance(entry, dict)]


def parse_nics(raw: Any) -> list[NicSpec]:
    if not isinstance(raw, list):
        return []
    return [NicSpec.from_dict(entry) for entry in raw if isinstance(entry, dict)]


def normalize_uuid(value: str | None) -> str:
    """Canonical lowercase hyphenated UUID; unknown formats pass through."""
    if not value or not value.strip():
        return ""
    try:
        return str(uuidlib.UUID(value.strip()))
    except ValueError:
        pass
    digits = _NON_HEX.sub("", value)
    if len(digits) == 32:
        return str(uuidlib.UUID(hex=digits))
    return value


def normalize_mac(value: str | None) -> str:
    """Uppercase colon-separated MAC when exactly 12 hex digits are present."""
    if not value or not value.strip():
        return ""
    digits = _NON_HEX.sub("", value)
    if len(digits) != 12:
        return value.upper()
    digits = digits.upper()
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))


def clean_bridge(value: str | None) -> str:
    """Strip trailing annotations such as ``" (SDN)"`` from a bridge name."""
    return _TRAILING_ANNOTATION.sub("", (value or "").strip())


def cpu_topology(sockets: int | None, cores: int | None, vcpus: int | None) -> tuple[int, int] | None:
    if sockets and cores and sockets > 0 and cores > 0:
        return sockets, cores
    total = vcpus if vcpus and vcpus > 0 else cores
    if total and total > 0:
        return 1, total
    return None


def scsi_controller_for(explicit: str | None, disks: list[DiskSpec], driver_staging: bool) -> str | None:
    if explicit and explicit.strip():
        return explicit.strip()
    if driver_staging or any(d.bus == "scsi" for d in disks):
        return MULTIQUEUE_SCSI
    return None


def disk_line(disk: DiskSpec, vmid: int, default_storage: str = DEFAULT_STORAGE) -> tuple[str, str]:
    device = f"{disk.bus}{disk.index}"
    storage = disk.storage or default_storage
    options = ("iothread=1," if disk.bus in {"scsi", "virtio"} else "") + "discard=on,ssd=1"
    return device, f"{device}: {storage}:{vmid}/{file_name(disk.source or '')},{options}"


def nic_line(position: int, nic: NicSpec) -> str:
    model = nic.model or "virtio"
    mac = normalize_mac(nic.mac)
    bridge = clean_bridge(nic.bridge)

    parts = [f"{model}={mac}" if mac else model]
    if bridge:
        parts.append(f"bridge={bridge}")
    if nic.vlan and nic.vlan > 0:
        parts.append(f"tag={nic.vlan}")
    parts.append("firewall=1")
    return f"net{position}: {','.join(parts)}"


def build_qemu_config(
    *,
    vmid: int,
    name: str,
    uefi: bool,
    disks: list[DiskSpec],
    nics: list[NicSpec],
    uuid: str | None = None,
    cpu_type: str | None = None,
    os_type: str | None = None,
    memory_mib: int | None = None,
    sockets: int | None = None,
    cores: int | None = None,
    vcpus: int | None = None,
    scsi_controller: str | None = None,
    driver_staging: bool = False,
    default_storage: str = DEFAULT_STORAGE,
) -> str:
    """Render a minimal bootable ``/etc/pve/qemu-server/<vmid>.conf``."""
    lines = [
        f"name: {name}",
        "machine: q35",
        f"bios: {'ovmf' if uefi else 'seabios'}",
        "agent: 1",
        "vga: std",
        CDROM_STUB,
    ]

    smbios_uuid = normalize_uuid(uuid)
    if smbios_uuid:
        lines.append(f"smbios1: uuid={smbios_uuid}")
    if cpu_type:
        lines.append(f"cpu: {cpu_type}")
    if os_type:
        lines.append(f"ostype: {os_type}")
    if memory_mib and memory_mib > 0:
        lines.append(f"memory: {memory_mib}")

    topology = cpu_topology(sockets, cores, vcpus)
    if topology:
        lines.append(f"sockets: {topology[0]}")
        lines.append(f"cores: {topology[1]}")

    scsihw = scsi_controller_for(scsi_controller, disks, driver_staging)
    if scsihw:
        lines.append(f"scsihw: {scsihw}")

    boot_device = None
    for disk in disks:
        device, line = disk_line(disk, vmid, default_storage)
        lines.append(line)
        boot_device = boot_device or device
    if boot_device:
        lines.append(f"boot: order={boot_device}")

    for position, nic in enumerate(nics):
        lines.append(nic_line(position, nic))

    return "\n".join(lines) + "\n"
