"""Parsing helpers for VMware ``.vmx`` descriptors."""

from __future__ import annotations

import re
from typing import Mapping

from django.utils.datastructures import CaseInsensitiveMapping

_VMX_LINE = re.compile(r'^\s*([A-Za-z0-9.\-:_]+)\s*=\s*"(.*)"\s*$')


def parse_vmx(text: str | None) -> CaseInsensitiveMapping:
    """Parse ``key = "value"`` lines into a case-insensitive mapping.

    Lines that do not match are ignored. A key repeated later in the file wins.
    """
    pairs: list[tuple[str, str]] = []
    for line in (text or "").splitlines():
        match = _VMX_LINE.match(line)
        if match:
            pairs.append((match.group(1).strip(), match.group(2).strip()))
    return CaseInsensitiveMapping(pairs)


def vmx_int(values: Mapping[str, str], key: str) -> int | None:
    raw = values.get(key)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def vmx_bool(values: Mapping[str, str], key: str) -> bool | None:
    raw = values.get(key)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"true", "1"}:
        return True
    if value in {"false", "0"}:
        return False
    return None


# guestOS ids as written by vSphere/Workstation. Keys are lowercase.
GUEST_OS_LABELS: dict[str, str] = {
    "windows2022srvnext-64": "Windows Server 2025",
    "windows2019srvnext-64": "Windows Server 2022",
    "windows2019srv-64": "Windows Server 2019",
    "windows9srv-64": "Windows Server 2016",
    "windows8srv-64": "Windows Server 2012 / 2012 R2",
    "windows7srv-64": "Windows Server 2008 / 2008 R2",
    "longhorn-64": "Windows Server 2008 / 2008 R2",
    "longhorn": "Windows Server 2008 / 2008 R2",
    "winnetenterprise-64": "Windows Server 2003",
    "winnetstandard-64": "Windows Server 2003",
    "winnetenterprise": "Windows Server 2003",
    "winnetstandard": "Windows Server 2003",
    "windows11-64": "Windows 11",
    "windows9-64": "Windows 10",
    "windows9": "Windows 10",
    "windows8-64": "Windows 8",
    "windows8": "Windows 8",
    "windows7-64": "Windows 7",
    "windows7": "Windows 7",
    "winvista-64": "Windows Vista",
    "winvista": "Windows Vista",
    "winxppro-64": "Windows XP",
    "winxppro": "Windows XP",
    "ubuntu-64": "Ubuntu",
    "ubuntu": "Ubuntu",
    "debian12-64": "Debian",
    "debian11-64": "Debian",
    "debian10-64": "Debian",
    "rhel9-64": "Red Hat Enterprise Linux",
    "rhel8-64": "Red Hat Enterprise Linux",
    "rhel7-64": "Red Hat Enterprise Linux",
    "centos8-64": "CentOS",
    "centos7-64": "CentOS",
    "rockylinux-64": "Rocky Linux",
    "almalinux-64": "AlmaLinux",
    "oraclelinux9-64": "Oracle Linux",
    "oraclelinux8-64": "Oracle Linux",
    "sles15-64": "SUSE Linux Enterprise / openSUSE",
    "sles12-64": "SUSE Linux Enterprise / openSUSE",
    "opensuse-64": "SUSE Linux Enterprise / openSUSE",
    "fedora-64": "Fedora",
    "other5xlinux-64": "Linux",
    "other4xlinux-64": "Linux",
    "other3xlinux-64": "Linux",
    "otherlinux-64": "Linux",
    "freebsd13-64": "FreeBSD",
    "freebsd12-64": "FreeBSD",
    "solaris11-64": "Solaris",
    "darwin21-64": "macOS",
    "vmkernel8": "VMware ESXi",
    "vmkernel7": "VMware ESXi",
    "vmkernel65": "VMware ESXi",
    "other-64": "Other (64-bit)",
    "other": "Other",
}

_SERVER_MARKERS = ("server", "srv", "winnet", "longhorn")

# Evaluated in order against the lowercased id once it looks like a Windows Server.
_SERVER_RULES: list[tuple[tuple[str, ...], str]] = [
    (("2025",), "Windows Server 2025"),
    (("2022",), "Windows Server 2022"),
    (("2019",), "Windows Server 2019"),
    (("2016", "windows9server", "windows9srv"), "Windows Server 2016"),
    (("2012", "windows8server", "windows8srv"), "Windows Server 2012 / 2012 R2"),
    (("2008", "longhorn", "windows7srv"), "Windows Server 2008 / 2008 R2"),
    (("2003", "winnet"), "Windows Server 2003"),
]

# Evaluated in order; first rule with a matching needle wins.
_GUEST_RULES: list[tuple[tuple[str, ...], str]] = [
    (("windows11", "win11"), "Windows 11"),
    (("windows9_64", "windows9-64", "windows10", "win10"), "Windows 10"),
    (("win81", "8.1"), "Windows 8.1"),
    (("win8", "windows8"), "Windows 8"),
    (("win7", "windows7"), "Windows 7"),
    (("vista",), "Windows Vista"),
    (("winxp", "xp"), "Windows XP"),
    (("vmkernel", "esxi"), "VMware ESXi"),
    (("ubuntu",), "Ubuntu"),
    (("debian",), "Debian"),
    (("rhel", "redhat"), "Red Hat Enterprise Linux"),
    (("centos",), "CentOS"),
    (("rocky",), "Rocky Linux"),
    (("alma",), "AlmaLinux"),
    (("sles", "suse"), "SUSE Linux Enterprise / openSUSE"),
    (("oracle",), "Oracle Linux"),
    (("fedora",), "Fedora"),
    (("arch",), "Arch Linux"),
    (("otherlinux", "linux"), "Linux"),
    (("freebsd",), "FreeBSD"),
    (("openbsd",), "OpenBSD"),
    (("netbsd",), "NetBSD"),
    (("solaris",), "Solaris"),
    (("darwin", "macos"), "macOS"),
]


def _first_rule(value: str, rules: list[tuple[tuple[str, ...], str]]) -> str | None:
    for needles, label in rules:
        if any(needle in value for needle in needles):
            return label
    return None


def guest_os_label(raw: str | None) -> str:
    """Map a ``guestOS`` id to a friendly label."""
    if not raw or not raw.strip():
        return "Other"
    original = raw.strip()
    value = original.lower()

    exact = GUEST_OS_LABELS.get(value)
    if exact:
        return exact

    if any(marker in value for marker in _SERVER_MARKERS):
        return _first_rule(value, _SERVER_RULES) or f"Windows Server ({original})"

    return _first_rule(value, _GUEST_RULES) or f"Other ({original})"
