"""VMDK descriptor rewriting for in-place use by Proxmox."""

from __future__ import annotations

import posixpath
import re

MONOLITHIC_FLAT = "monolithicFlat"
FLAT_SUFFIX = "-flat.vmdk"
SECTOR_SIZE = 512
GIB = 1024 ** 3

# eg. 'RW 83886080 VMFS "disk-flat.vmdk"' or 'RW 83886080 FLAT "/abs/disk-flat.vmdk" 0'
EXTENT_LINE = re.compile(
    r'^(?P<prefix>[ \t]*RW[ \t]+)(?P<sectors>\d+)[ \t]+(?P<kind>\S+)[ \t]+"[^"]+"(?:[ \t]+\d+)?[ \t]*$',
    re.MULTILINE,
)
CREATE_TYPE = re.compile(r'createType\s*=\s*"[^"]+"', re.IGNORECASE)
FLAT_EXTENT_LINE = re.compile(r'^[ \t]*RW[ \t]+\d+[ \t]+FLAT[ \t]+"/[^"]+"[ \t]+0[ \t]*$', re.MULTILINE)


def to_posix(path: str | None) -> str:
    return (path or "").replace("\\", "/")


def file_name(path: str) -> str:
    return posixpath.basename(to_posix(path))


def flat_extent_path(descriptor_path: str) -> str:
    """Absolute path of the ``-flat.vmdk`` companion next to a descriptor."""
    path = to_posix(descriptor_path)
    directory = posixpath.dirname(path) or "/"
    name = posixpath.basename(path)
    if name.lower().endswith(".vmdk"):
        name = name[: -len(".vmdk")]
    return posixpath.join(directory, f"{name}{FLAT_SUFFIX}")


def rewrite_descriptor(content: str | None, flat_path: str) -> str:
    """Force ``monolithicFlat`` and point the RW extent at ``flat_path``.

    Every other line is kept verbatim. Applying the rewrite twice yields the same text.
    """
    text = content or ""
    text = CREATE_TYPE.sub(f'createType="{MONOLITHIC_FLAT}"', text)
    return EXTENT_LINE.sub(
        lambda m: f'{m.group("prefix")}{m.group("sectors")} FLAT "{to_posix(flat_path)}" 0',
        text,
        count=1,
    )


def is_rewritten(content: str | None) -> bool:
    text = content or ""
    return f'createtype="{MONOLITHIC_FLAT.lower()}"' in text.lower() and bool(FLAT_EXTENT_LINE.search(text))


def size_gib(size_bytes: int) -> int:
    """Round a byte count up to whole GiB."""
    return -(-size_bytes // GIB)
