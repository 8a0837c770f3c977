"""SSH command and file channel to one Proxmox VE node."""

from __future__ import annotations

import json
import logging
import posixpath
import re
import shlex
import time
from dataclasses import dataclass

import paramiko
from django.conf import settings

from .cancellation import CancellationToken, OperationCancelled
from .credentials import resolve_secret
from .models import ProxmoxHost

logger = logging.getLogger(__name__)

DRIVER_SLOT_COUNT = 16
_VIRTIO_SLOT = re.compile(r"^\s*virtio(\d+):", re.MULTILINE)
_WRITE_CHUNK = 64 * 1024
_RECV_CHUNK = 32 * 1024
_POLL_SECONDS = 0.05


class RemoteConnectionError(Exception):
    """Raised when the SSH session to a node cannot be established."""


class RemoteCommandError(Exception):
    """Raised when a remote command exits non-zero or times out."""

    def __init__(self, command: str, exit_code: int | None, stderr: str = "") -> None:
        detail = stderr.strip() or "no output"
        super().__init__(f"Remote command failed (exit={exit_code}): {command}: {detail}")
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


@dataclass
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str


def quote(value: object) -> str:
    return shlex.quote(str(value))


def iso_volume_id(iso_name: str) -> str:
    """Proxmox volume id for an ISO; bare names are looked up on ``local``."""
    name = iso_name.strip()
    return name if ":" in name else f"local:iso/{name}"


def used_driver_slots(config_text: str) -> set[int]:
    return {int(m.group(1)) for m in _VIRTIO_SLOT.finditer(config_text or "")}


class ProxmoxNode:
    """One SSH session against a Proxmox VE node.

    Use as a context manager; every call takes the run's cancellation token and checks it
    before doing any I/O.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        *,
        node_name: str = "",
        port: int | None = None,
        connect_timeout: int | None = None,
        command_timeout: int | None = None,
        qemu_conf_dir: str | None = None,
    ) -> None:
        self.host = host
        self.username = username
        self.password = password
        self.node_name = node_name or host
        self.port = port or getattr(settings, "PVE_SSH_PORT", 22)
        self.connect_timeout = connect_timeout or getattr(settings, "PVE_SSH_CONNECT_TIMEOUT", 30)
        self.command_timeout = command_timeout or getattr(settings, "PVE_SSH_COMMAND_TIMEOUT", 600)
        self.qemu_conf_dir = qemu_conf_dir or getattr(settings, "PVE_QEMU_CONF_DIR", "/etc/pve/qemu-server")
        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    def __enter__(self) -> "ProxmoxNode":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def connect(self) -> None:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                timeout=self.connect_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise RemoteConnectionError(f"SSH connection to {self.host}:{self.port} failed: {exc}") from exc
        self._client = client
        logger.info("remote.connect ok", extra={"host": self.host, "node": self.node_name})

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None

    def conf_path(self, vmid: int) -> str:
        return posixpath.join(self.qemu_conf_dir, f"{vmid}.conf")

    def _transport(self) -> paramiko.Transport:
        if self._client is None:
            raise RemoteConnectionError(f"Not connected to {self.host}.")
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise RemoteConnectionError(f"SSH session to {self.host} is no longer active.")
        return transport

    def _channel_error(self, command: str, exc: Exception) -> Exception:
        """Map a paramiko or socket failure to the node error types callers handle."""
        transport = self._client.get_transport() if self._client is not None else None
        if transport is None or not transport.is_active():
            return RemoteConnectionError(f"SSH session to {self.host} was lost: {exc}")
        return RemoteCommandError(command, None, f"{type(exc).__name__}: {exc}")

    def run(
        self,
        command: str,
        token: CancellationToken | None = None,
        *,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        """Execute ``command`` and collect its output.

        The channel is closed as soon as the token is cancelled or the timeout elapses.
        Channel and socket failures surface as ``RemoteCommandError``, or as
        ``RemoteConnectionError`` once the transport itself is gone.
        """
        token = token or CancellationToken()
        token.raise_if_cancelled()
        deadline = time.monotonic() + (timeout or self.command_timeout)

        transport = self._transport()
        try:
            channel = transport.open_session()
        except (paramiko.SSHException, OSError) as exc:
            raise self._channel_error(command, exc) from exc

        stdout: list[bytes] = []
        stderr: list[bytes] = []
        try:
            channel.exec_command(command)
            while True:
                self._drain(channel, stdout, stderr)
                if channel.exit_status_ready():
                    break
                if time.monotonic() > deadline:
                    raise RemoteCommandError(command, None, "timed out")
                token.wait(_POLL_SECONDS)
            self._drain(channel, stdout, stderr)
            exit_code = channel.recv_exit_status()
        except OperationCancelled:
            logger.warning("remote.command cancelled", extra={"host": self.host, "command": command})
            raise
        except (paramiko.SSHException, OSError) as exc:
            logger.warning("remote.command channel_error", extra={"host": self.host, "command": command, "error": str(exc)})
            raise self._channel_error(command, exc) from exc
        finally:
            channel.close()

        result = CommandResult(
            exit_code=exit_code,
            stdout=b"".join(stdout).decode("utf-8", errors="replace"),
            stderr=b"".join(stderr).decode("utf-8", errors="replace"),
        )
        if check and result.exit_code != 0:
            raise RemoteCommandError(command, result.exit_code, result.stderr)
        return result

    @staticmethod
    def _drain(channel: paramiko.Channel, stdout: list[bytes], stderr: list[bytes]) -> None:
        while channel.recv_ready():
            stdout.append(channel.recv(_RECV_CHUNK))
        while channel.recv_stderr_ready():
            stderr.append(channel.recv_stderr(_RECV_CHUNK))

    # Files and directories

    def read_text_file(self, path: str, token: CancellationToken | None = None) -> str:
        return self.run(f"cat -- {quote(path)}", token).stdout

    def write_text_file(self, path: str, text: str, token: CancellationToken | None = None) -> None:
        token = token or CancellationToken()
        token.raise_if_cancelled()
        if self._client is None:
            raise RemoteConnectionError(f"Not connected to {self.host}.")

        data = (text or "").encode("utf-8")
        try:
            if self._sftp is None:
                self._sftp = self._client.open_sftp()
            with self._sftp.open(path, "wb") as handle:
                for offset in range(0, len(data), _WRITE_CHUNK):
                    token.raise_if_cancelled()
                    handle.write(data[offset:offset + _WRITE_CHUNK])
        except (paramiko.SSHException, OSError) as exc:
            logger.warning("remote.sftp write_failed", extra={"host": self.host, "path": path, "error": str(exc)})
            raise self._channel_error(f"sftp put {path}", exc) from exc

    def ensure_directory(self, path: str, token: CancellationToken | None = None) -> None:
        self.run(f"mkdir -p -- {quote(path)}", token)

    def path_exists(self, path: str, token: CancellationToken | None = None) -> bool:
        result = self.run(f"test -e {quote(path)} && echo OK || echo NO", token, check=False)
        return result.stdout.strip() == "OK"

    def is_directory(self, path: str, token: CancellationToken | None = None) -> bool:
        result = self.run(f"test -d {quote(path)} && echo OK || echo NO", token, check=False)
        return result.stdout.strip() == "OK"

    def find_files(self, base: str, pattern: str, token: CancellationToken | None = None) -> list[str]:
        """Case-insensitive recursive file search that follows symlinks and skips ``.snapshot``."""
        command = (
            f"find -L {quote(base)} -type f -iname {quote(pattern)} "
            "-not -path '*/.snapshot/*' 2>/dev/null"
        )
        # find exits non-zero on unreadable subtrees; partial output is still useful.
        result = self.run(command, token, check=False)
        return sorted(line.strip() for line in result.stdout.splitlines() if line.strip())

    def file_size(self, path: str, token: CancellationToken | None = None) -> int | None:
        result = self.run(f"stat -L -c %s -- {quote(path)} 2>/dev/null", token, check=False)
        try:
            return int(result.stdout.strip())
        except ValueError:
            return None

    def sum_extent_sectors(self, path: str, token: CancellationToken | None = None) -> int:
        """Sum of the sector counts on ``RW <n> ...`` lines of a disk descriptor."""
        command = (
            "awk '/^[[:space:]]*RW[[:space:]]+[0-9]+/ {sum+=$2} END {printf \"%d\", sum+0}' "
            f"{quote(path)} 2>/dev/null"
        )
        result = self.run(command, token, check=False)
        try:
            return int(result.stdout.strip() or 0)
        except ValueError:
            return 0

    # qemu-server helpers

    def _pvesh_json(self, api_path: str, token: CancellationToken | None, *, extra: str = "") -> object:
        command = f"pvesh get {api_path} {extra}".rstrip() + " --output-format json"
        result = self.run(command, token)
        try:
            return json.loads(result.stdout or "null")
        except ValueError as exc:
            raise RemoteCommandError(f"pvesh get {api_path}", result.exit_code, f"invalid JSON: {exc}") from exc

    def cluster_vmids(self, token: CancellationToken | None = None) -> set[int]:
        """VMIDs of every guest the cluster knows about."""
        resources = self._pvesh_json("/cluster/resources", token, extra="--type vm")
        vmids: set[int] = set()
        for resource in resources if isinstance(resources, list) else []:
            if not isinstance(resource, dict):
                continue
            try:
                vmids.add(int(resource.get("vmid")))
            except (TypeError, ValueError):
                continue
        return vmids

    def cluster_next_vmid(self, token: CancellationToken | None = None) -> int | None:
        """The cluster's own next-id suggestion, or None when it returns nothing usable."""
        value = self._pvesh_json("/cluster/nextid", token)
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def is_vmid_available(self, vmid: int, token: CancellationToken | None = None) -> bool:
        if int(vmid) in self.cluster_vmids(token):
            return False
        return not self.path_exists(self.conf_path(vmid), token)

    def first_free_driver_slot(self, vmid: int, token: CancellationToken | None = None) -> int | None:
        used = used_driver_slots(self.read_text_file(self.conf_path(vmid), token))
        for slot in range(DRIVER_SLOT_COUNT):
            if slot not in used:
                return slot
        return None

    def add_staging_disk(
        self,
        vmid: int,
        storage: str,
        slot: int,
        size_gib: int,
        token: CancellationToken | None = None,
    ) -> None:
        self.run(f"qm set {int(vmid)} --virtio{int(slot)} {quote(f'{storage}:{size_gib}')}", token)

    def set_removable_media(self, vmid: int, iso_name: str, token: CancellationToken | None = None) -> None:
        volid = iso_volume_id(iso_name)
        self.run(f"qm set {int(vmid)} --ide2 {quote(f'{volid},media=cdrom')}", token)

    def add_firmware_vars_disk(self, vmid: int, storage: str, token: CancellationToken | None = None) -> None:
        self.run(f"qm set {int(vmid)} --efidisk0 {quote(f'{storage}:0')}", token)


def node_for_host(host: ProxmoxHost) -> ProxmoxNode:
    """Build an unconnected node channel from the stored host and cluster credentials."""
    cluster = host.cluster
    return ProxmoxNode(
        host.host_address,
        cluster.ssh_username,
        resolve_secret(cluster.password),
        node_name=host.hostname or host.host_address,
    )
