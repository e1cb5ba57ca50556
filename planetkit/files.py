"""File helpers: hosts files, systemd drop-ins, atomic writes and YAML conversion."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from typing import IO, Iterable, Optional, Union

import yaml

log = logging.getLogger(__name__)

SHARED_DIR_MASK = 0o755
SHARED_READ_MASK = 0o644

_IS_WINDOWS = sys.platform == "win32"
_PRODUCT_NAME_PATH = "/sys/class/dmi/id/product_name"
_GCE_NAMES = ("Google", "Google Compute Engine")


@dataclass(frozen=True)
class HostEntry:
    """Maps space-separated hostnames to an IP."""

    hostnames: str
    ip: str


def write_hosts(writer: IO[str], entries: Iterable[HostEntry]) -> None:
    """Write entries to ``writer`` in hosts file format."""
    for entry in entries:
        writer.write(f"{entry.ip} {entry.hostnames}\n")


def write_drop_in(drop_in_dir: str, drop_in_file: str, contents: bytes) -> None:
    """Create ``drop_in_file`` inside ``drop_in_dir`` with the given contents."""
    os.makedirs(drop_in_dir, mode=SHARED_DIR_MASK, exist_ok=True)
    path = os.path.join(drop_in_dir, drop_in_file)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SHARED_READ_MASK)
    with os.fdopen(fd, "wb") as handle:
        handle.write(contents)


def drop_in_dir(unit: str) -> str:
    """Return the drop-in directory name for a systemd unit."""
    return f"{unit}.d"


def safe_write_file(filename: str, data: bytes, perm: int) -> None:
    """Write ``data`` to a temporary file and atomically rename it into place."""
    directory = os.path.dirname(filename) or "."
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix="safewrite")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.chmod(tmp_path, perm)
        os.replace(tmp_path, filename)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def exit_status_from_error(err: BaseException) -> Optional[int]:
    """Return the exit status carried by a failed process error, or None.

    A process that did not exit normally (for example, killed by a signal)
    reports -1.
    """
    for candidate in (err, err.__cause__):
        if isinstance(candidate, subprocess.CalledProcessError):
            code = candidate.returncode
            return code if code >= 0 else -1
    return None


class _YAMLLoader(yaml.SafeLoader):
    """Safe loader that keeps timestamps as plain strings."""


_YAMLLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _key_to_str(key: object) -> str:
    if isinstance(key, bool):
        return "true" if key else "false"
    if key is None:
        return "null"
    return str(key)


def _json_ready(value: object) -> object:
    if isinstance(value, dict):
        return {_key_to_str(k): _json_ready(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_ready(item) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return value


def to_json(data: Union[bytes, str]) -> bytes:
    """Convert a single YAML document into JSON.

    Input that already starts with ``{`` is returned unchanged.
    Raises ValueError on invalid YAML.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    if data.lstrip().startswith(b"{"):
        return data
    try:
        document = yaml.load(data, Loader=_YAMLLoader)
    except yaml.YAMLError as err:
        raise ValueError(f"invalid YAML: {err}") from err
    return json.dumps(_json_ready(document), separators=(",", ":")).encode("utf-8")


def on_gce_vm() -> bool:
    """Return True when running on a Google Compute Engine VM."""
    if _IS_WINDOWS:
        try:
            output = subprocess.run(
                ["wmic", "computersystem", "get", "model"],
                capture_output=True,
                check=True,
            ).stdout.decode("utf-8", errors="replace")
        except (OSError, subprocess.CalledProcessError):
            return False
        fields = output.strip().split("\r\n")
        if len(fields) != 2:
            log.info("Received unexpected value retrieving system model: %r", output)
            return False
        name = fields[1]
    else:
        try:
            with open(_PRODUCT_NAME_PATH, encoding="utf-8", errors="replace") as handle:
                name = handle.read().strip()
        except OSError as err:
            log.info("Error while reading product_name: %s", err)
            return False
    return name in _GCE_NAMES