"""Packing a rootfs directory into a gzip-compressed distribution tarball.

Every entry is owned by the planet user, with a few exceptions given by
``PATTERNS``: parts of the tree owned by root, permission tweaks, and
directories that are left out to shrink the image. The orbit manifest is
stored with its ``REPLACE_*`` label values substituted from the environment.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import stat
import sys
import tarfile
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Sequence

log = logging.getLogger(__name__)

PLANET_UID = 980665
PLANET_GID = 980665
ROOT_UNAME = "root"
ROOT_GNAME = "root"
MANIFEST_NAME = "orbit.manifest.json"
REPLACE_PREFIX = "REPLACE_"

_MANIFEST_FIELDS = ("version", "labels", "commands", "service", "config")
_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass(frozen=True)
class Pattern:
    """A rule that matches archive paths and adjusts or excludes their entries.

    A pattern matches either one ``name`` exactly or every path starting with
    ``prefix``, both relative to the root directory.
    """

    uid: Optional[int] = None
    gid: Optional[int] = None
    uname: str = ""
    gname: str = ""
    perms: int = 0
    prefix: str = ""
    name: str = ""
    exclude: bool = False

    def __str__(self) -> str:
        return self.name or self.prefix

    def matches(self, path: str) -> bool:
        """Tell whether the relative ``path`` falls under this pattern."""
        if self.name:
            return path == self.name
        if not self.prefix:
            raise ValueError("empty prefix")
        return path.startswith(self.prefix)

    def update_header(self, info: tarfile.TarInfo) -> tarfile.TarInfo:
        """Return a copy of ``info`` with this pattern's ownership and permissions applied."""
        updated = copy.copy(info)
        updated.pax_headers = dict(info.pax_headers)
        if self.uid is not None:
            updated.uid = self.uid
            updated.uname = ""
        if self.gid is not None:
            updated.gid = self.gid
            updated.gname = ""
        if self.uname:
            updated.uid = 0
            updated.uname = self.uname
        if self.gname:
            updated.gid = 0
            updated.gname = self.gname
        if self.perms:
            updated.mode |= self.perms & 0o777
        return updated


PATTERNS: tuple[Pattern, ...] = (
    Pattern(uid=PLANET_UID, gid=PLANET_GID, name=MANIFEST_NAME),
    Pattern(uname=ROOT_UNAME, gid=PLANET_GID, prefix="rootfs/etc", perms=0o060),
    Pattern(uname=ROOT_UNAME, gname=ROOT_GNAME, prefix="rootfs/sbin/mount."),
    Pattern(prefix="rootfs/tmp/", exclude=True),
    Pattern(prefix="rootfs/usr/share/man", exclude=True),
    Pattern(prefix="rootfs/usr/share/doc", exclude=True),
    Pattern(prefix="rootfs/var/lib/apt", exclude=True),
    # The trailing slash keeps the directory itself and drops its contents
    Pattern(prefix="rootfs/var/log/", exclude=True),
    Pattern(prefix="rootfs/var/cache", exclude=True),
    Pattern(prefix="rootfs/usr/share/locale", exclude=True),
    Pattern(
        name="rootfs/lib/systemd/system/sysinit.target.wants/proc-sys-fs-binfmt_misc.automount",
        exclude=True,
    ),
    Pattern(name="rootfs/lib/modules-load.d/open-iscsi.conf", exclude=True),
)


def _field(obj: Mapping[str, Any], key: str) -> Any:
    """Look up ``key`` case-insensitively; the last matching key wins."""
    value = None
    for name, item in obj.items():
        if name.casefold() == key:
            value = item
    return value


def _string_field(obj: Mapping[str, Any], key: str) -> str:
    value = _field(obj, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"failed to read manifest: {key} must be a string")
    return value


def _encode(value: Any) -> str:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    for char, escape in _HTML_ESCAPES.items():
        text = text.replace(char, escape)
    return text


def rewrite_manifest(data: bytes, environ: Mapping[str, str]) -> bytes:
    """Substitute label values that name ``REPLACE_*`` variables in ``environ``.

    Only the manifest's version, labels, commands, service and config are kept.
    Raises ValueError if the manifest cannot be read.
    """
    try:
        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
        document, _ = json.JSONDecoder().raw_decode(text.lstrip())
    except (UnicodeDecodeError, ValueError) as err:
        raise ValueError(f"failed to read manifest: {err}") from err
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ValueError("failed to read manifest: expected a JSON object")

    # Only the part of the value up to the first '=' is taken, as the
    # environment entries are split on every '='.
    replacements = {
        key: value.split("=")[0]
        for key, value in environ.items()
        if key.startswith(REPLACE_PREFIX)
    }

    raw_labels = _field(document, "labels")
    labels: Optional[list[dict[str, str]]] = None
    if raw_labels is not None:
        if not isinstance(raw_labels, list):
            raise ValueError("failed to read manifest: labels must be a list")
        labels = []
        for raw in raw_labels:
            if raw is None:
                raw = {}
            if not isinstance(raw, dict):
                raise ValueError("failed to read manifest: label must be an object")
            name = _string_field(raw, "name")
            value = _string_field(raw, "value")
            labels.append({"name": name, "value": replacements.get(value, value)})

    manifest = {
        "version": _string_field(document, "version"),
        "labels": labels,
        "commands": _field(document, "commands"),
        "service": _field(document, "service"),
        "config": _field(document, "config"),
    }
    parts = ",".join(f"{_encode(key)}:{_encode(manifest[key])}" for key in _MANIFEST_FIELDS)
    return ("{" + parts + "}\n").encode("utf-8")


def _header(rel_path: str, st: os.stat_result, link: str = "") -> tarfile.TarInfo:
    info = tarfile.TarInfo(rel_path)
    mode = st.st_mode
    if stat.S_ISREG(mode):
        info.type = tarfile.REGTYPE
        info.size = st.st_size
    elif stat.S_ISDIR(mode):
        info.type = tarfile.DIRTYPE
    elif stat.S_ISLNK(mode):
        info.type = tarfile.SYMTYPE
        info.linkname = link
    elif stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
        info.type = tarfile.CHRTYPE if stat.S_ISCHR(mode) else tarfile.BLKTYPE
        info.devmajor = os.major(st.st_rdev)
        info.devminor = os.minor(st.st_rdev)
    elif stat.S_ISFIFO(mode):
        info.type = tarfile.FIFOTYPE
    elif stat.S_ISSOCK(mode):
        raise ValueError(f"{rel_path}: sockets not supported")
    else:
        raise ValueError(f"{rel_path}: unknown file mode {mode:o}")
    info.mode = stat.S_IMODE(mode)
    info.uid = PLANET_UID
    info.gid = PLANET_GID
    info.uname = ""
    info.gname = ""
    info.mtime = int(st.st_mtime)
    return info


def _walk(root: str, rel: str = "") -> Iterator[tuple[str, str]]:
    """Yield (path, relative path) for everything below ``root`` in lexical order."""
    directory = os.path.join(root, rel) if rel else root
    for name in sorted(os.listdir(directory)):
        rel_path = f"{rel}/{name}" if rel else name
        path = os.path.join(directory, name)
        yield path, rel_path
        if stat.S_ISDIR(os.lstat(path).st_mode):
            yield from _walk(root, rel_path)


def _store_manifest(path: str, rel_path: str, st: os.stat_result, archive: tarfile.TarFile) -> None:
    with open(path, "rb") as handle:
        data = rewrite_manifest(handle.read(), os.environ)
    info = _header(rel_path, st)
    info.size = len(data)
    archive.addfile(info, _BytesReader(data))


class _BytesReader:
    """Minimal readable object over a bytes value."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def read(self, size: int = -1) -> bytes:
        end = len(self._data) if size < 0 else self._pos + size
        chunk = self._data[self._pos:end]
        self._pos += len(chunk)
        return chunk


def _add_entry(archive: tarfile.TarFile, path: str, rel_path: str) -> None:
    st = os.lstat(path)
    if rel_path == MANIFEST_NAME:
        _store_manifest(path, rel_path, st, archive)
        return
    link = ""
    if stat.S_ISLNK(st.st_mode):
        link = os.readlink(path)
        log.debug("Symlink %s", link)
    info = _header(rel_path, st, link)
    for pattern in PATTERNS:
        if not pattern.matches(rel_path):
            continue
        if pattern.exclude:
            log.debug("Excluding %s", rel_path)
            return
        info = pattern.update_header(info)
        log.debug("Found match %s for %s", path, pattern)
        break
    log.debug("Adding %s", rel_path)
    if info.type == tarfile.REGTYPE and info.size > 0:
        with open(path, "rb") as handle:
            archive.addfile(info, handle)
    else:
        archive.addfile(info)


def create_tarball(root_dir: str, output_tarball: str) -> None:
    """Archive the contents of ``root_dir`` into the gzip tarball ``output_tarball``."""
    with tarfile.open(output_tarball, "w:gz", format=tarfile.PAX_FORMAT) as archive:
        for path, rel_path in _walk(root_dir):
            _add_entry(archive, path, rel_path)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command entry point: create-tarball <rootfs-dir> <output-tarball>."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print("Use: create-tarball <rootfs-dir> <output-tarball>", file=sys.stderr)
        return 1
    root_dir, output_tarball = args[0], args[1]
    try:
        create_tarball(root_dir, output_tarball)
    except (OSError, ValueError, tarfile.TarError) as err:
        log.error("%s", err)
        print(f"create-tarball: {err}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())