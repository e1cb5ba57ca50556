"""Importing saved container images into a private docker registry.

Each tarball is expected in the format written by ``docker save -o``. Its
``repositories`` entry names the image, which is then loaded into docker,
tagged with the registry address and pushed.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import posixpath
import stat
import subprocess
import sys
import tarfile
from typing import IO, Any, Mapping, Optional, Sequence

from planetkit.flags import HostPort
from planetkit.retry import retry

log = logging.getLogger(__name__)

REPOSITORIES_ENTRY = "repositories"
IMPORT_ATTEMPTS = 6
IMPORT_INTERVAL = 5.0


class DockerImportError(Exception):
    """Raised when an image cannot be imported into the registry."""


class DockerCommandError(subprocess.CalledProcessError):
    """A docker command failed; ``output`` holds its combined output."""

    def __str__(self) -> str:
        text = self.output.decode("utf-8", errors="replace") if self.output else ""
        return f"{super().__str__()}\n{text}".rstrip("\n")


class _CommandLineError(Exception):
    pass


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise _CommandLineError(message)


class _ChainedReader:
    """Readable object that replays ``head`` before reading from ``rest``."""

    def __init__(self, head: bytes, rest: IO[bytes]):
        self._head = head
        self._rest = rest

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data, self._head = self._head + self._rest.read(), b""
            return data
        if self._head:
            data, self._head = self._head[:size], self._head[size:]
            if len(data) < size:
                data += self._rest.read(size - len(data))
            return data
        return self._rest.read(size)


def _clean_join(directory: str, name: str) -> str:
    parts = [part for part in (directory, name) if part]
    if not parts:
        return ""
    path = posixpath.normpath("/".join(parts))
    if path.startswith("//"):
        path = "/" + path.lstrip("/")
    return path


def image_url(repo: Mapping[str, Mapping[str, str]]) -> str:
    """Build ``repository/image_name:image_version`` from repository metadata.

    The first image that has a version is used; an empty string is returned
    when there is none.
    """
    for image_path, details in repo.items():
        repo_url, _, image_name = image_path.rpartition("/")
        if repo_url or image_path.startswith("/"):
            repo_url += "/"
        for version in details:
            return _clean_join(repo_url, f"{image_name}:{version}")
    return ""


def docker_command(*args: str) -> None:
    """Run docker with ``args``; raise DockerCommandError with its output on failure."""
    cmd = ["docker", *args]
    result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    if result.returncode != 0:
        raise DockerCommandError(result.returncode, cmd, output=result.stdout)


def _output_of(err: DockerCommandError) -> str:
    return (err.output or b"").decode("utf-8", errors="replace")


def _import_with_repo(repo: Mapping[str, Mapping[str, str]], path: str, registry_addr: str) -> None:
    url = image_url(repo)
    try:
        docker_command("load", "-i", path)
    except DockerCommandError as err:
        raise DockerImportError(f"failed to load image into docker:\n{_output_of(err)}") from err
    repo_tag = f"{registry_addr}/{url}"
    try:
        docker_command("tag", url, repo_tag)
    except DockerCommandError as err:
        raise DockerImportError(f"failed to tag image in registry:\n{_output_of(err)}") from err
    try:
        docker_command("push", repo_tag)
    except DockerCommandError as err:
        raise DockerImportError(f"failed to push image to registry:\n{_output_of(err)}") from err


def _parse_repo(data: bytes) -> dict[str, dict[str, str]]:
    try:
        document: Any = json.loads(data)
    except (UnicodeDecodeError, ValueError) as err:
        raise ValueError(f"invalid repositories metadata: {err}") from err
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError("invalid repositories metadata: expected a JSON object")
    repo: dict[str, dict[str, str]] = {}
    for image, versions in document.items():
        if versions is None:
            repo[image] = {}
            continue
        if not isinstance(versions, dict):
            raise ValueError(f"invalid repositories metadata for {image}: expected an object")
        for version, digest in versions.items():
            if digest is not None and not isinstance(digest, str):
                raise ValueError(
                    f"invalid repositories metadata for {image}:{version}: expected a string"
                )
        repo[image] = {version: digest or "" for version, digest in versions.items()}
    return repo


def import_image_from_tarball(fileobj: IO[bytes], path: str, registry_addr: str) -> None:
    """Import the image saved in the tar stream ``fileobj`` into the registry.

    ``path`` names the same archive and is what ``docker load`` reads.
    """
    log.info("importing from tarball %s", path)
    head = fileobj.read(tarfile.BLOCKSIZE)
    if not head:
        return
    with tarfile.open(fileobj=_ChainedReader(head, fileobj), mode="r|") as archive:
        for member in archive:
            if member.name != REPOSITORIES_ENTRY:
                continue
            extracted = archive.extractfile(member)
            data = extracted.read() if extracted is not None else b""
            repo = _parse_repo(data)

            def attempt() -> None:
                try:
                    _import_with_repo(repo, path, registry_addr)
                except (DockerImportError, OSError) as err:
                    raise DockerImportError(
                        f"failed to import {path} into docker: {err}, will retry"
                    ) from err

            retry(attempt, IMPORT_ATTEMPTS, IMPORT_INTERVAL)


def _import_file(path: str, registry_addr: str) -> None:
    log.info("processing file %s", path)
    try:
        handle = open(path, "rb")
    except OSError as err:
        raise DockerImportError(f"failed to open tarball `{path}` for reading: {err}") from err
    with handle:
        try:
            import_image_from_tarball(handle, path, registry_addr)
        except (DockerImportError, OSError, ValueError, tarfile.TarError) as err:
            raise DockerImportError(
                f"failed to import image from tarball `{path}`: {err}"
            ) from err


def bulk_import(directory: str, registry_addr: str) -> None:
    """Import every image tarball directly inside ``directory``.

    Subdirectories are not descended into; files are handled in name order.
    """
    if not stat.S_ISDIR(os.lstat(directory).st_mode):
        _import_file(directory, registry_addr)
        return
    for name in sorted(os.listdir(directory)):
        path = os.path.join(directory, name)
        if stat.S_ISDIR(os.lstat(path).st_mode):
            continue
        _import_file(path, registry_addr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command entry point: docker-import --dir DIR --registry-addr HOST:PORT."""
    parser = _Parser(
        prog="docker-import",
        description="Import container images from a directory into private docker registry",
    )
    parser.add_argument("--dir", required=True, help="Directory with image tarballs")
    parser.add_argument(
        "--registry-addr",
        required=True,
        type=HostPort.parse,
        help="Address of the docker registry for import",
    )
    args_list = list(sys.argv[1:] if argv is None else argv)
    try:
        args = parser.parse_args(args_list)
    except _CommandLineError as err:
        print(
            f"failed to parse command line: {err}.\nUse docker-import --help for help.",
            file=sys.stderr,
        )
        return 1

    log.info("processing files in %s", args.dir)
    try:
        bulk_import(args.dir, str(args.registry_addr))
    except (DockerImportError, OSError, ValueError, tarfile.TarError) as err:
        log.error("%s", err)
        print(f"docker-import: {err}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())