"""Remote file system operations over SFTP, with shell fallbacks.

SFTP gives byte-exact content and real metadata; ``ls -la`` and ``find``
cover what SFTP does not expose cleanly (a listing that works on hosts
without the sftp subsystem, recursive name search).
"""

from __future__ import annotations

import io
import posixpath
import shlex
import stat as stat_mod
from datetime import datetime, timezone

import paramiko

from hostpilot.config import Settings, settings
from hostpilot.errors import ConnectTimeout, HostError, NotFound, UnsupportedOperation
from hostpilot.models.commands import HostCredential
from hostpilot.models.files import (
    FileEntry,
    FileStat,
    MultiUploadResponse,
    SearchResponse,
    UploadedFile,
    UploadFailure,
)
from hostpilot.services.ssh_executor import SSHExecutor
from hostpilot.utils.linux_parser import (
    join_remote,
    ls_reports_missing,
    parse_find_output,
    parse_ls_la,
    sort_entries,
)
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)

_GLOB_SPECIALS = "\\*?[]"


def escape_glob(text: str) -> str:
    """Backslash-escape ``find -iname`` metacharacters so *text* matches literally."""
    return "".join("\\" + ch if ch in _GLOB_SPECIALS else ch for ch in text)


def search_root(path: str) -> str:
    """Normalised absolute start point for ``find``.

    ``find`` parses a leading ``-`` as part of its expression even when
    quoted, so only absolute paths are accepted.
    """
    root = posixpath.normpath(path or "")
    if not root.startswith("/"):
        raise UnsupportedOperation(f"search path must be absolute: {path!r}")
    return root


def build_search_command(
    query: str,
    path: str,
    *,
    max_depth: int,
    max_results: int,
    timeout_seconds: int,
) -> str:
    """Assemble the remote ``find`` pipeline; every interpolated value is quoted."""
    path = search_root(path)
    pattern = shlex.quote(f"*{escape_glob(query)}*")
    return (
        f"timeout {int(timeout_seconds)} find {shlex.quote(path)}"
        f" -maxdepth {int(max_depth)}"
        f" \\( -iname {pattern} -type f -printf 'f|%p\\n' \\)"
        f" -o \\( -iname {pattern} -type d -printf 'd|%p\\n' \\)"
        f" 2>/dev/null | head -n {int(max_results)}"
    )


def upload_target(base_path: str, name: str) -> str:
    """Remote path for one file of a folder upload."""
    parts = [p for p in name.split("/") if p]
    relative = "/".join(parts[1:]) if len(parts) > 1 else "/".join(parts)
    if not relative or ".." in relative.split("/"):
        raise UnsupportedOperation(f"invalid upload file name: {name!r}")
    return posixpath.join(base_path, relative) if base_path else relative


def _makedirs(sftp: paramiko.SFTPClient, directory: str) -> None:
    current = "/" if directory.startswith("/") else ""
    for part in (p for p in directory.split("/") if p):
        current = posixpath.join(current, part) if current else part
        try:
            sftp.stat(current)
        except FileNotFoundError:
            sftp.mkdir(current)


def _mtime(value) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _entry_from_attr(directory: str, attr: paramiko.SFTPAttributes) -> FileEntry:
    is_dir = stat_mod.S_ISDIR(attr.st_mode or 0)
    return FileEntry(
        name=attr.filename,
        path=join_remote(directory, attr.filename),
        is_directory=is_dir,
        size=0 if is_dir else (attr.st_size or 0),
        permissions=stat_mod.filemode(attr.st_mode or 0),
        modified=_mtime(attr.st_mtime) or datetime.now(timezone.utc),
    )


class FileBridge:
    """List, read, write, stat and search files on a managed host."""

    def __init__(self, executor: SSHExecutor, cfg: Settings | None = None) -> None:
        self._executor = executor
        self._cfg = cfg or settings

    # ── listing ───────────────────────────────────────────────────────

    async def list_directory(self, credential: HostCredential, path: str) -> list[FileEntry]:
        """Entries of *path*, directories first then by name."""

        def op(sftp: paramiko.SFTPClient) -> list[FileEntry]:
            return [_entry_from_attr(path, a) for a in sftp.listdir_attr(path)]

        try:
            entries = await self._executor.sftp(credential, op)
        except ConnectTimeout:
            raise
        except HostError as exc:
            log.info("files.sftp_list_fallback", host=credential.host, path=path, error=exc.message)
            return await self._list_with_ls(credential, path)
        return sort_entries(entries)

    async def _list_with_ls(self, credential: HostCredential, path: str) -> list[FileEntry]:
        result = await self._executor.run(
            credential, f"ls -la -- {shlex.quote(path)} 2>&1",
        )
        if result.exit_code is None:
            result.raise_for_status()
        if ls_reports_missing(result.stdout):
            raise NotFound(f"no such file or directory: {path}")
        result.raise_for_status()
        return parse_ls_la(result.stdout, path)

    # ── content ───────────────────────────────────────────────────────

    async def read_file(self, credential: HostCredential, path: str) -> str:
        """Whole file, UTF-8 decoded with invalid bytes replaced."""

        def op(sftp: paramiko.SFTPClient) -> bytes:
            with sftp.open(path, "rb") as fh:
                return fh.read()

        data = await self._executor.sftp(credential, op)
        return data.decode("utf-8", errors="replace")

    async def write_file(self, credential: HostCredential, path: str, content: str) -> None:
        """Overwrite *path* with *content*; last writer wins."""
        payload = content.encode("utf-8")

        def op(sftp: paramiko.SFTPClient) -> None:
            with sftp.open(path, "wb") as fh:
                fh.write(payload)

        await self._executor.sftp(credential, op)
        log.info("files.written", host=credential.host, path=path, size=len(payload))

    # ── transfer ──────────────────────────────────────────────────────

    async def upload(self, credential: HostCredential, path: str, data: bytes) -> int:
        """Store raw bytes at *path*, replacing any existing file."""

        def op(sftp: paramiko.SFTPClient) -> None:
            sftp.putfo(io.BytesIO(data), path)

        await self._executor.sftp(credential, op)
        log.info("files.uploaded", host=credential.host, path=path, size=len(data))
        return len(data)

    async def upload_many(
        self,
        credential: HostCredential,
        base_path: str,
        files: list[tuple[str, bytes]],
    ) -> MultiUploadResponse:
        """Upload a folder's files over one SFTP session.

        Each name is a browser relative path (``folder/sub/file.txt``); its
        first component is dropped since *base_path* already names the
        folder.  Missing parent directories are created.  A file that fails
        is reported and the rest still go through.
        """
        targets: list[tuple[str, str, bytes]] = []
        rejected: list[UploadFailure] = []
        for name, data in files:
            try:
                targets.append((name, upload_target(base_path, name), data))
            except UnsupportedOperation as exc:
                rejected.append(UploadFailure(filename=name, error=exc.message))

        def op(sftp: paramiko.SFTPClient) -> MultiUploadResponse:
            response = MultiUploadResponse(errors=list(rejected))
            if base_path:
                _makedirs(sftp, base_path)
            for name, remote, data in targets:
                try:
                    parent = posixpath.dirname(remote)
                    if parent:
                        _makedirs(sftp, parent)
                    sftp.putfo(io.BytesIO(data), remote)
                except (OSError, paramiko.SSHException) as exc:
                    response.errors.append(UploadFailure(filename=name, error=str(exc)))
                else:
                    response.results.append(UploadedFile(path=remote, size=len(data)))
            return response

        response = await self._executor.sftp(credential, op)
        log.info(
            "files.uploaded_many",
            host=credential.host,
            base_path=base_path,
            uploaded=response.uploaded,
            failed=response.failed,
        )
        return response

    async def download(self, credential: HostCredential, path: str) -> bytes:
        """Raw bytes of a regular file; directories are refused."""

        def op(sftp: paramiko.SFTPClient) -> bytes:
            if stat_mod.S_ISDIR(sftp.stat(path).st_mode or 0):
                raise UnsupportedOperation(f"cannot download a directory: {path}")
            buf = io.BytesIO()
            sftp.getfo(path, buf)
            return buf.getvalue()

        data = await self._executor.sftp(credential, op)
        log.info("files.downloaded", host=credential.host, path=path, size=len(data))
        return data

    async def stat(self, credential: HostCredential, path: str) -> FileStat:
        attr = await self._executor.sftp(credential, lambda sftp: sftp.stat(path))
        mode = attr.st_mode or 0
        return FileStat(
            path=path,
            size=attr.st_size or 0,
            modified=_mtime(attr.st_mtime),
            is_directory=stat_mod.S_ISDIR(mode),
            is_file=stat_mod.S_ISREG(mode),
            permissions=stat_mod.filemode(mode),
        )

    # ── search ────────────────────────────────────────────────────────

    async def search(
        self, credential: HostCredential, query: str, path: str = "/",
    ) -> SearchResponse:
        """Case-insensitive substring match on names under *path*."""
        if not query:
            raise UnsupportedOperation("search query must not be empty")
        command = build_search_command(
            query,
            path,
            max_depth=self._cfg.search_max_depth,
            max_results=self._cfg.search_max_results,
            timeout_seconds=self._cfg.search_timeout_seconds,
        )
        result = await self._executor.run(credential, command)
        # find may exit nonzero on unreadable subtrees; only transport failures count
        if result.exit_code is None:
            result.raise_for_status()
        results = parse_find_output(result.stdout, path)
        log.info("files.search", host=credential.host, query=query, hits=len(results))
        return SearchResponse(query=query, path=path, results=results)

    # ── mutations ─────────────────────────────────────────────────────

    async def mkdir(self, credential: HostCredential, path: str) -> None:
        await self._executor.sftp(credential, lambda sftp: sftp.mkdir(path))
        log.info("files.mkdir", host=credential.host, path=path)

    async def delete(
        self, credential: HostCredential, path: str, *, is_directory: bool = False,
    ) -> None:
        """Remove a file, or an empty directory when *is_directory* is set."""
        if posixpath.normpath(path).strip("/") == "":
            raise UnsupportedOperation("refusing to delete the root directory")

        def op(sftp: paramiko.SFTPClient) -> None:
            if is_directory:
                sftp.rmdir(path)
            else:
                sftp.remove(path)

        await self._executor.sftp(credential, op)
        log.info("files.deleted", host=credential.host, path=path, is_directory=is_directory)

    async def rename(self, credential: HostCredential, old_path: str, new_path: str) -> None:
        await self._executor.sftp(credential, lambda sftp: sftp.rename(old_path, new_path))
        log.info("files.renamed", host=credential.host, old_path=old_path, new_path=new_path)
