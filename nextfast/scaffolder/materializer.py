"""Filesystem materializer.

Writes a substituted ``ResolvedFileSet`` into the target directory so that a
failure part-way through never leaves a half-written project behind:

- Fresh (missing or empty) target: files are written into a hidden sibling
  staging directory which is renamed into place once every write succeeded.
- ``overwrite`` on a non-empty target: the staged tree replaces the old one;
  the old tree is moved aside first and restored if the swap fails.
- ``merge`` on a non-empty target: files are written in place after backing
  up every file that will be overwritten; on failure new files and
  directories are removed and the backups restored.

Independent file writes run concurrently in worker threads, bounded by
``max_workers``.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import stat
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from .errors import DirectoryExists, IOFailure
from .models import OverwritePolicy, ResolvedFile, ResolvedFileSet
from .values import is_structured_path, serialize

STAGING_PREFIX = ".nextfast-staging-"
BACKUP_PREFIX = ".nextfast-backup-"


@dataclass
class _MergeJournal:
    """Everything needed to undo an in-place merge."""

    backup_dir: Path
    backed_up: dict[Path, Path] = field(default_factory=dict)
    created_files: list[Path] = field(default_factory=list)
    created_dirs: list[Path] = field(default_factory=list)


class Materializer:
    """Writes resolved files to disk atomically with respect to failure."""

    def __init__(self, max_workers: int = 4) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers

    async def materialize(
        self,
        files: ResolvedFileSet,
        target: str | Path,
        policy: OverwritePolicy = OverwritePolicy.FAIL_IF_EXISTS,
    ) -> Path:
        """Write *files* under *target* and return the project root.

        Raises:
            DirectoryExists: *target* is a non-empty directory (or a file) and
                *policy* is ``fail``.
            IOFailure: A write failed; everything this call created has been
                removed again.
        """
        root = Path(target).absolute()

        if root.exists() and not root.is_dir():
            raise DirectoryExists(root)
        non_empty = root.is_dir() and any(root.iterdir())

        if non_empty and policy is OverwritePolicy.FAIL_IF_EXISTS:
            raise DirectoryExists(root)
        if non_empty and policy is OverwritePolicy.MERGE:
            await self._merge_in_place(files, root)
            return root
        await self._stage_and_swap(files, root, replace_existing=non_empty)
        return root

    # -- Staged creation -----------------------------------------------------

    async def _stage_and_swap(
        self, files: ResolvedFileSet, root: Path, *, replace_existing: bool
    ) -> None:
        reuse_empty_root = root.is_dir() and not replace_existing
        try:
            created_parents = _create_missing_parents(root.parent)
            staging = root.parent / f"{STAGING_PREFIX}{root.name}-{uuid.uuid4().hex[:8]}"
            staging.mkdir()
        except OSError as exc:
            raise IOFailure(root, exc.strerror or str(exc)) from exc

        try:
            await self._write_all(files, staging)
            if replace_existing:
                _swap_in(staging, root)
            else:
                if reuse_empty_root:
                    root.rmdir()
                os.replace(staging, root)
        except BaseException as exc:
            shutil.rmtree(staging, ignore_errors=True)
            if reuse_empty_root and not root.exists():
                root.mkdir()
            _remove_dirs(created_parents)
            if isinstance(exc, OSError):
                raise IOFailure(root, exc.strerror or str(exc)) from exc
            raise

    # -- In-place merge ------------------------------------------------------

    async def _merge_in_place(self, files: ResolvedFileSet, root: Path) -> None:
        journal = _MergeJournal(backup_dir=Path(tempfile.mkdtemp(prefix=BACKUP_PREFIX)))
        try:
            for rel_path in files:
                dest = root / rel_path
                for parent in reversed(dest.relative_to(root).parents):
                    directory = root / parent
                    if not directory.exists() and directory not in journal.created_dirs:
                        journal.created_dirs.append(directory)
                if dest.is_file():
                    backup = journal.backup_dir / rel_path
                    backup.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(dest, backup)
                    journal.backed_up[dest] = backup
                elif not dest.exists():
                    journal.created_files.append(dest)
            await self._write_all(files, root)
        except BaseException as exc:
            _rollback(journal)
            if isinstance(exc, OSError):
                raise IOFailure(root, exc.strerror or str(exc)) from exc
            raise
        finally:
            shutil.rmtree(journal.backup_dir, ignore_errors=True)

    # -- Parallel writes -----------------------------------------------------

    async def _write_all(self, files: ResolvedFileSet, base: Path) -> None:
        semaphore = asyncio.Semaphore(self.max_workers)

        async def _write_one(resolved: ResolvedFile) -> None:
            async with semaphore:
                data = render_bytes(resolved)
                try:
                    await asyncio.to_thread(
                        _write_file, base / resolved.path, data, resolved.executable
                    )
                except OSError as exc:
                    raise IOFailure(resolved.path, exc.strerror or str(exc)) from exc

        results = await asyncio.gather(
            *(_write_one(resolved) for resolved in files.values()),
            return_exceptions=True,
        )
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def render_bytes(resolved: ResolvedFile) -> bytes:
    """Serialise resolved content to the bytes written on disk."""
    content = resolved.content
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")
    if not is_structured_path(resolved.path):
        raise IOFailure(resolved.path, "structured content needs a .json, .yaml or .yml path")
    return serialize(content, resolved.path).encode("utf-8")


def _write_file(path: Path, data: bytes, executable: bool = False) -> None:
    """Synchronous helper: create parent dirs and write content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if executable:
        _make_executable(path)


def _make_executable(path: Path) -> None:
    """Set the executable bit on a file."""
    current = path.stat().st_mode
    path.chmod(current | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _create_missing_parents(directory: Path) -> list[Path]:
    """``mkdir -p`` that reports which directories it created, outermost first."""
    missing: list[Path] = []
    current = directory
    while not current.exists():
        missing.append(current)
        current = current.parent
    missing.reverse()
    for path in missing:
        path.mkdir(exist_ok=True)
    return missing


def _remove_dirs(directories: list[Path]) -> None:
    """Remove directories created by this run, innermost first."""
    for directory in reversed(directories):
        try:
            directory.rmdir()
        except OSError:
            pass


def _swap_in(staging: Path, root: Path) -> None:
    """Replace *root* with *staging*, restoring *root* if the rename fails."""
    aside = root.parent / f"{BACKUP_PREFIX}{root.name}-{uuid.uuid4().hex[:8]}"
    os.replace(root, aside)
    try:
        os.replace(staging, root)
    except OSError:
        os.replace(aside, root)
        raise
    shutil.rmtree(aside, ignore_errors=True)


def _rollback(journal: _MergeJournal) -> None:
    for path in journal.created_files:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
    for dest, backup in journal.backed_up.items():
        shutil.copy2(backup, dest)
    _remove_dirs(journal.created_dirs)
