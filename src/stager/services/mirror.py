"""Filesystem mirror between the active directory and a stage directory."""

import fnmatch
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional


@dataclass
class SyncReport:
    """What a sync changed, in paths relative to the destination."""

    copied: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: int = 0


class FilesystemMirror:
    """Copies one directory tree onto another, skipping excluded paths.

    Excluded paths are relative glob patterns (``settings.local.json``,
    ``sites/*/files``). A pattern matches a path or any of its parents, and
    excluded paths are neither copied nor deleted on either side.
    """

    def __init__(self, excluded_paths: Optional[Iterable[str]] = None):
        """Initialize mirror.

        Args:
            excluded_paths: Relative glob patterns never touched by a sync
        """
        self.logger = logging.getLogger("stager.mirror")
        self.excluded_paths = [p.rstrip("/") for p in (excluded_paths or [])]

    def is_excluded(self, relative_path: str) -> bool:
        """Match each pattern segment against one path segment.

        ``*`` never crosses a ``/``: ``sites/*/files`` excludes
        ``sites/default/files`` but not ``sites/a/b/files``.
        """
        parts = Path(relative_path).parts
        for pattern in self.excluded_paths:
            pattern_parts = Path(pattern).parts
            if len(pattern_parts) > len(parts):
                continue
            if all(
                fnmatch.fnmatchcase(part, segment)
                for part, segment in zip(parts, pattern_parts)
            ):
                return True
        return False

    def copy(self, source: Path, destination: Path) -> SyncReport:
        """Create ``destination`` as a fresh mirror of ``source``.

        Raises:
            FileExistsError: If destination already exists
            FileNotFoundError: If source does not exist
        """
        source, destination = Path(source), Path(destination)
        if not source.is_dir():
            raise FileNotFoundError(f"Source directory does not exist: {source}")
        if destination.exists():
            raise FileExistsError(f"Destination already exists: {destination}")
        destination.mkdir(parents=True)
        self.logger.info(f"Mirroring {source} -> {destination}")
        return self.sync(source, destination)

    def sync(self, source: Path, destination: Path) -> SyncReport:
        """Make ``destination`` match ``source`` outside excluded paths.

        Only files whose size, mtime or symlink target differ are rewritten,
        each through a temporary sibling and an atomic rename. Files and
        directories missing from source are removed from destination.

        Args:
            source: Tree to copy from
            destination: Tree to update in place

        Returns:
            SyncReport listing copied and deleted relative paths

        Raises:
            FileNotFoundError: If source or destination is not a directory
        """
        source, destination = Path(source), Path(destination)
        if not source.is_dir():
            raise FileNotFoundError(f"Source directory does not exist: {source}")
        if not destination.is_dir():
            raise FileNotFoundError(f"Destination directory does not exist: {destination}")
        self._assert_not_nested(source, destination)
        report = SyncReport()
        seen: set[str] = set()

        for root, dirs, files in os.walk(source):
            root_path = Path(root)
            rel_root = root_path.relative_to(source)

            kept_dirs = []
            for d in sorted(dirs):
                rel = (rel_root / d).as_posix()
                if self.is_excluded(rel):
                    continue
                seen.add(rel)
                src_dir = root_path / d
                dst_dir = destination / rel
                if src_dir.is_symlink():
                    # Treat directory symlinks as leaves
                    if self._copy_entry(src_dir, dst_dir):
                        report.copied.append(rel)
                    else:
                        report.unchanged += 1
                    continue
                if dst_dir.is_symlink() or dst_dir.is_file():
                    dst_dir.unlink()
                dst_dir.mkdir(exist_ok=True)
                shutil.copystat(src_dir, dst_dir)
                kept_dirs.append(d)
            dirs[:] = kept_dirs

            for name in sorted(files):
                rel = (rel_root / name).as_posix()
                if self.is_excluded(rel):
                    continue
                seen.add(rel)
                if self._copy_entry(root_path / name, destination / rel):
                    report.copied.append(rel)
                else:
                    report.unchanged += 1

        report.deleted = self._delete_missing(destination, seen)
        self.logger.info(
            f"Synced {source} -> {destination}: {len(report.copied)} copied, "
            f"{len(report.deleted)} deleted, {report.unchanged} unchanged"
        )
        return report

    def _copy_entry(self, src: Path, dst: Path) -> bool:
        """Copy one file or symlink if it differs. Returns True if written."""
        if not self._differs(src, dst):
            return False

        dst.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = dst.parent / f".{dst.name}.stager-tmp"
        try:
            if src.is_symlink():
                tmp_path.unlink(missing_ok=True)
                tmp_path.symlink_to(os.readlink(src))
            else:
                shutil.copy2(src, tmp_path)
            if dst.is_dir() and not dst.is_symlink():
                shutil.rmtree(dst)
            tmp_path.replace(dst)
        except Exception as e:
            tmp_path.unlink(missing_ok=True)
            self.logger.error(f"Failed to copy {src} -> {dst}: {e}")
            raise
        return True

    @staticmethod
    def _differs(src: Path, dst: Path) -> bool:
        if not dst.exists() and not dst.is_symlink():
            return True
        if src.is_symlink() or dst.is_symlink():
            if not (src.is_symlink() and dst.is_symlink()):
                return True
            return os.readlink(src) != os.readlink(dst)
        if dst.is_dir():
            return True
        src_stat, dst_stat = src.stat(), dst.stat()
        return (
            src_stat.st_size != dst_stat.st_size
            or src_stat.st_mtime_ns != dst_stat.st_mtime_ns
        )

    def _delete_missing(self, destination: Path, seen: set[str]) -> list[str]:
        deleted = []
        for root, dirs, files in os.walk(destination, topdown=True):
            root_path = Path(root)
            rel_root = root_path.relative_to(destination)

            kept_dirs = []
            for d in sorted(dirs):
                rel = (rel_root / d).as_posix()
                if self.is_excluded(rel):
                    continue
                path = root_path / d
                if rel not in seen:
                    if path.is_symlink():
                        path.unlink()
                    else:
                        shutil.rmtree(path)
                    deleted.append(rel)
                elif not path.is_symlink():
                    kept_dirs.append(d)
            dirs[:] = kept_dirs

            for name in sorted(files):
                rel = (rel_root / name).as_posix()
                if self.is_excluded(rel) or rel in seen:
                    continue
                (root_path / name).unlink()
                deleted.append(rel)
        return deleted

    @staticmethod
    def _assert_not_nested(source: Path, destination: Path) -> None:
        src, dst = source.resolve(), destination.resolve()
        if src == dst or src in dst.parents or dst in src.parents:
            raise ValueError(
                f"Source and destination must not contain each other: {src}, {dst}"
            )
