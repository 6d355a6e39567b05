# /folder_mirror.py
"""
Folder Mirror (no UI)
- Periodically mirrors a source folder into a replica folder (one-way).
- Every tick re-walks both trees; nothing is cached between ticks.
- Two phases run in parallel on each tick:
  - sync: copies files whose replica is missing or older (mtime only, no hashing)
  - cleanup: deletes replica files missing from the source, then removes
    empty replica directories deepest-first
- Read-only attributes are cleared on copies and before deletes.
- Optional gitignore-style rules in <source>/.mirrorignore exclude paths.
- Styled console output:
  - Copied green
  - Deleted yellow
  - Removed empty directory magenta
  - errors red
- Log file is always plain (no color codes) and only ever appended to.

Usage
  pip install pathspec colorama
  python folder_mirror.py <source> <replica> <interval_seconds> <log_file>
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import stat
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from colorama import Fore, Style
from colorama import init as colorama_init
from pathspec import PathSpec

LOGGER_NAME = "folder_mirror"
IGNORE_FILENAME = ".mirrorignore"
COPY_CHUNK = 1024 * 1024

COPIED = "Copied"
DELETED = "Deleted"
REMOVED_DIR = "Removed empty directory"
ERROR = "ERROR"


# -------------------------
# Console styling
# -------------------------

ACTION_COLORS = {
    COPIED: Fore.GREEN,
    DELETED: Fore.YELLOW,
    REMOVED_DIR: Fore.MAGENTA,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except (AttributeError, ValueError):
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Fore.RED}{base}{Style.RESET_ALL}"

        action = getattr(record, "action", None)
        color = ACTION_COLORS.get(action or "")
        if color and action in base:
            base = base.replace(action, f"{color}{action}{Style.RESET_ALL}", 1)
        return base


def setup_logger(log_file: Path, name: str = LOGGER_NAME) -> logging.Logger:
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if logger.handlers:
        return logger

    use_color = _supports_color(sys.stdout)
    if use_color:
        colorama_init()

    fmt = "%(asctime)s - %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
    fh.setLevel(logging.INFO)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(ColorizingFormatter(use_color=use_color, fmt=fmt, datefmt=datefmt))

    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger


def log_event(
    logger: logging.Logger,
    action: str,
    message: str,
    level: int = logging.INFO,
) -> None:
    logger.log(level, "%s: %s", action, message, extra={"action": action})


# -------------------------
# Config / roots
# -------------------------

@dataclass(frozen=True)
class RootPair:
    source: Path
    replica: Path


@dataclass(frozen=True)
class MirrorConfig:
    roots: RootPair
    interval_sec: int
    log_file: Path


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def validate_roots(source: Path, replica: Path) -> RootPair:
    """Resolve both roots, check the source exists and create the replica."""
    source = source.expanduser().resolve()
    replica = replica.expanduser().resolve()

    if not source.is_dir():
        raise ValueError(f"Source folder does not exist or is not a folder: {source}")
    if source == replica:
        raise ValueError("Source and replica folders must be different.")
    if _is_subpath(replica, source):
        raise ValueError("Replica folder must NOT be inside source folder (would mirror itself).")
    if _is_subpath(source, replica):
        raise ValueError("Source folder must NOT be inside replica folder (cleanup would delete it).")

    replica.mkdir(parents=True, exist_ok=True)
    return RootPair(source=source, replica=replica)


# -------------------------
# Path mapping + freshness
# -------------------------

class PathMappingError(ValueError):
    pass


def relative_to_root(root: Path, path: Path) -> Path:
    try:
        rel = path.relative_to(root)
    except ValueError:
        raise PathMappingError(f"{path} is not under {root}") from None
    if not rel.parts:
        raise PathMappingError(f"{path} is the root itself, not an entry under it")
    return rel


def map_path(root_from: Path, root_to: Path, path: Path) -> Path:
    return root_to / relative_to_root(root_from, path)


def needs_copy(source_mtime_ns: int, replica_exists: bool, replica_mtime_ns: Optional[int]) -> bool:
    """
    Equal timestamps count as synced; a replica newer than its source
    (clock skew) is left alone.
    """
    if not replica_exists or replica_mtime_ns is None:
        return True
    return source_mtime_ns > replica_mtime_ns


# -------------------------
# Tree walking
# -------------------------

@dataclass(frozen=True)
class TreeEntry:
    path: Path
    relative: Path
    is_dir: bool
    mtime_ns: Optional[int] = None
    read_only: bool = False


def walk_tree(root: Path) -> Iterator[TreeEntry]:
    """Lazily yield every file and directory below ``root``.

    Directories are yielded before their contents; sibling order is whatever
    the OS returns. Entries and subdirectories that disappear mid-walk are
    skipped. Any other ``OSError`` from listing a directory propagates.
    Symlinked directories are not followed.
    """
    pending = [root]
    while pending:
        directory = pending.pop()
        try:
            listing = os.scandir(directory)
        except FileNotFoundError:
            if directory == root:
                raise
            continue

        with listing as entries:
            for entry in entries:
                path = Path(entry.path)
                try:
                    if entry.is_dir(follow_symlinks=False):
                        yield TreeEntry(path=path, relative=path.relative_to(root), is_dir=True)
                        pending.append(path)
                        continue
                    if not entry.is_file():
                        continue
                    st = entry.stat()
                except FileNotFoundError:
                    continue

                yield TreeEntry(
                    path=path,
                    relative=path.relative_to(root),
                    is_dir=False,
                    mtime_ns=int(st.st_mtime_ns),
                    read_only=not st.st_mode & stat.S_IWUSR,
                )


# -------------------------
# Ignore rules
# -------------------------

class IgnoreMatcher:
    def __init__(self, patterns: list[str]):
        self.patterns = [p for p in patterns if p.strip() and not p.lstrip().startswith("#")]
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    @classmethod
    def load(cls, source_root: Path) -> "IgnoreMatcher":
        try:
            text = (source_root / IGNORE_FILENAME).read_text(encoding="utf-8")
        except FileNotFoundError:
            return cls([])
        return cls(text.splitlines())

    def is_ignored(self, relative: Path) -> bool:
        if not self.patterns:
            return False
        return self.spec.match_file(relative.as_posix())


# -------------------------
# File operations
# -------------------------

def _clear_read_only(path: Path) -> None:
    mode = path.stat().st_mode
    if not mode & stat.S_IWUSR:
        os.chmod(path, stat.S_IMODE(mode) | stat.S_IWUSR)


def _mtime_ns_or_none(path: Path) -> Optional[int]:
    try:
        return int(path.stat().st_mtime_ns)
    except FileNotFoundError:
        return None


def _is_regular_file(path: Path) -> bool:
    # only a missing path counts as absent; other stat errors propagate
    try:
        st = path.stat()
    except (FileNotFoundError, NotADirectoryError):
        return False
    return stat.S_ISREG(st.st_mode)


def _is_empty_dir(path: Path) -> bool:
    with os.scandir(path) as entries:
        return next(entries, None) is None


def copy_file(src: Path, dst: Path) -> None:
    """Copy bytes, mode and timestamps of ``src`` onto ``dst``.

    The destination is made writable before its timestamps are set.
    """
    try:
        _clear_read_only(dst)
    except FileNotFoundError:
        pass

    with src.open("rb") as fsrc:
        src_stat = os.fstat(fsrc.fileno())
        with dst.open("wb") as fdst:
            shutil.copyfileobj(fsrc, fdst, COPY_CHUNK)

    os.chmod(dst, stat.S_IMODE(src_stat.st_mode) | stat.S_IWUSR)
    os.utime(dst, ns=(src_stat.st_atime_ns, src_stat.st_mtime_ns))


def delete_file(path: Path, read_only: bool = True) -> None:
    if read_only:
        _clear_read_only(path)
    path.unlink()


# -------------------------
# Sync phases
# -------------------------

@dataclass
class PhaseResult:
    phase: str
    copied: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    removed_dirs: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    aborted: Optional[str] = None

    @property
    def events(self) -> int:
        return len(self.copied) + len(self.deleted) + len(self.removed_dirs)

    @property
    def ok(self) -> bool:
        return not self.errors and self.aborted is None


def sync_files(
    config: MirrorConfig,
    logger: logging.Logger,
    ignore: Optional[IgnoreMatcher] = None,
) -> PhaseResult:
    """Copy new and newer source files into the replica.

    Per-file failures are logged and skipped. A failure to list a source
    directory ends the phase by propagating to the caller.
    """
    roots = config.roots
    result = PhaseResult(phase="sync")

    for entry in walk_tree(roots.source):
        if entry.is_dir:
            continue
        if ignore is not None and ignore.is_ignored(entry.relative):
            continue

        rel = entry.relative.as_posix()
        try:
            replica_path = map_path(roots.source, roots.replica, entry.path)
            replica_path.parent.mkdir(parents=True, exist_ok=True)

            replica_mtime_ns = _mtime_ns_or_none(replica_path)
            if not needs_copy(entry.mtime_ns, replica_mtime_ns is not None, replica_mtime_ns):
                continue

            copy_file(entry.path, replica_path)
        except OSError as e:
            log_event(logger, ERROR, f"Copy failed for {rel} | {e}", level=logging.ERROR)
            result.errors.append(f"{rel}: {e}")
            continue

        log_event(logger, COPIED, rel)
        result.copied.append(rel)

    return result


def cleanup_replica(
    config: MirrorConfig,
    logger: logging.Logger,
    ignore: Optional[IgnoreMatcher] = None,
) -> PhaseResult:
    """Delete replica files without a source counterpart, then empty dirs.

    Directories are handled deepest-first so a directory emptied by removing
    its last child is removed in the same pass.
    """
    roots = config.roots
    result = PhaseResult(phase="cleanup")
    directories: list[TreeEntry] = []

    for entry in walk_tree(roots.replica):
        if entry.is_dir:
            directories.append(entry)
            continue

        rel = entry.relative.as_posix()
        try:
            source_path = map_path(roots.replica, roots.source, entry.path)
            ignored = ignore is not None and ignore.is_ignored(entry.relative)
            if not ignored and _is_regular_file(source_path):
                continue

            delete_file(entry.path, read_only=entry.read_only)
        except FileNotFoundError:
            continue
        except OSError as e:
            log_event(logger, ERROR, f"Delete failed for {rel} | {e}", level=logging.ERROR)
            result.errors.append(f"{rel}: {e}")
            continue

        log_event(logger, DELETED, rel)
        result.deleted.append(rel)

    for directory in sorted(directories, key=lambda d: len(d.relative.parts), reverse=True):
        rel = directory.relative.as_posix()
        try:
            if not _is_empty_dir(directory.path):
                continue
            directory.path.rmdir()
        except FileNotFoundError:
            continue
        except OSError as e:
            log_event(logger, ERROR, f"Remove directory failed for {rel} | {e}", level=logging.ERROR)
            result.errors.append(f"{rel}: {e}")
            continue

        log_event(logger, REMOVED_DIR, rel)
        result.removed_dirs.append(rel)

    return result


# -------------------------
# Orchestration
# -------------------------

@dataclass
class TickReport:
    sync: PhaseResult
    cleanup: PhaseResult

    @property
    def events(self) -> int:
        return self.sync.events + self.cleanup.events

    @property
    def ok(self) -> bool:
        return self.sync.ok and self.cleanup.ok


def run_tick(config: MirrorConfig, logger: logging.Logger) -> TickReport:
    """
    Run the sync and cleanup phases in parallel. The phases share the replica
    without a lock; an error escaping one phase aborts only that phase.
    """
    ignore = IgnoreMatcher.load(config.roots.source)

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="folder-mirror") as pool:
        futures = {
            "sync": pool.submit(sync_files, config, logger, ignore),
            "cleanup": pool.submit(cleanup_replica, config, logger, ignore),
        }

    results: dict[str, PhaseResult] = {}
    for phase, future in futures.items():
        try:
            results[phase] = future.result()
        except Exception as e:
            log_event(logger, ERROR, f"{phase} phase aborted | {e}", level=logging.ERROR)
            results[phase] = PhaseResult(phase=phase, aborted=str(e))

    return TickReport(sync=results["sync"], cleanup=results["cleanup"])


def run_forever(
    config: MirrorConfig,
    logger: logging.Logger,
    stop_event: Optional[threading.Event] = None,
) -> None:
    if stop_event is None:
        stop_event = threading.Event()

    while not stop_event.is_set():
        try:
            run_tick(config, logger)
        except Exception as e:
            log_event(logger, ERROR, f"tick failed | {e}", level=logging.ERROR)
        stop_event.wait(config.interval_sec)


# -------------------------
# CLI
# -------------------------

def positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid sync interval {raw!r}: must be a positive integer") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"invalid sync interval {raw!r}: must be a positive integer")
    return value


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="folder-mirror",
        description="Periodically mirror a source folder into a replica folder.",
    )
    p.add_argument("source", help="Folder to mirror from.")
    p.add_argument("replica", help="Folder to mirror into (created if missing).")
    p.add_argument("interval", type=positive_int, help="Seconds to wait between sync passes.")
    p.add_argument("log_file", help="File that log lines are appended to.")
    return p.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    log_file = Path(args.log_file).expanduser()

    try:
        logger = setup_logger(log_file)
    except OSError as e:
        print(f"Cannot open log file {log_file}: {e}", file=sys.stderr)
        return 2

    try:
        roots = validate_roots(Path(args.source), Path(args.replica))
    except (ValueError, OSError) as e:
        log_event(logger, ERROR, f"Config error | {e}", level=logging.ERROR)
        return 2

    config = MirrorConfig(roots=roots, interval_sec=args.interval, log_file=log_file)
    logger.info("Source : %s", roots.source)
    logger.info("Replica: %s", roots.replica)
    logger.info("Synchronization started... every %ds (Ctrl+C to stop)", config.interval_sec)

    try:
        run_forever(config, logger)
    except KeyboardInterrupt:
        logger.info("Stopping...")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
