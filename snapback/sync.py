"""Smart sync: make a live directory match a read-only snapshot directory.

The snapshot side is the source of truth. Per directory level:

    source file, missing in target       -> restore (copy)
    source file, modified in target      -> overwrite (copy)
    source file, unmodified in target    -> left alone
    target file, missing in source       -> delete
    source directory                     -> recurse, creating it if absent
    target directory, missing in source  -> delete the whole subtree

"Modified" means size differs or mtimes are more than MTIME_TOLERANCE apart.
This is a metadata heuristic, not a content check: a same-size edit that lands
within the tolerance goes unnoticed, and a touched-but-unchanged file is
copied again. Copies keep the source mtime, so a second sync is a no-op.

Deletions that fail (locked file, permissions) are recorded as
PartialFailure and the walk carries on. If the entry was in the way of a
snapshot entry of the other type, that entry is skipped. Copy failures
propagate.
"""

import os
import shutil
import sys
from collections import namedtuple
from dataclasses import dataclass, field
from pathlib import Path

from snapback.errors import PartialFailure
from snapback.models import DiffDecision

MTIME_TOLERANCE = 2.0

# Follow the host's filesystem convention for name comparison
FOLD_CASE = sys.platform in ("win32", "darwin")

FILE = "file"
DIR = "dir"

Change = namedtuple("Change", ["name", "decision", "kind", "target_name"], defaults=(None,))


@dataclass
class SyncResult:
    restored: int = 0
    overwritten: int = 0
    deleted: int = 0
    unchanged: int = 0
    failures: list = field(default_factory=list)

    @property
    def ok(self):
        return not self.failures

    @property
    def changes(self):
        return self.restored + self.overwritten + self.deleted


def _key(name, fold_case):
    return name.casefold() if fold_case else name


def _scan(path, fold_case, missing_ok=False):
    """Return ({key: name} for files, {key: name} for directories)."""
    files, dirs = {}, {}
    if missing_ok and not os.path.isdir(path):
        return files, dirs
    with os.scandir(path) as it:
        for entry in it:
            bucket = dirs if entry.is_dir(follow_symlinks=False) else files
            bucket[_key(entry.name, fold_case)] = entry.name
    return files, dirs


def is_modified(source_file, target_file):
    """Size differs, or mtime differs by more than MTIME_TOLERANCE seconds.

    Unreadable metadata counts as modified.
    """
    try:
        s = os.stat(source_file, follow_symlinks=False)
        t = os.stat(target_file, follow_symlinks=False)
    except OSError:
        return True
    if s.st_size != t.st_size:
        return True
    return abs(s.st_mtime - t.st_mtime) > MTIME_TOLERANCE


def compare_level(source, target, fold_case=FOLD_CASE, missing_ok=False):
    """Compare one directory level. Returns the list of Changes to apply, in order.

    Unmodified files produce no Change. An entry that is a file on one side
    and a directory on the other is deleted from the target first.
    """
    source, target = Path(source), Path(target)
    src_files, src_dirs = _scan(source, fold_case)
    dst_files, dst_dirs = _scan(target, fold_case, missing_ok=missing_ok)

    changes = []

    for key in sorted(src_files.keys() & dst_dirs.keys()):
        changes.append(Change(dst_dirs.pop(key), DiffDecision.DELETE_EXTRANEOUS, DIR))
    for key in sorted(src_dirs.keys() & dst_files.keys()):
        changes.append(Change(dst_files.pop(key), DiffDecision.DELETE_EXTRANEOUS, FILE))

    for key in sorted(src_files):
        name = src_files[key]
        if key not in dst_files:
            changes.append(Change(name, DiffDecision.RESTORE, FILE))
        elif is_modified(source / name, target / dst_files[key]):
            changes.append(Change(name, DiffDecision.OVERWRITE, FILE, dst_files[key]))

    for key in sorted(dst_files.keys() - src_files.keys()):
        changes.append(Change(dst_files[key], DiffDecision.DELETE_EXTRANEOUS, FILE))

    for key in sorted(src_dirs):
        changes.append(Change(src_dirs[key], DiffDecision.RECURSE, DIR, dst_dirs.get(key)))

    for key in sorted(dst_dirs.keys() - src_dirs.keys()):
        changes.append(Change(dst_dirs[key], DiffDecision.DELETE_EXTRANEOUS, DIR))

    return changes


def _copy(src, dst):
    if os.path.islink(dst) or (os.path.islink(src) and os.path.lexists(dst)):
        os.unlink(dst)
    shutil.copy2(src, dst, follow_symlinks=False)


def _remove(path, kind):
    if kind == DIR:
        shutil.rmtree(path)
    else:
        os.unlink(path)


def _sync_dir(source, target, result, fold_case):
    target.mkdir(exist_ok=True)
    changes = compare_level(source, target, fold_case)
    handled = 0
    # Names whose conflicting target entry could not be removed
    blocked = set()
    for change in changes:
        src = source / change.name
        dst = target / (change.target_name or change.name)
        key = _key(change.name, fold_case)

        if change.decision in (DiffDecision.RESTORE, DiffDecision.RECURSE) and key in blocked:
            handled += change.kind == FILE
            continue

        if change.decision is DiffDecision.RESTORE:
            _copy(src, dst)
            result.restored += 1
            handled += 1
        elif change.decision is DiffDecision.OVERWRITE:
            _copy(src, dst)
            result.overwritten += 1
            handled += 1
        elif change.decision is DiffDecision.DELETE_EXTRANEOUS:
            try:
                _remove(dst, change.kind)
                result.deleted += 1
            except OSError as e:
                result.failures.append(PartialFailure(str(dst), e))
                blocked.add(key)
        elif change.decision is DiffDecision.RECURSE:
            _sync_dir(src, dst, result, fold_case)

    src_files, _ = _scan(source, fold_case)
    result.unchanged += len(src_files) - handled


def smart_sync(source, target, fold_case=FOLD_CASE):
    """Make target match source. Returns a SyncResult.

    The target root is created if missing. Raises if source can't be listed
    or a file can't be copied; deletion failures only land in result.failures.
    """
    source, target = Path(source), Path(target)
    target.mkdir(parents=True, exist_ok=True)
    result = SyncResult()
    _sync_dir(source, target, result, fold_case)
    return result


def plan(source, target, fold_case=FOLD_CASE):
    """Yield (relative_path, DiffDecision) for every mutation smart_sync would make.

    Touches nothing. Directories are recursed into but not reported.
    """
    source, target = Path(source), Path(target)

    def walk(src, dst, rel):
        for change in compare_level(src, dst, fold_case, missing_ok=True):
            name = change.target_name or change.name
            if change.decision is DiffDecision.RECURSE:
                yield from walk(src / change.name, dst / name, rel / change.name)
            else:
                yield rel / name, change.decision

    yield from walk(source, target, Path())
