"""Expansion of watch roots into the set of directories to watch."""

import fnmatch
import logging
import os
from collections.abc import Sequence

from gwatch_engine.errors import ConfigError

logger = logging.getLogger(__name__)


def is_excluded(path: str, exclude: Sequence[str], root_dir: str) -> bool:
    """Check a directory against the exclude patterns.

    A pattern matches either the full path (pattern anchored at root_dir) or,
    when the pattern has no separator, the directory's basename.

    Args:
        path: Absolute directory path
        exclude: Glob patterns
        root_dir: Directory that patterns are anchored at

    Returns:
        True if the directory must not be watched
    """
    name = os.path.basename(path)
    for pattern in exclude:
        anchored = os.path.normpath(os.path.join(root_dir, pattern))
        if fnmatch.fnmatchcase(path, anchored):
            return True
        if os.sep not in pattern and "/" not in pattern and fnmatch.fnmatchcase(name, pattern):
            return True
    return False


def resolve_paths(
    roots: Sequence[str],
    exclude: Sequence[str] = (),
    recursive: bool = True,
    root_dir: str = "",
) -> tuple[str, ...]:
    """Resolve root paths into an ordered, deduplicated set of directories.

    Excluded directories are pruned, so nothing beneath them is ever added.
    Root paths themselves are always kept.

    Args:
        roots: Root paths to expand
        exclude: Glob patterns of directories to skip
        recursive: Descend into subdirectories when True
        root_dir: Directory exclude patterns are anchored at

    Returns:
        Tuple of absolute paths

    Raises:
        ConfigError: A root is missing or the walk hit a filesystem error
    """
    root_dir = os.path.abspath(root_dir or os.getcwd())
    resolved: dict[str, None] = {}

    for root in roots:
        root = os.path.abspath(os.path.join(root_dir, root))
        resolved.setdefault(root, None)

        if not recursive:
            continue

        if not os.path.exists(root):
            raise ConfigError(f"Watch path does not exist: {root}")
        if not os.path.isdir(root):
            continue

        def fail(error: OSError) -> None:
            raise ConfigError(f"Failed to walk {error.filename or root}: {error}") from error

        for dirpath, dirnames, _ in os.walk(root, topdown=True, onerror=fail):
            kept = []
            for name in sorted(dirnames):
                child = os.path.join(dirpath, name)
                if is_excluded(child, exclude, root_dir):
                    logger.debug(f"Excluding {child}")
                    continue
                kept.append(name)
                resolved.setdefault(child, None)
            # Prune in place so os.walk never descends into excluded trees
            dirnames[:] = kept

    return tuple(resolved)
