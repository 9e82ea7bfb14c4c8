import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set


@dataclass
class PathFilteringOptions:
    """
    Name-based filters for walking a gallery.
    Names match at every depth. Glob patterns are not supported.
    """
    ignore_directories: Optional[Iterable[str]] = None
    ignore_files: Optional[Iterable[str]] = None
    # Without the leading dot. None accepts every extension.
    accepting_extensions: Optional[Iterable[str]] = None


def normalize_extensions(extensions: Iterable[str]) -> Set[str]:
    return {ext.lower().lstrip('.') for ext in extensions}


def file_extension(name: str) -> str:
    """'IMG_01.JPG' -> 'jpg'. Names without a dot have no extension."""
    return os.path.splitext(name)[1].lower()[1:]


class PathWalker:
    def __init__(self, options: Optional[PathFilteringOptions] = None):
        options = options or PathFilteringOptions()
        self.ignore_directories = set(options.ignore_directories or ())
        self.ignore_files = set(options.ignore_files or ())
        self.accepting_extensions = (
            normalize_extensions(options.accepting_extensions)
            if options.accepting_extensions is not None else None
        )

    def iter_relative_paths(self, root: Path) -> Iterator[str]:
        """
        Depth-first walker using os.scandir for speed.

        Yields paths relative to `root` with '/' separators. Errors while
        listing a directory are not swallowed: a partial walk would make
        every file below that directory look deleted.
        """
        stack = [""]
        while stack:
            relative_dir = stack.pop()
            current = os.path.join(root, relative_dir) if relative_dir else str(root)

            with os.scandir(current) as it:
                entries = list(it)

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            for e in entries:
                relative = f"{relative_dir}/{e.name}" if relative_dir else e.name
                if e.is_dir(follow_symlinks=False):
                    if e.name not in self.ignore_directories:
                        dirs.append(relative)
                elif e.is_file(follow_symlinks=False):
                    if self._accepts_file(e.name):
                        yield relative

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

    def _accepts_file(self, name: str) -> bool:
        if name in self.ignore_files:
            return False
        if self.accepting_extensions is None:
            return True
        return file_extension(name) in self.accepting_extensions


def collect_relative_paths(root: Path, options: Optional[PathFilteringOptions] = None) -> List[str]:
    paths = list(PathWalker(options).iter_relative_paths(root))
    logging.debug(f"Walked {root}: {len(paths)} files")
    return paths


def count_files(root: Path, options: Optional[PathFilteringOptions] = None) -> int:
    return sum(1 for _ in PathWalker(options).iter_relative_paths(root))
