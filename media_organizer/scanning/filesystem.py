import os
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set

from .. import config
from ..models import DestinationEntry, media_type_for


def is_within(path: Path, parent: Path) -> bool:
    return path == parent or parent in path.parents


class DiskScanner:
    """
    Walks directory trees and yields recognized media files.

    Hidden entries (including macOS '._' resource forks) and symbolic
    links are never returned.
    """

    def iter_media(self,
                   root: Path,
                   skip_dirs: Optional[Set[Path]] = None,
                   skip_files: Optional[Set[str]] = None) -> Iterator[Path]:
        """Yields media files under root in a stable, sorted order."""
        for path in self._iter_files(root, skip_dirs or set(), skip_files or set()):
            if media_type_for(path) is not None:
                yield path

    def index_destinations(self, roots: Iterable[Path], source_dir: Path) -> List[DestinationEntry]:
        """
        Lists media already present in the destination trees.
        Anything inside the source directory is left to the source walk.
        """
        entries: List[DestinationEntry] = []
        seen: Set[Path] = set()
        for root in roots:
            if is_within(root, source_dir):
                logging.debug(f"Not indexing {root}: inside source directory")
                continue
            if not root.is_dir():
                continue
            for path in self._iter_files(root, {source_dir}, set()):
                if path in seen:
                    continue
                media_type = media_type_for(path)
                if media_type is None:
                    continue
                try:
                    size = path.stat().st_size
                except OSError as e:
                    logging.warning(f"Cannot stat {path}: {e}")
                    continue
                seen.add(path)
                entries.append(DestinationEntry(
                    path=path,
                    size_bytes=size,
                    media_type=media_type,
                    extension=config.normalize_extension(path.suffix),
                ))
        return entries

    def _iter_files(self, root: Path, skip_dirs: Set[Path], skip_files: Set[str]) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed."""
        stack = [root]
        while stack:
            current = stack.pop()
            if skip_dirs and any(is_within(current, sd) for sd in skip_dirs):
                continue

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                logging.warning(f"Cannot read directory {current}: {e}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                if e.name.startswith('.'):
                    continue
                if e.is_dir(follow_symlinks=False):
                    dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    if e.path in skip_files:
                        continue
                    files.append(Path(e.path))

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f
