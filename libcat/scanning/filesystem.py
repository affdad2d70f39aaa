import os
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .. import config
from ..exceptions import WalkError
from ..models import DiscoveredFile

class VideoWalker:
    """
    Enumerates video files under a root directory.

    Traversal is depth-first with entries sorted case-insensitively, so a
    given tree always yields the same order (progress numbering relies on it).
    """

    def __init__(self, extensions: Optional[set] = None):
        self.extensions = {e.lower() for e in (extensions or config.VIDEO_EXTS)}

    def walk(self, root: Path) -> List[DiscoveredFile]:
        """Collects every video file under root. Unreadable directories are skipped."""
        root = Path(os.path.abspath(root))
        found = []
        for path in self._iter_files(root):
            if not self.is_video_file(path):
                continue
            try:
                size = path.stat().st_size
            except OSError as e:
                logging.warning(f"Cannot stat {path}: {e}")
                continue
            found.append(DiscoveredFile(path=str(path), name=path.stem, size_bytes=size))

        logging.info(f"Found {len(found)} video files under {root}")
        return found

    def is_video_file(self, path) -> bool:
        return Path(path).suffix.lower() in self.extensions

    def describe(self, path) -> Optional[DiscoveredFile]:
        """
        Validates a caller-supplied path: it must be an existing regular file
        with a video extension. Returns None otherwise.
        """
        p = Path(os.path.abspath(path))
        if not self.is_video_file(p):
            return None
        try:
            if not p.is_file():
                return None
            size = p.stat().st_size
        except OSError:
            return None
        return DiscoveredFile(path=str(p), name=p.stem, size_bytes=size)

    def _iter_files(self, root: Path) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed."""
        stack = [root]
        while stack:
            current = stack.pop()
            try:
                dirs, files = self._list_dir(current)
            except WalkError as e:
                logging.warning(str(e))
                continue

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f

    def _list_dir(self, directory: Path) -> Tuple[List[Path], List[Path]]:
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            raise WalkError(f"Skipping unreadable directory {directory}: {e}") from e

        # Sort for stable traversal order
        entries.sort(key=lambda e: e.name.lower())

        dirs = []
        files = []
        for e in entries:
            try:
                if e.is_dir(follow_symlinks=False):
                    dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    files.append(Path(e.path))
            except OSError:
                logging.debug(f"Cannot inspect entry {e.path}")
        return dirs, files
