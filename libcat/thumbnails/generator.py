import hashlib
import json
import logging
import math
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Optional

from PIL import Image
from pymediainfo import MediaInfo

from .. import config
from ..exceptions import GenerationError
from ..models import ThumbnailResult


class ThumbnailGenerator:
    """
    Produces still-frame thumbnails for video files and reads their duration.

    Strategies:
      - Duration: 'pymediainfo' (fast wrapper) -> falls back to 'ffprobe'.
      - Frame: 'ffmpeg' grabs one frame at 10% of the runtime, Pillow scales it.

    Only one ffmpeg job runs at a time per generator.
    """

    def __init__(self, profile_dir: Path):
        self.thumbnail_dir = Path(profile_dir) / config.THUMBNAILS_DIRNAME
        self.thumbnail_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def thumbnail_path_for(self, video_path: str) -> Path:
        digest = hashlib.md5(str(video_path).encode('utf-8')).hexdigest()
        return self.thumbnail_dir / f"{digest}.jpg"

    def generate(self, video_path: str, force: bool = False) -> ThumbnailResult:
        """
        Returns the thumbnail for video_path, creating it when missing
        (or always, with force=True). Raises GenerationError on failure.
        """
        thumb = self.thumbnail_path_for(video_path)
        duration = self.get_duration(video_path)

        if not force and thumb.exists():
            return ThumbnailResult(thumbnail_path=str(thumb), duration=duration)

        if duration:
            seek = math.floor(duration * config.THUMBNAIL_SEEK_RATIO)
        else:
            seek = config.THUMBNAIL_FALLBACK_SEEK

        with self._lock:
            self._extract_frame(Path(video_path), thumb, self.format_timestamp(seek))

        return ThumbnailResult(thumbnail_path=str(thumb), duration=duration)

    def copy_custom(self, source_image: Path) -> str:
        """
        Copies a user-supplied poster into the thumbnail directory.
        The source must be an image Pillow can read.
        """
        source = Path(source_image)
        if source.suffix.lower() not in config.CUSTOM_IMAGE_EXTS:
            raise GenerationError(f"Unsupported image type: {source.suffix or source.name}")
        try:
            with Image.open(source) as im:
                im.verify()
        except (OSError, SyntaxError) as e:
            raise GenerationError(f"Not a readable image: {source}: {e}") from e

        digest = hashlib.md5(str(time.time_ns()).encode('ascii')).hexdigest()
        dest = self.thumbnail_dir / f"custom_{digest}{source.suffix.lower()}"
        try:
            shutil.copyfile(source, dest)
        except OSError as e:
            raise GenerationError(f"Failed to copy {source}: {e}") from e
        return str(dest)

    def get_duration(self, video_path: str) -> Optional[float]:
        """Duration in seconds, or None when no tool can tell."""
        # Strategy 1: MediaInfo
        try:
            mi = MediaInfo.parse(str(video_path))
            for track in mi.tracks:
                if track.track_type == "General" and getattr(track, "duration", None):
                    # MediaInfo duration is in milliseconds
                    return float(track.duration) / 1000.0
        except Exception as e:
            logging.debug(f"MediaInfo failed for {video_path}: {e}")

        # Strategy 2: ffprobe
        try:
            return self._ffprobe_duration(video_path)
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            logging.debug(f"ffprobe failed for {video_path}: {e}")
        return None

    def _ffprobe_duration(self, video_path: str) -> Optional[float]:
        cmd = [
            config.FFPROBE_BIN, "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json", str(video_path),
        ]
        out = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=config.FFPROBE_TIMEOUT)
        data = json.loads(out.stdout or "{}")
        value = (data.get("format") or {}).get("duration")
        if value in (None, "", "N/A"):
            return None
        duration = float(value)
        return duration if duration > 0 else None

    def _extract_frame(self, video_path: Path, output: Path, timestamp: str):
        frame = output.with_suffix(".frame.png")
        cmd = [
            config.FFMPEG_BIN, "-y", "-v", "error",
            "-ss", timestamp,
            "-i", str(video_path),
            "-frames:v", "1",
            str(frame),
        ]
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=config.FFMPEG_TIMEOUT)
            if not frame.exists():
                raise GenerationError(f"ffmpeg produced no frame for {video_path} at {timestamp}")
            self._scale(frame, output)
        except subprocess.CalledProcessError as e:
            raise GenerationError(f"ffmpeg failed for {video_path}: {(e.stderr or '').strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise GenerationError(f"ffmpeg timed out for {video_path}") from e
        except OSError as e:
            # Missing binary or unreadable frame
            raise GenerationError(f"Thumbnail extraction failed for {video_path}: {e}") from e
        finally:
            frame.unlink(missing_ok=True)

    def _scale(self, frame: Path, output: Path):
        """Scales to the fixed thumbnail width, keeping the aspect ratio."""
        with Image.open(frame) as im:
            width, height = im.size
            if width > 0 and width != config.THUMBNAIL_WIDTH:
                new_height = max(1, round(height * config.THUMBNAIL_WIDTH / width))
                im = im.resize((config.THUMBNAIL_WIDTH, new_height), Image.Resampling.LANCZOS)
            im.convert("RGB").save(output, "JPEG", quality=85)

    @staticmethod
    def format_timestamp(seconds: int) -> str:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        secs = seconds % 60
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
