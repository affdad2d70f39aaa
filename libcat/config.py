"""
Configuration constants for the library catalog.
"""
import os
from pathlib import Path

# --- File Type Definitions ---
VIDEO_EXTS = {'.mp4', '.mkv', '.avi', '.mov', '.wmv', '.webm', '.m4v', '.flv'}
CUSTOM_IMAGE_EXTS = {'.jpg', '.jpeg', '.png', '.webp'}

# --- Storage Layout ---
DEFAULT_DATA_DIR = Path(os.environ.get("LIBCAT_HOME", Path.home() / ".libcat"))
DB_FILENAME = "libcat.db"
PROFILES_FILENAME = "profiles.json"
PROFILES_DIRNAME = "profiles"
THUMBNAILS_DIRNAME = "thumbnails"
POSTERS_DIRNAME = "posters"
LOG_FILENAME = "libcat.log"

# --- Thumbnails ---
FFMPEG_BIN = "ffmpeg"
FFPROBE_BIN = "ffprobe"
THUMBNAIL_WIDTH = 400
THUMBNAIL_SEEK_RATIO = 0.1     # Capture at 10% of the video
THUMBNAIL_FALLBACK_SEEK = 1    # Seconds, when duration is unknown
FFMPEG_TIMEOUT = 60
FFPROBE_TIMEOUT = 30

# --- TMDB ---
TMDB_API_BASE = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p/w500"
TMDB_MOVIE_URL = "https://www.themoviedb.org/movie/{tmdb_id}"
TMDB_TIMEOUT = 10
TMDB_CAST_LIMIT = 10

# --- Settings Keys ---
SETTING_TMDB_API_KEY = "tmdb_api_key"

# --- Library ---
MIN_RATING = 0
MAX_RATING = 5

# --- Tags ---
DEFAULT_TAG_COLOR = "#f4a261"

# --- Profiles ---
PBKDF2_ITERATIONS = 10000
PBKDF2_KEY_LENGTH = 64
PROFILE_NAME_INVALID_CHARS = r'[<>:"/\\|?*]'

# --- Filename Parsing ---
# Release/quality markers that usually follow the year in scene-style names
QUALITY_INDICATORS = [
    '720p', '1080p', '2160p', '4k', 'uhd', 'hdr10', 'hdr',
    'bluray', 'blu ray', 'bdrip', 'brrip', 'webrip', 'web dl',
    'dvdrip', 'hdtv', 'x264', 'x265', 'hevc', 'aac', 'ac3', 'dts',
    'remastered', 'extended', 'unrated', 'directors cut',
    'proper', 'repack', 'internal',
]

# Used when cleaning a title for a search query (separators already normalised)
SEARCH_NOISE = [
    '720p', '1080p', '2160p', '4k', 'uhd', 'hdr', 'bluray', 'blu ray',
    'bdrip', 'brrip', 'webrip', 'web dl', 'dvdrip', 'hdtv',
    'x264', 'x265', 'hevc', 'aac', 'ac3', 'dts', 'remastered',
]
