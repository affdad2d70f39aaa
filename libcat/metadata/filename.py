"""
Title/year derivation from release-style file names.

Pure functions, no I/O. The output feeds the TMDB matcher.
"""
import re
from datetime import datetime
from pathlib import Path

from .. import config
from ..models import TitleGuess

_SEPARATORS = re.compile(r'[._-]')
_YEAR = re.compile(r'\b(19\d{2}|20\d{2})\b')
_BRACKETED = re.compile(r'\[.*?\]|\(.*?\)|\{.*?\}')
_TRAILING_OPENERS = re.compile(r'[\s(\[{]+$')
_WHITESPACE = re.compile(r'\s+')


def _word_pattern(words) -> re.Pattern:
    alternatives = '|'.join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(rf'\b({alternatives})\b', re.IGNORECASE)


_QUALITY = _word_pattern(config.QUALITY_INDICATORS)
_SEARCH_NOISE = _word_pattern(config.SEARCH_NOISE)


def strip_video_extension(name: str) -> str:
    """Removes a trailing known video extension; other dotted parts are kept."""
    suffix = Path(name).suffix
    if suffix.lower() in config.VIDEO_EXTS:
        return name[: -len(suffix)]
    return name


def parse_filename(name: str) -> TitleGuess:
    """
    Extracts (title, year) from a base file name.

    A year is accepted only when it is a standalone 4-digit token with title
    text before it and, if release-quality markers are present, it comes
    before the first of them. The title is everything before the year, with
    bracketed content removed.
    """
    base = strip_video_extension(Path(name).name)
    text = _SEPARATORS.sub(' ', base)
    max_year = datetime.now().year + 1

    quality = _QUALITY.search(text)
    quality_index = quality.start() if quality else None

    year = None
    for m in _YEAR.finditer(text):
        value = int(m.group(1))
        if value > max_year:
            continue
        # A leading number is the title itself ("1917", "2012")
        if not text[: m.start()].strip(' ([{'):
            continue
        if quality_index is not None and m.start() >= quality_index:
            continue
        year = value
        text = _TRAILING_OPENERS.sub('', text[: m.start()])
        break

    title = _WHITESPACE.sub(' ', _BRACKETED.sub('', text)).strip()
    if not title:
        title = _WHITESPACE.sub(' ', _SEPARATORS.sub(' ', base)).strip()
    return TitleGuess(title=title, year=year)


def clean_title(title: str) -> str:
    """Normalises a title for use as a search query."""
    text = _SEPARATORS.sub(' ', title)
    text = _SEARCH_NOISE.sub('', text)
    text = _BRACKETED.sub('', text)
    return _WHITESPACE.sub(' ', text).strip()
