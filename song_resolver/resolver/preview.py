"""
Preview (trial clip) detection.

Several catalogs answer unlicensed requests with a 30-60 second trial
clip instead of the full track, behind an ordinary-looking URL. This is
a heuristic: a True result triggers further searching, it never proves
anything.

Checks (first hit wins):
    0. Empty URL: nothing playable
    1. URL contains a preview marker (preview, trial, sample, freepart, clip, m-trial)
    2. 0 < size < min_file_size
    3. Known duration falls in [min_duration, max_duration] and within
       duration_tolerance of a typical preview length
"""

import re

from song_resolver.core.config import PreviewConfig
from song_resolver.core.logger import get_logger


logger = get_logger(__name__)


PREVIEW_URL_PATTERN = re.compile(r"preview|trial|sample|freepart|clip|m-trial", re.IGNORECASE)

DEFAULT_PREVIEW_CONFIG = PreviewConfig()


def is_probably_preview(
    url: str,
    size: int | None = None,
    known_duration_ms: int | None = None,
    settings: PreviewConfig = DEFAULT_PREVIEW_CONFIG
) -> bool:
    """
    Guess whether url points at a truncated preview.

    Args:
        url: Stream URL.
        size: File size in bytes, if known.
        known_duration_ms: Track duration from catalog metadata, if known.
        settings: Thresholds (the `preview_detection` config section).

    Returns:
        True if any check flags the URL.

    Examples:
        is_probably_preview("https://x/preview/a.mp3")          -> True
        is_probably_preview("https://x/a.mp3", size=20_000)     -> True
        is_probably_preview("https://x/a.mp3", size=5_000_000)  -> False
    """
    if not url:
        return True

    if PREVIEW_URL_PATTERN.search(url):
        logger.debug(f"URL looks like a preview: {url}")
        return True

    if size is not None and 0 < size < settings.min_file_size:
        logger.debug(f"File size is suspiciously small ({size // 1024}KB), treating as preview")
        return True

    if known_duration_ms is not None and known_duration_ms > 0:
        duration = known_duration_ms / 1000
        if settings.min_duration <= duration <= settings.max_duration:
            if any(
                abs(duration - typical) <= settings.duration_tolerance
                for typical in settings.typical_durations
            ):
                logger.debug(f"Duration {duration:.1f}s matches a typical preview length")
                return True

    return False
