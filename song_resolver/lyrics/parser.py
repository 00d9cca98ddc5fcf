"""
LRC lyric parsing.

Turns LRC text into timed LyricLine objects and back.

Format:
    [mm:ss.ff]text        2-digit fraction = hundredths
    [mm:ss.fff]text       3-digit fraction = milliseconds
    [00:12.34][01:02.50]text
                          Several leading tags share one text (repeated chorus)

Lines without a leading timestamp (metadata tags such as [ar:...],
blank lines) are dropped, as are tagged lines with no text.

Translation:
    The translation track is parsed the same way and merged into the
    primary lines: each translated line attaches to the first primary
    line within MERGE_TOLERANCE seconds. Unmatched translations are
    dropped.

Example:
    lines = parse_lyrics("[00:01.00]Hello\\n[00:02.50]World", "[00:01.00]你好")
    lines[0]  -> LyricLine(time=1.0, text="Hello", translation="你好")
"""

import re

from song_resolver.catalog.models import LyricLine


# Seconds within which a translation line matches a primary line
MERGE_TOLERANCE = 0.1

TIMESTAMP_PATTERN = re.compile(r"\[(\d{2}):(\d{2})\.(\d{2,3})\]")
LEADING_TAGS_PATTERN = re.compile(r"^(?:\[\d{2}:\d{2}\.\d{2,3}\])+")


def _tag_to_seconds(minutes: str, seconds: str, fraction: str) -> float:
    millis = int(fraction) * 10 if len(fraction) == 2 else int(fraction)
    return int(minutes) * 60 + int(seconds) + millis / 1000


def _parse_track(text: str) -> list[tuple[float, str]]:
    """Parse one LRC track into (time, text) pairs, in file order."""
    entries: list[tuple[float, str]] = []

    for raw_line in text.split("\n"):
        line = raw_line.replace("\r", "").strip()
        tags = LEADING_TAGS_PATTERN.match(line)
        if not tags:
            continue

        lyric = line[tags.end():].strip()
        if not lyric:
            continue

        for match in TIMESTAMP_PATTERN.finditer(tags.group(0)):
            entries.append((_tag_to_seconds(*match.groups()), lyric))

    return entries


def parse_lyrics(lrc: str | None, tlyric: str | None = None) -> list[LyricLine]:
    """
    Parse LRC text (and an optional translation) into sorted lines.

    Args:
        lrc: Primary LRC text. None or "" gives [].
        tlyric: Translation LRC text.

    Returns:
        LyricLines sorted by time (stable for equal times).
    """
    if not lrc:
        return []

    entries = sorted(_parse_track(lrc), key=lambda entry: entry[0])
    translations: dict[int, str] = {}

    if tlyric:
        for t_time, t_text in _parse_track(tlyric):
            for index, (time, _) in enumerate(entries):
                if abs(time - t_time) < MERGE_TOLERANCE:
                    translations[index] = t_text
                    break

    return [
        LyricLine(time=time, text=text, translation=translations.get(index))
        for index, (time, text) in enumerate(entries)
    ]


def format_timestamp(seconds: float) -> str:
    """Format seconds as an LRC tag: 62.5 -> "[01:02.500]"."""
    total_ms = max(0, round(seconds * 1000))
    minutes, remainder = divmod(total_ms, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"[{minutes:02d}:{secs:02d}.{millis:03d}]"


def format_lrc(lines: list[LyricLine], translation: bool = False) -> str:
    """
    Serialize lines back to LRC.

    Args:
        lines: Parsed lyric lines.
        translation: Emit the translation track instead of the primary
                     one (lines without a translation are skipped).

    Returns:
        LRC text, one "[mm:ss.fff]text" line per LyricLine.
    """
    out = []
    for line in lines:
        text = line.translation if translation else line.text
        if text:
            out.append(f"{format_timestamp(line.time)}{text}")
    return "\n".join(out)
