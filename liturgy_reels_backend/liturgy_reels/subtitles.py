"""
Subtitle timeline built from measured speech durations.

Blocks are walked in fixed order; a block without an audio asset is skipped
entirely, so cues stay contiguous and never overlap.
"""
import base64
import re
from typing import Callable, List, Optional

from .audio import probe_duration_ms
from .errors import TimelineGenerationError
from .models import BLOCK_ORDER, Asset, AssetCache, AssetKind, Script, SubtitleCue, SUBTITLE_BLOCK_ID
from .session_log import SessionLog

DAY_MS = 24 * 60 * 60 * 1000
_TIMESTAMP_RE = re.compile(r"^(\d{2}):(\d{2}):(\d{2}),(\d{3})$")


def format_timestamp(ms: int) -> str:
    ms = int(ms) % DAY_MS
    hours, rest = divmod(ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def parse_timestamp(value: str) -> int:
    m = _TIMESTAMP_RE.match(value.strip())
    if not m:
        raise ValueError(f"invalid timestamp: {value!r}")
    hours, minutes, seconds, millis = (int(g) for g in m.groups())
    if minutes > 59 or seconds > 59:
        raise ValueError(f"invalid timestamp: {value!r}")
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + millis


def clean_cue_text(text: Optional[str]) -> str:
    return re.sub(r"[\r\n]+", " ", text or "").strip()


def build_cues(
    script: Script,
    cache: AssetCache,
    log: SessionLog,
    probe: Callable[..., int] = probe_duration_ms,
) -> List[SubtitleCue]:
    cues: List[SubtitleCue] = []
    cursor = 0
    index = 1
    log.info("Starting subtitle generation")
    for block_id in BLOCK_ORDER:
        audio = cache.get(block_id, AssetKind.AUDIO)
        if audio is None:
            log.warning(f"No audio asset for {block_id.value}, skipping its cue")
            continue
        block = script.get(block_id)
        duration = probe(audio.data, log)
        cue = SubtitleCue(
            index=index,
            start_ms=cursor,
            end_ms=cursor + duration,
            text=clean_cue_text(block.text if block else ""),
        )
        cues.append(cue)
        log.info(f"Cue for {block_id.value}: {format_timestamp(cue.start_ms)} --> {format_timestamp(cue.end_ms)}")
        cursor = cue.end_ms
        index += 1
    log.info(f"Subtitle generation complete: {len(cues)} cues")
    return cues


def render_srt(cues: List[SubtitleCue]) -> str:
    return "".join(
        f"{c.index}\n{format_timestamp(c.start_ms)} --> {format_timestamp(c.end_ms)}\n{c.text}\n\n"
        for c in cues
    )


def parse_srt(document: str) -> List[SubtitleCue]:
    """Parse a subtitle document back into cues. Raises TimelineGenerationError if malformed."""
    cues: List[SubtitleCue] = []
    for chunk in re.split(r"\n\s*\n", document.strip()):
        if not chunk.strip():
            continue
        lines = chunk.split("\n")
        if len(lines) < 2 or " --> " not in lines[1]:
            raise TimelineGenerationError(f"malformed cue: {chunk[:80]!r}")
        try:
            index = int(lines[0])
            start, end = lines[1].split(" --> ")
            cues.append(SubtitleCue(
                index=index,
                start_ms=parse_timestamp(start),
                end_ms=parse_timestamp(end),
                text=" ".join(lines[2:]),
            ))
        except ValueError as e:
            raise TimelineGenerationError(f"malformed cue: {chunk[:80]!r}") from e
    return cues


def check_timeline(cues: List[SubtitleCue]):
    """Cue indexes count from 1 and each cue starts where the previous one ended."""
    cursor = 0
    for expected, cue in enumerate(cues, start=1):
        if cue.index != expected:
            raise TimelineGenerationError(f"cue {cue.index} out of sequence, expected {expected}")
        if cue.start_ms != cursor or cue.end_ms < cue.start_ms:
            raise TimelineGenerationError(f"cue {cue.index} breaks the timeline at {cue.start_ms}ms")
        cursor = cue.end_ms


def build_subtitle_asset(script: Script, cache: AssetCache, log: SessionLog, probe: Callable[..., int] = probe_duration_ms) -> Asset:
    cues = build_cues(script, cache, log, probe=probe)
    check_timeline(cues)
    document = render_srt(cues)
    return Asset(
        block_id=SUBTITLE_BLOCK_ID,
        kind=AssetKind.SUBTITLE,
        data=base64.b64encode(document.encode("utf-8")).decode("ascii"),
    )
