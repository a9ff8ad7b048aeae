"""Caption cue parsing (SRT documents and JSON cue arrays)."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_SRT_TIME = re.compile(
    r"(\d{1,2}):(\d{2}):(\d{2})[,.](\d{1,3})\s*-->\s*(\d{1,2}):(\d{2}):(\d{2})[,.](\d{1,3})"
)


@dataclass
class WordTiming:
    start: float
    end: float
    text: str

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "text": self.text}


@dataclass
class CaptionCue:
    start: float
    end: float
    text: str
    words: list[WordTiming] = field(default_factory=list)

    @property
    def has_word_timings(self) -> bool:
        return bool(self.words)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"start": self.start, "end": self.end, "text": self.text}
        if self.words:
            data["words"] = [w.to_dict() for w in self.words]
        return data


@dataclass
class CaptionTrack:
    """Parsed cues plus the format they came from."""

    cues: list[CaptionCue]
    source_format: str  # "json" or "srt"

    @property
    def has_word_timings(self) -> bool:
        return any(cue.has_word_timings for cue in self.cues)

    @property
    def end_seconds(self) -> float | None:
        if not self.cues:
            return None
        return max(cue.end for cue in self.cues)


def is_json_caption_source(text: str, source_name: str = "") -> bool:
    return source_name.lower().endswith(".json") or text.lstrip().startswith("[")


def _srt_seconds(h: str, m: str, s: str, ms: str) -> float:
    return int(h) * 3600 + int(m) * 60 + int(s) + int(ms.ljust(3, "0")) / 1000


def parse_srt(text: str) -> list[CaptionCue]:
    cues: list[CaptionCue] = []
    blocks = re.split(r"\r?\n\s*\r?\n", text.strip())
    for block in blocks:
        lines = [line for line in block.splitlines() if line.strip()]
        for i, line in enumerate(lines):
            match = _SRT_TIME.search(line)
            if not match:
                continue
            g = match.groups()
            start = _srt_seconds(*g[:4])
            end = _srt_seconds(*g[4:])
            body = " ".join(part.strip() for part in lines[i + 1:])
            if body and end >= start:
                cues.append(CaptionCue(start=start, end=end, text=body))
            break
    return cues


def _parse_words(raw_words: Any) -> list[WordTiming]:
    words: list[WordTiming] = []
    if not isinstance(raw_words, list):
        return words
    for raw in raw_words:
        if not isinstance(raw, dict):
            continue
        try:
            words.append(
                WordTiming(
                    start=float(raw["start"]),
                    end=float(raw["end"]),
                    text=str(raw.get("text") or raw.get("word") or "").strip(),
                )
            )
        except (KeyError, TypeError, ValueError):
            continue
    return words


def parse_json_cues(text: str) -> list[CaptionCue]:
    """Parse a JSON array of ``{start, end, text, words?}`` entries.

    Malformed entries are skipped; a document that is not a list yields no cues.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"[Captions] Invalid caption JSON: {e}")
        return []
    if not isinstance(data, list):
        return []

    cues: list[CaptionCue] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        try:
            start = float(entry["start"])
            end = float(entry["end"])
        except (KeyError, TypeError, ValueError):
            continue
        if end < start:
            continue
        cues.append(
            CaptionCue(
                start=start,
                end=end,
                text=str(entry.get("text", "")).strip(),
                words=_parse_words(entry.get("words")),
            )
        )
    return cues


def parse_captions(text: str, source_name: str = "") -> CaptionTrack:
    if is_json_caption_source(text, source_name):
        return CaptionTrack(cues=parse_json_cues(text), source_format="json")
    return CaptionTrack(cues=parse_srt(text), source_format="srt")
