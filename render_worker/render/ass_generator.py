"""ASS subtitle generation with karaoke word highlighting.

The document targets a 720x1280 play resolution; libass scales it to the
actual frame size. Colours use ASS ``&HAABBGGRR`` notation.
"""

import re
from dataclasses import dataclass
from typing import Sequence

from render_worker.render.captions import CaptionCue

DEFAULT_FONT = "Arial"
FONT_SIZE = 32

# Language tags (ISO codes and common names) per script font
_SCRIPT_FONTS: list[tuple[frozenset[str], str]] = [
    (frozenset({"hi", "mr", "ne", "sa", "hindi", "marathi", "nepali", "हिंदी", "हिन्दी"}), "Noto Sans Devanagari"),
    (frozenset({"bn", "bengali", "bangla"}), "Noto Sans Bengali"),
    (frozenset({"ta", "tamil"}), "Noto Sans Tamil"),
    (frozenset({"te", "telugu"}), "Noto Sans Telugu"),
    (frozenset({"ar", "fa", "ur", "arabic", "persian", "farsi", "urdu"}), "Noto Sans Arabic"),
    (frozenset({"ja", "japanese"}), "Noto Sans JP"),
    (frozenset({"zh", "chinese", "mandarin", "cantonese"}), "Noto Sans SC"),
    (frozenset({"ko", "korean"}), "Noto Sans KR"),
    (frozenset({"th", "thai"}), "Noto Sans Thai"),
]


@dataclass(frozen=True)
class AssStyle:
    primary: str
    secondary: str
    outline_colour: str
    back: str
    bold: int = 1
    italic: int = 0
    border_style: int = 1
    outline: int = 2
    shadow: int = 0


STYLE_PRESETS: dict[str, AssStyle] = {
    "bold-stroke": AssStyle("&H00FFFFFF", "&H00FFFF00", "&H00000000", "&H00000000", outline=4),
    "red-highlight": AssStyle("&H00FFFFFF", "&H000000FF", "&H000000FF", "&H00000000", outline=4, shadow=2),
    # Opaque box behind the line
    "karaoke-card": AssStyle("&H00FFFFFF", "&H00FF00FF", "&H00000000", "&H80FF00FF", border_style=3, outline=4),
    "beast": AssStyle("&H00FFFFFF", "&H000000FF", "&H00000000", "&H00000000", italic=1, outline=5),
    "default": AssStyle("&H00FFFFFF", "&H00FFFF00", "&H80000000", "&H00000000", outline=2, shadow=2),
}
STYLE_PRESETS["plain"] = STYLE_PRESETS["default"]

# position -> (alignment numpad code, vertical margin)
POSITIONS: dict[str, tuple[int, int]] = {
    "top": (8, 100),
    "center": (5, 50),
    "bottom": (2, 150),
}

HEADER = """[Script Info]
ScriptType: v4.00+
PlayResX: 720
PlayResY: 1280

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
"""

EVENTS_HEADER = "[Events]\nFormat: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text\n"


def font_for_language(language: str | None) -> str:
    """Pick a font family able to render the language's script."""
    if not language:
        return DEFAULT_FONT
    tag = str(language).strip().lower()
    primary = re.split(r"[-_\s]", tag, maxsplit=1)[0]
    for tags, font in _SCRIPT_FONTS:
        if tag in tags or primary in tags:
            return font
    return DEFAULT_FONT


def requires_script_font(language: str | None) -> bool:
    return font_for_language(language) != DEFAULT_FONT


def resolve_preset(preset: str | None) -> AssStyle:
    return STYLE_PRESETS.get((preset or "default").lower(), STYLE_PRESETS["default"])


def resolve_position(position: str | None) -> tuple[int, int]:
    return POSITIONS.get((position or "bottom").lower(), POSITIONS["bottom"])


def format_time(seconds: float) -> str:
    """Seconds to ``H:MM:SS.CC`` (centiseconds floored)."""
    # round() first so 1.15 does not floor to 1.14
    total_cs = int(round(max(0.0, seconds) * 100, 6))
    h, rem = divmod(total_cs, 360000)
    m, rem = divmod(rem, 6000)
    s, cs = divmod(rem, 100)
    return f"{h}:{m:02d}:{s:02d}.{cs:02d}"


def escape_text(text: str) -> str:
    return text.replace("{", "(").replace("}", ")").replace("\r\n", "\\N").replace("\n", "\\N")


def karaoke_durations(cue: CaptionCue) -> list[int]:
    """Per-word highlight durations in centiseconds.

    The cursor starts at the cue start and advances to each word end, so the
    first word absorbs any lead-in silence. Working in whole centiseconds
    keeps the sum equal to the last word end minus the cue start.
    """
    durations = []
    cursor_cs = round(cue.start * 100)
    for word in cue.words:
        end_cs = round(word.end * 100)
        durations.append(max(0, end_cs - cursor_cs))
        cursor_cs = end_cs
    return durations


def karaoke_text(cue: CaptionCue) -> str:
    parts = [
        f"{{\\k{cs}}}{escape_text(word.text)}"
        for word, cs in zip(cue.words, karaoke_durations(cue))
    ]
    return " ".join(parts)


def style_line(preset: str | None, position: str | None, font_name: str) -> str:
    style = resolve_preset(preset)
    align, margin_v = resolve_position(position)
    return (
        f"Style: Default,{font_name},{FONT_SIZE},"
        f"{style.primary},{style.secondary},{style.outline_colour},{style.back},"
        f"{style.bold},{style.italic},0,0,100,100,0,0,"
        f"{style.border_style},{style.outline},{style.shadow},"
        f"{align},10,10,{margin_v},1"
    )


def generate_ass(
    cues: Sequence[CaptionCue],
    preset: str | None = "default",
    position: str | None = "bottom",
    language: str | None = None,
) -> str:
    """Build a complete ASS document for the cues."""
    font_name = font_for_language(language)
    lines = [HEADER + style_line(preset, position, font_name), "", EVENTS_HEADER]
    document = "\n".join(lines)

    for cue in cues:
        text = karaoke_text(cue) if cue.has_word_timings else escape_text(cue.text)
        document += (
            f"Dialogue: 0,{format_time(cue.start)},{format_time(cue.end)},Default,,0,0,0,,{text.strip()}\n"
        )
    return document
