"""Label size estimation shared by layout and rendering."""
from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from PIL import ImageFont

LINE_SPACING = 1.2


@dataclass(frozen=True)
class FontSpec:
    family: str = "monospace"
    size: float = 10.0
    path: Optional[str] = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.size) or self.size <= 0:
            raise ValueError(f"font size must be a positive finite number, got {self.size!r}")


class TextMetrics:
    """Measures label text in layout units.

    Widths come from a per-character heuristic unless the ``FontSpec`` names a
    font file, in which case Pillow measures the advance width. Loaded fonts
    are cached by (path, size).
    """

    def __init__(self) -> None:
        self._font_cache: Dict[Tuple[str, int], Optional[ImageFont.FreeTypeFont]] = {}

    def font(self, spec: FontSpec) -> Optional[ImageFont.FreeTypeFont]:
        if not spec.path:
            return None
        key_size = max(1, int(round(spec.size)))
        cache_key = (str(Path(spec.path).expanduser()), key_size)
        if cache_key in self._font_cache:
            return self._font_cache[cache_key]
        try:
            font: Optional[ImageFont.FreeTypeFont] = ImageFont.truetype(cache_key[0], key_size)
        except OSError:
            font = None
        self._font_cache[cache_key] = font
        return font

    def line_width(self, text: str, spec: FontSpec) -> float:
        font = self.font(spec)
        if font is None:
            return _heuristic_width(text, spec.size)
        width = float(font.getlength(text))
        if not math.isfinite(width) or width < 0:
            return _heuristic_width(text, spec.size)
        return width

    def line_height(self, spec: FontSpec) -> float:
        return spec.size * LINE_SPACING

    def measure(self, text: str, spec: FontSpec) -> Tuple[float, float]:
        """Return (width, height); multi-line text stacks lines."""
        if not text:
            return 0.0, 0.0
        lines = text.split("\n")
        width = max(self.line_width(line, spec) for line in lines)
        height = len(lines) * self.line_height(spec)
        return width, height


def _heuristic_width(text: str, font_size: float) -> float:
    width = 0.0
    for ch in text:
        if ch.isspace():
            width += font_size * 0.33
        elif ch in "il.,:;'|!":
            width += font_size * 0.3
        elif ch in "mwMW@#":
            width += font_size * 0.9
        else:
            width += font_size * 0.6
    return width


DEFAULT_METRICS = TextMetrics()

__all__ = ["DEFAULT_METRICS", "FontSpec", "LINE_SPACING", "TextMetrics"]
