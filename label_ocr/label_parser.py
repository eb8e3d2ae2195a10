import re
from dataclasses import dataclass
from typing import List, Optional, Pattern

from label_ocr.config import OCRConstants


_COLOR_NAMES = (
    "CHOCOLATE|BLACK|WHITE|NAVY|BLUE|RED|GREEN|BEIGE|BROWN|GREY|GRAY|CREAM|ECRU|IVORY|PINK|"
    "PURPLE|ORANGE|YELLOW|GOLD|SILVER|BORDEAUX|BURGUNDY|KHAKI|OLIVE|SAND|CAMEL|CHARCOAL|"
    "ANTHRACITE|PETROL|TURQUOISE|CORAL|SALMON|ROSE|LILAC|LAVENDER|MINT|TEAL|INDIGO|MAROON|"
    "MUSTARD|RUST|TAN|TAUPE|FUCHSIA|MAGENTA|CYAN|AQUA|EMERALD|RUBY|SAPPHIRE|PEARL|CHAMPAGNE|"
    "MOCHA|ESPRESSO|COCOA|COFFEE|CARAMEL|HONEY|AMBER|COPPER|BRONZE|PEWTER|STEEL|SLATE|STONE|"
    "ASH|SMOKE|MIST|SNOW|MIDNIGHT"
)

# Patterns are tried in order; the first match wins. Text is upper-cased first.
QUALITY_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b(?:QUALITY|KALITE|QTY)[:\s]*([A-Z0-9\-]+)\b"),
    re.compile(r"\b([A-Z]{1,3}\d{2,4}[A-Z]{0,2})\b"),
]
COLOR_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b(?:COLOU?R|RENK)[:\s]*([A-Z0-9][A-Z0-9 \-]*?)(?=\s*(?:\d+(?:[.,]\d+)?\s*M\b|LOT\b|\n|$))"),
    re.compile(r"\b(" + _COLOR_NAMES + r")\b"),
]
LOT_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b(?:LOT|PARTI|BATCH)[:\s#]*([A-Z0-9\-/]+)"),
    re.compile(r"\b([A-Z]{2,3}[\-/]?\d{4,8}[\-/]?\d{0,4})\b"),
    re.compile(r"\b(\d{6,12})\b"),
]
METERS_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\b(?:METRE|METER|MTR|MT)[:\s]*(\d+(?:[.,]\d+)?)"),
    re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:METRES|METERS|METRE|METER|MTR|MT|M)\b"),
]


@dataclass
class LabelFields:
    quality: Optional[str] = None
    color: Optional[str] = None
    lot_number: Optional[str] = None
    meters: Optional[float] = None

    @property
    def fields_found(self) -> int:
        return sum(
            1 for value in (self.quality, self.color, self.lot_number, self.meters)
            if value is not None
        )


def _first_match(text: str, patterns: List[Pattern[str]]) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            value = (match.group(1) or match.group(0)).strip()
            if value:
                return value
    return None


def _parse_meters(text: str) -> Optional[float]:
    for pattern in METERS_PATTERNS:
        for match in pattern.finditer(text):
            try:
                value = float(match.group(1).replace(",", "."))
            except ValueError:
                continue
            if 0 < value <= OCRConstants.MAX_ROLL_METERS:
                return value
    return None


def parse_label_text(raw_text: str) -> LabelFields:
    """Pull quality, color, lot number and meters out of raw label text."""
    text = (raw_text or "").upper()
    return LabelFields(
        quality=_first_match(text, QUALITY_PATTERNS),
        color=_first_match(text, COLOR_PATTERNS),
        lot_number=_first_match(text, LOT_PATTERNS),
        meters=_parse_meters(text),
    )


def is_likely_label(raw_text: str, fields: LabelFields) -> bool:
    if not raw_text or len(raw_text.strip()) < OCRConstants.MIN_LABEL_TEXT_LENGTH:
        return False
    return fields.fields_found >= OCRConstants.MIN_LABEL_FIELDS
