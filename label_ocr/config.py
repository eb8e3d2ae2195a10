from typing import List


class OCRConstants:
    TESSERACT_LANG: str = "eng"
    # Single uniform block of text; labels are short and mostly left-aligned.
    TESSERACT_CONFIG: str = "--oem 3 --psm 6"
    TESSERACT_TIMEOUT_SECONDS: int = 30

    TROCR_MODEL_ID: str = "microsoft/trocr-base-printed"
    TROCR_MAX_NEW_TOKENS: int = 48
    # Rows whose dark-pixel ratio exceeds this are treated as part of a text line.
    TROCR_LINE_INK_RATIO: float = 0.01
    TROCR_MIN_LINE_HEIGHT: int = 8
    TROCR_LINE_PADDING: int = 4

    REMOTE_TIMEOUT_SECONDS: float = 20.0

    IMAGE_LONGEST_SIDE: int = 2000

    # A label needs some text and at least two recognised fields.
    MIN_LABEL_TEXT_LENGTH: int = 10
    MIN_LABEL_FIELDS: int = 2
    LABEL_FIELDS: List[str] = ["quality", "color", "lot_number", "meters"]

    # Rolls longer than this are treated as misreads.
    MAX_ROLL_METERS: float = 300.0

    PREPROCESS_GRAYSCALE: bool = True
    PREPROCESS_CONTRAST_LEVEL: int = 20
    PREPROCESS_SHARPEN_LEVEL: int = 30
