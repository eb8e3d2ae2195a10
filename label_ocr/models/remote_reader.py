import io
import logging
import time
from typing import Any, Dict, Optional

import requests
from PIL import Image

from label_ocr.config import OCRConstants
from label_ocr.engine import LabelOCREngine, LabelOCRResult, OCRFailure, build_result
from label_ocr.label_parser import LabelFields, parse_label_text


logger = logging.getLogger(__name__)


class RemoteLabelEngine(LabelOCREngine):
    """
    Send label photos to an HTTP OCR service.

    The service answers with `{"ocr": {"rawText"}, "extracted": {...},
    "confidence": {"overallScore"}}`. Extracted fields it leaves out are
    filled from the raw text with the local label parser.
    """

    name = "remote"

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = OCRConstants.REMOTE_TIMEOUT_SECONDS,
    ) -> None:
        if not endpoint:
            raise ValueError("RemoteLabelEngine needs an endpoint URL")
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._session: Optional[requests.Session] = None

    def _http(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            if self.api_key:
                self._session.headers["Authorization"] = f"Bearer {self.api_key}"
        return self._session

    def recognize(self, image: Image.Image) -> LabelOCRResult:
        t0 = time.perf_counter()
        buf = io.BytesIO()
        image.convert("RGB").save(buf, format="JPEG", quality=90)
        buf.seek(0)
        files = {"image": ("label.jpg", buf, "image/jpeg")}
        try:
            resp = self._http().post(self.endpoint, files=files, timeout=self.timeout)
        except requests.RequestException as exc:
            raise OCRFailure(f"remote OCR request failed: {exc}") from exc
        if not resp.ok:
            raise OCRFailure(f"remote OCR returned HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            payload: Dict[str, Any] = resp.json()
        except ValueError as exc:
            raise OCRFailure("remote OCR returned invalid JSON") from exc
        if payload.get("success") is False:
            raise OCRFailure(payload.get("error") or "remote OCR reported failure")

        raw_text = (payload.get("ocr") or {}).get("rawText") or ""
        extracted = payload.get("extracted") or {}
        parsed = parse_label_text(raw_text)
        meters = extracted.get("meters")
        fields = LabelFields(
            quality=extracted.get("quality") or parsed.quality,
            color=extracted.get("color") or parsed.color,
            lot_number=extracted.get("lotNumber") or parsed.lot_number,
            meters=float(meters) if meters is not None else parsed.meters,
        )
        score = (payload.get("confidence") or {}).get("overallScore")
        if score is None:
            score = (payload.get("ocr") or {}).get("tesseractConfidence", 0.0)
        return build_result(
            raw_text, float(score or 0.0), fields,
            processing_ms=(time.perf_counter() - t0) * 1000.0,
        )

    def release(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
