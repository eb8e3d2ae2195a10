import logging

from django.core.exceptions import ObjectDoesNotExist
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from counts.services.errors import (
    ConflictError,
    InvalidStateError,
    PhotoUnavailableError,
    PreconditionError,
    ReconciliationFailedError,
    StockTakeError,
)
from label_ocr import OCRFailure


logger = logging.getLogger(__name__)

# Most specific first.
STATUS_BY_ERROR = (
    (ConflictError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ReconciliationFailedError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PhotoUnavailableError, status.HTTP_502_BAD_GATEWAY),
    (PreconditionError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (StockTakeError, status.HTTP_400_BAD_REQUEST),
)


def _status_for(exc: StockTakeError) -> int:
    for error_class, code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_400_BAD_REQUEST


def stocktake_exception_handler(exc, context):
    """
    DRF exception handler that turns engine errors into `{"detail", "code"}` bodies.

    Anything it does not recognise goes to DRF's default handler.
    """
    if isinstance(exc, StockTakeError):
        code = _status_for(exc)
        if code >= 500:
            logger.warning("%s: %s", type(exc).__name__, exc)
        return Response({"detail": str(exc), "code": exc.code}, status=code)
    if isinstance(exc, OCRFailure):
        logger.warning("OCR failed: %s", exc)
        return Response({"detail": f"OCR failed: {exc}", "code": "ocr_failed"}, status=status.HTTP_502_BAD_GATEWAY)
    if isinstance(exc, ObjectDoesNotExist):
        return Response({"detail": "Not found.", "code": "not_found"}, status=status.HTTP_404_NOT_FOUND)
    return exception_handler(exc, context)
