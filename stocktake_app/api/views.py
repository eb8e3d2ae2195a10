import logging

from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from counts.models import CountRoll, CountSession, OcrRerunJob
from counts.services import (
    CounterEntry,
    InvalidStateError,
    ReviewQuery,
    approve_roll,
    bulk_approve,
    can_complete,
    cancel_rerun_job,
    cancel_session,
    complete_review,
    create_rerun_job,
    edit_roll,
    end_session,
    ingest_roll,
    launch_rerun_job,
    list_sessions,
    reject_roll,
    request_recount,
    rerun_roll_ocr,
    review_page,
    start_or_resume_session,
)
from counts.services.export import export_session_csv
from counts.services.ingest import next_capture_sequence
from counts.services.ocr import build_ocr_engine, build_preprocessor, recognize_photo_bytes
from counts.services.photos import (
    discard_photo_variants,
    read_photo,
    store_photo_variants,
    unsign_photo_token,
)
from label_ocr import OCRFailure
from label_ocr.utils.image_utils import ImageUtils
from .metrics import (
    record_bulk_approve,
    record_reconciliation,
    record_review_action,
    record_roll_ingested,
    safe_record_rerun_progress,
)
from .serializers import (
    BulkApproveSerializer,
    CancelSessionSerializer,
    CaptureRollSerializer,
    CountRollSerializer,
    CountSessionSerializer,
    EditRollSerializer,
    OcrRerunJobSerializer,
    ReasonSerializer,
    ReconciliationSerializer,
    RollListQuerySerializer,
    SessionListQuerySerializer,
)


logger = logging.getLogger(__name__)

ACTOR_REQUIRED = {"detail": "The X-Actor-Id header is required.", "code": "actor_required"}

ACTOR_PARAMETER = OpenApiParameter(
    name="X-Actor-Id",
    type=str,
    location=OpenApiParameter.HEADER,
    required=True,
    description="Id of the counter or reviewer performing the action.",
)


def _actor(request) -> str:
    return getattr(request, "actor_id", "") or ""


def _safe_metric(fn, *args) -> None:
    try:
        fn(*args)
    except Exception:
        logger.exception("Failed to record Prometheus metrics (%s)", getattr(fn, "__name__", fn))


class SessionListCreateView(APIView):
    """List sessions, or start / resume the caller's open session."""

    @extend_schema(
        summary="List count sessions",
        parameters=[
            OpenApiParameter("status", str, description="Session status, or 'all'."),
            OpenApiParameter("search", str, description="Matches session number or counter id."),
        ],
        responses={200: CountSessionSerializer(many=True)},
        tags=["Sessions"],
    )
    def get(self, request):
        query = SessionListQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)
        sessions = list_sessions(query.validated_data["status"], query.validated_data["search"])
        return Response(CountSessionSerializer(sessions, many=True).data)

    @extend_schema(
        summary="Start or resume a count session",
        description=(
            "Returns the counter's draft or active session if there is one (200), "
            "otherwise starts a new session with the next session number (201)."
        ),
        request=None,
        parameters=[ACTOR_PARAMETER],
        responses={
            200: CountSessionSerializer,
            201: CountSessionSerializer,
            400: OpenApiResponse(description="Missing X-Actor-Id header"),
            503: OpenApiResponse(description="Session number could not be allocated; retry"),
        },
        tags=["Sessions"],
    )
    def post(self, request):
        counter_id = _actor(request)
        if not counter_id:
            return Response(ACTOR_REQUIRED, status=status.HTTP_400_BAD_REQUEST)
        session, created = start_or_resume_session(counter_id)
        return Response(
            CountSessionSerializer(session).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class SessionDetailView(APIView):
    @extend_schema(summary="Get a count session", responses={200: CountSessionSerializer}, tags=["Sessions"])
    def get(self, request, session_id):
        session = get_object_or_404(CountSession, id=session_id)
        return Response(CountSessionSerializer(session).data)


class SessionEndView(APIView):
    @extend_schema(
        summary="End counting",
        description="Marks counting complete. Allowed with rolls still pending review.",
        request=None,
        responses={
            200: CountSessionSerializer,
            409: OpenApiResponse(description="Session already reconciled or cancelled"),
        },
        tags=["Sessions"],
    )
    def post(self, request, session_id):
        session = end_session(session_id)
        return Response(CountSessionSerializer(session).data)


class SessionCancelView(APIView):
    @extend_schema(
        summary="Cancel a session",
        request=CancelSessionSerializer,
        responses={
            200: CountSessionSerializer,
            409: OpenApiResponse(description="Only draft or active sessions can be cancelled"),
        },
        tags=["Sessions"],
    )
    def post(self, request, session_id):
        body = CancelSessionSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        session = cancel_session(session_id, body.validated_data["reason"])
        return Response(CountSessionSerializer(session).data)


class SessionCanCompleteView(APIView):
    @extend_schema(
        summary="Check whether review can be completed",
        responses={200: OpenApiResponse(description='{"can_complete": bool, "pending": int, "total": int}')},
        tags=["Review"],
    )
    def get(self, request, session_id):
        session = get_object_or_404(CountSession, id=session_id)
        return Response({
            "can_complete": can_complete(session.id),
            "pending": session.rolls_pending_review,
            "total": session.total_rolls_counted,
        })


class SessionCompleteReviewView(APIView):
    @extend_schema(
        summary="Complete review and reconcile",
        description=(
            "Posts one stock adjustment per approved roll plus a session summary to the "
            "inventory ledger, then marks the session reconciled. Safe to retry."
        ),
        request=None,
        parameters=[ACTOR_PARAMETER],
        responses={
            200: ReconciliationSerializer,
            409: OpenApiResponse(description="Rolls still pending, or session closed"),
            503: OpenApiResponse(description="Ledger write failed; session unchanged"),
        },
        tags=["Review"],
    )
    def post(self, request, session_id):
        reviewer_id = _actor(request)
        if not reviewer_id:
            return Response(ACTOR_REQUIRED, status=status.HTTP_400_BAD_REQUEST)
        get_object_or_404(CountSession, id=session_id)
        outcome = complete_review(session_id, reviewer_id)
        _safe_metric(record_reconciliation, outcome.transactions_posted, outcome.total_meters)
        return Response(ReconciliationSerializer(outcome).data)


class SessionExportView(APIView):
    @extend_schema(
        summary="Export session rolls as CSV",
        responses={(200, "text/csv"): OpenApiResponse(description="CSV of effective roll values")},
        tags=["Review"],
    )
    def get(self, request, session_id):
        session = get_object_or_404(CountSession, id=session_id)
        response = HttpResponse(export_session_csv(session), content_type="text/csv; charset=utf-8")
        response["Content-Disposition"] = f'attachment; filename="{session.session_number}.csv"'
        return response


class SessionRollsView(APIView):
    """Review page over a session's rolls, and roll capture."""

    parser_classes = [MultiPartParser, FormParser, JSONParser]

    @extend_schema(
        summary="Review page of rolls",
        description=(
            "Filtered, sorted and paginated rolls. `ready_for_approval_ids` lists the rolls "
            "on this page that can be bulk approved."
        ),
        parameters=[RollListQuerySerializer],
        responses={200: OpenApiResponse(description="Paginated rolls")},
        tags=["Review"],
    )
    def get(self, request, session_id):
        session = get_object_or_404(CountSession, id=session_id)
        params = RollListQuerySerializer(data=request.query_params)
        if not params.is_valid():
            return Response(params.errors, status=status.HTTP_400_BAD_REQUEST)
        v = params.validated_data
        page = review_page(ReviewQuery(
            session_id=session.id,
            filter=v["filter"],
            sort=v["sort"],
            descending=v["order"] == "desc",
            page=v["page"],
            page_size=v["page_size"],
        ))
        return Response({
            "count": page.total,
            "page": page.page,
            "num_pages": page.num_pages,
            "ready_for_approval_ids": page.ready_for_approval_ids,
            "results": CountRollSerializer(page.rolls, many=True).data,
        })

    @extend_schema(
        summary="Capture a roll",
        description=(
            "Stores the photo variants, reads the label with OCR and records the roll as "
            "pending review. If OCR fails the roll is kept as a manual entry."
        ),
        request=CaptureRollSerializer,
        parameters=[ACTOR_PARAMETER],
        responses={
            201: CountRollSerializer,
            400: OpenApiResponse(description="Missing or invalid fields"),
            409: OpenApiResponse(description="Session is not open, or sequence already used"),
        },
        tags=["Capture"],
        examples=[
            OpenApiExample(
                "Roll capture",
                value={"quality": "P200", "color": "NAVY", "lot_number": "L100", "meters": "120.50"},
                request_only=True,
            ),
        ],
    )
    def post(self, request, session_id):
        session = get_object_or_404(CountSession, id=session_id)
        body = CaptureRollSerializer(data=request.data)
        if not body.is_valid():
            return Response(body.errors, status=status.HTTP_400_BAD_REQUEST)
        v = body.validated_data
        if not session.is_open:
            raise InvalidStateError(f"Session {session.session_number} is {session.status}; it no longer accepts rolls.")

        # The explicit sequence (or None) goes to ingest, which checks it under
        # the session lock; the computed one only names the photo files.
        requested_sequence = v.get("capture_sequence")
        sequence = requested_sequence or next_capture_sequence(session.id)
        is_manual = v["is_manual_entry"]
        stored, photo_hash, ocr_result = {}, "", None
        upload = v.get("photo")
        if upload is not None:
            data = upload.read()
            photo_hash = ImageUtils.sha256_bytes(data)
            stored = store_photo_variants(session.id, sequence, data)
            if not v["skip_ocr"] and not is_manual:
                ocr_result = self._read_label(data, session.id, sequence)
            else:
                is_manual = True
        else:
            is_manual = True

        try:
            roll = ingest_roll(
                session.id,
                requested_sequence,
                CounterEntry(
                    quality=v["quality"],
                    color=v["color"],
                    lot_number=v["lot_number"],
                    meters=v["meters"],
                    is_manual_entry=is_manual,
                    captured_by=_actor(request),
                ),
                ocr_result,
                photo_path=stored.get("original", ""),
                photo_hash=photo_hash,
            )
        except Exception:
            discard_photo_variants(stored)
            raise
        _safe_metric(
            record_roll_ingested,
            roll.ocr_confidence_level,
            ocr_result.processing_ms if ocr_result is not None else None,
        )
        return Response(CountRollSerializer(roll).data, status=status.HTTP_201_CREATED)

    @staticmethod
    def _read_label(data, session_id, sequence):
        """OCR the upload. A failing or misconfigured engine leaves the capture as a manual entry."""
        engine = None
        try:
            engine = build_ocr_engine()
            return recognize_photo_bytes(data, engine, build_preprocessor())
        except (OCRFailure, ValueError, OSError) as exc:
            logger.warning("OCR failed for session %s seq %s: %s", session_id, sequence, exc)
            return None
        finally:
            if engine is not None:
                engine.release()


class BulkApproveView(APIView):
    @extend_schema(
        summary="Bulk approve rolls",
        description="Approves the listed rolls that are still pending review; others are skipped.",
        request=BulkApproveSerializer,
        parameters=[ACTOR_PARAMETER],
        responses={200: OpenApiResponse(description='{"approved": int, "requested": int, "session": {...}}')},
        tags=["Review"],
    )
    def post(self, request, session_id):
        reviewer_id = _actor(request)
        if not reviewer_id:
            return Response(ACTOR_REQUIRED, status=status.HTTP_400_BAD_REQUEST)
        get_object_or_404(CountSession, id=session_id)
        body = BulkApproveSerializer(data=request.data)
        if not body.is_valid():
            return Response(body.errors, status=status.HTTP_400_BAD_REQUEST)
        roll_ids = body.validated_data["roll_ids"]
        approved = bulk_approve(session_id, roll_ids, reviewer_id)
        _safe_metric(record_bulk_approve, approved)
        session = CountSession.objects.get(id=session_id)
        return Response({
            "approved": approved,
            "requested": len(set(roll_ids)),
            "session": CountSessionSerializer(session).data,
        })


class _RollActionView(APIView):
    """Shared plumbing for single-roll review actions."""

    action_name = ""

    def perform(self, roll_id, reviewer_id, data):
        raise NotImplementedError

    def post(self, request, roll_id):
        reviewer_id = _actor(request)
        if not reviewer_id:
            return Response(ACTOR_REQUIRED, status=status.HTTP_400_BAD_REQUEST)
        get_object_or_404(CountRoll, id=roll_id)
        roll = self.perform(roll_id, reviewer_id, request.data)
        _safe_metric(record_review_action, self.action_name)
        return Response(CountRollSerializer(roll).data)


_ROLL_ACTION_RESPONSES = {
    200: CountRollSerializer,
    400: OpenApiResponse(description="Missing X-Actor-Id header or invalid body"),
    404: OpenApiResponse(description="Roll not found"),
    409: OpenApiResponse(description="Roll is not pending review, or session closed"),
}


class ApproveRollView(_RollActionView):
    action_name = "approve"

    @extend_schema(summary="Approve a roll", request=None, parameters=[ACTOR_PARAMETER],
                   responses=_ROLL_ACTION_RESPONSES, tags=["Review"])
    def post(self, request, roll_id):
        return super().post(request, roll_id)

    def perform(self, roll_id, reviewer_id, data):
        return approve_roll(roll_id, reviewer_id)


class RejectRollView(_RollActionView):
    action_name = "reject"

    @extend_schema(summary="Reject a roll", request=ReasonSerializer, parameters=[ACTOR_PARAMETER],
                   responses=_ROLL_ACTION_RESPONSES, tags=["Review"])
    def post(self, request, roll_id):
        return super().post(request, roll_id)

    def perform(self, roll_id, reviewer_id, data):
        body = ReasonSerializer(data=data)
        body.is_valid(raise_exception=True)
        return reject_roll(roll_id, reviewer_id, body.validated_data["reason"])


class RecountRollView(_RollActionView):
    action_name = "recount"

    @extend_schema(summary="Request a recount", request=ReasonSerializer, parameters=[ACTOR_PARAMETER],
                   responses=_ROLL_ACTION_RESPONSES, tags=["Review"])
    def post(self, request, roll_id):
        return super().post(request, roll_id)

    def perform(self, roll_id, reviewer_id, data):
        body = ReasonSerializer(data=data)
        body.is_valid(raise_exception=True)
        return request_recount(roll_id, reviewer_id, body.validated_data["reason"])


class EditRollView(_RollActionView):
    action_name = "edit"

    @extend_schema(
        summary="Edit reviewer overrides",
        description="Writes admin_* values (upper-cased). Status is unchanged.",
        request=EditRollSerializer,
        parameters=[ACTOR_PARAMETER],
        responses=_ROLL_ACTION_RESPONSES,
        tags=["Review"],
        examples=[OpenApiExample("Fix meters", value={"meters": "120.00"}, request_only=True)],
    )
    def post(self, request, roll_id):
        return super().post(request, roll_id)

    def perform(self, roll_id, reviewer_id, data):
        body = EditRollSerializer(data=data)
        body.is_valid(raise_exception=True)
        return edit_roll(roll_id, body.validated_data, reviewer_id)


class RerunRollOcrView(_RollActionView):
    action_name = "rerun_ocr"

    @extend_schema(
        summary="Rerun OCR for one roll",
        request=None,
        parameters=[ACTOR_PARAMETER],
        responses={**_ROLL_ACTION_RESPONSES, 502: OpenApiResponse(description="Photo or OCR unavailable")},
        tags=["OCR"],
    )
    def post(self, request, roll_id):
        return super().post(request, roll_id)

    def perform(self, roll_id, reviewer_id, data):
        return rerun_roll_ocr(roll_id)


class OcrRerunCreateView(APIView):
    @extend_schema(
        summary="Start a bulk OCR rerun",
        description=(
            "Queues every roll with low, medium or no confidence for sequential OCR "
            "re-processing. Poll the job for progress."
        ),
        request=None,
        parameters=[ACTOR_PARAMETER],
        responses={
            202: OcrRerunJobSerializer,
            409: OpenApiResponse(description="A rerun is already in progress, or session closed"),
        },
        tags=["OCR"],
    )
    def post(self, request, session_id):
        get_object_or_404(CountSession, id=session_id)
        job = create_rerun_job(session_id, requested_by=_actor(request))
        job = launch_rerun_job(job, on_progress=safe_record_rerun_progress)
        return Response(OcrRerunJobSerializer(job).data, status=status.HTTP_202_ACCEPTED)


class OcrRerunDetailView(APIView):
    @extend_schema(summary="OCR rerun progress", responses={200: OcrRerunJobSerializer}, tags=["OCR"])
    def get(self, request, job_id):
        job = get_object_or_404(OcrRerunJob, id=job_id)
        return Response(OcrRerunJobSerializer(job).data)


class OcrRerunCancelView(APIView):
    @extend_schema(
        summary="Cancel an OCR rerun",
        description="The job stops before its next roll; the roll in progress is finished.",
        request=None,
        responses={200: OcrRerunJobSerializer},
        tags=["OCR"],
    )
    def post(self, request, job_id):
        get_object_or_404(OcrRerunJob, id=job_id)
        job = cancel_rerun_job(job_id)
        return Response(OcrRerunJobSerializer(job).data)


class PhotoDownloadView(APIView):
    @extend_schema(
        summary="Download a photo by signed link",
        responses={
            (200, "image/jpeg"): OpenApiResponse(description="JPEG bytes"),
            502: OpenApiResponse(description="Link expired, invalid, or photo missing"),
        },
        tags=["Capture"],
    )
    def get(self, request, token):
        path = unsign_photo_token(token)
        response = HttpResponse(read_photo(path), content_type="image/jpeg")
        response["Cache-Control"] = "private, max-age=300"
        return response
