from django.urls import path
from .views import (
    ApproveRollView,
    BulkApproveView,
    EditRollView,
    OcrRerunCancelView,
    OcrRerunCreateView,
    OcrRerunDetailView,
    PhotoDownloadView,
    RecountRollView,
    RejectRollView,
    RerunRollOcrView,
    SessionCancelView,
    SessionCanCompleteView,
    SessionCompleteReviewView,
    SessionDetailView,
    SessionEndView,
    SessionExportView,
    SessionListCreateView,
    SessionRollsView,
)

urlpatterns = [
    path("sessions/", SessionListCreateView.as_view(), name="session-list"),
    path("sessions/<int:session_id>/", SessionDetailView.as_view(), name="session-detail"),
    path("sessions/<int:session_id>/end/", SessionEndView.as_view(), name="session-end"),
    path("sessions/<int:session_id>/cancel/", SessionCancelView.as_view(), name="session-cancel"),
    path("sessions/<int:session_id>/can-complete/", SessionCanCompleteView.as_view(), name="session-can-complete"),
    path(
        "sessions/<int:session_id>/complete-review/",
        SessionCompleteReviewView.as_view(),
        name="session-complete-review",
    ),
    path("sessions/<int:session_id>/export.csv", SessionExportView.as_view(), name="session-export"),
    path("sessions/<int:session_id>/rolls/", SessionRollsView.as_view(), name="session-rolls"),
    path("sessions/<int:session_id>/rolls/bulk-approve/", BulkApproveView.as_view(), name="session-bulk-approve"),
    path("sessions/<int:session_id>/ocr-rerun/", OcrRerunCreateView.as_view(), name="session-ocr-rerun"),
    path("rolls/<int:roll_id>/approve/", ApproveRollView.as_view(), name="roll-approve"),
    path("rolls/<int:roll_id>/reject/", RejectRollView.as_view(), name="roll-reject"),
    path("rolls/<int:roll_id>/recount/", RecountRollView.as_view(), name="roll-recount"),
    path("rolls/<int:roll_id>/edit/", EditRollView.as_view(), name="roll-edit"),
    path("rolls/<int:roll_id>/rerun-ocr/", RerunRollOcrView.as_view(), name="roll-rerun-ocr"),
    path("ocr-rerun/<int:job_id>/", OcrRerunDetailView.as_view(), name="ocr-rerun-detail"),
    path("ocr-rerun/<int:job_id>/cancel/", OcrRerunCancelView.as_view(), name="ocr-rerun-cancel"),
    path("photos/<str:token>/", PhotoDownloadView.as_view(), name="photo-download"),
]
