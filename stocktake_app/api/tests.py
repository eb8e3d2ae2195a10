import os
import shutil
import tempfile
from decimal import Decimal
from unittest.mock import patch

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import override_settings
from django.urls import reverse
from rest_framework.test import APITestCase

from counts.models import CountRoll, CountSession, OcrRerunJob, RollStatus, SessionStatus
from counts.services import approve_roll
from counts.testing import FakeEngine, add_roll, jpeg_bytes, make_session, ocr_result
from ledger.models import LedgerTransaction


ACTOR = {"HTTP_X_ACTOR_ID": "reviewer-1"}


def photo_upload(name="label.jpg"):
    return SimpleUploadedFile(name, jpeg_bytes(), content_type="image/jpeg")


@override_settings(API_STATIC_TOKEN="", STOCKTAKE={"OCR_RERUN_ASYNC": False})
class SessionApiTests(APITestCase):
    def test_start_then_resume(self):
        url = reverse("session-list")
        first = self.client.post(url, **{"HTTP_X_ACTOR_ID": "counter-1"})
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.data["status"], SessionStatus.ACTIVE)
        again = self.client.post(url, **{"HTTP_X_ACTOR_ID": "counter-1"})
        self.assertEqual(again.status_code, 200)
        self.assertEqual(again.data["id"], first.data["id"])

    def test_start_requires_actor(self):
        response = self.client.post(reverse("session-list"))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "actor_required")

    def test_list_with_filter(self):
        make_session(counter="a")
        make_session(counter="b", status=SessionStatus.RECONCILED)
        response = self.client.get(reverse("session-list"), {"status": "reconciled"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["started_by"], "b")
        bad = self.client.get(reverse("session-list"), {"status": "bogus"})
        self.assertEqual(bad.status_code, 400)

    def test_end_and_cancel(self):
        session = make_session()
        response = self.client.post(reverse("session-end", args=[session.id]))
        self.assertEqual(response.data["status"], SessionStatus.COUNTING_COMPLETE)
        response = self.client.post(reverse("session-cancel", args=[session.id]), {"reason": "late"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "invalid_state")

    def test_missing_session_is_404(self):
        self.assertEqual(self.client.get(reverse("session-detail", args=[424242])).status_code, 404)
        self.assertEqual(self.client.post(reverse("session-end", args=[424242])).status_code, 404)


@override_settings(API_STATIC_TOKEN="", STOCKTAKE={"OCR_RERUN_ASYNC": False})
class CaptureApiTests(APITestCase):
    def setUp(self):
        self.media = tempfile.mkdtemp()
        self.media_override = override_settings(MEDIA_ROOT=self.media)
        self.media_override.enable()
        self.session = make_session(counter="counter-1")
        self.url = reverse("session-rolls", args=[self.session.id])

    def tearDown(self):
        self.media_override.disable()
        shutil.rmtree(self.media, ignore_errors=True)

    def capture(self, engine, **fields):
        data = {"quality": "p200", "color": "navy", "lot_number": "L100", "meters": "120.50", "photo": photo_upload()}
        data.update(fields)
        with patch("api.views.build_ocr_engine", return_value=engine):
            return self.client.post(self.url, data, format="multipart", **{"HTTP_X_ACTOR_ID": "counter-1"})

    def test_capture_with_ocr(self):
        engine = FakeEngine([ocr_result(confidence=92)])
        response = self.capture(engine)
        self.assertEqual(response.status_code, 201, response.data)
        self.assertEqual(response.data["ocr_confidence_level"], "high")
        self.assertEqual(response.data["counter_quality"], "P200")
        self.assertEqual(response.data["captured_by"], "counter-1")
        self.assertTrue(response.data["photo_url"].startswith("/api/photos/"))
        self.assertEqual(engine.released, 1)

        roll = CountRoll.objects.get(id=response.data["id"])
        self.assertTrue(roll.photo_path.startswith(f"{self.session.id}/original/1_"))
        self.assertEqual(len(roll.photo_hash_sha256), 64)

        photo = self.client.get(response.data["thumbnail_url"])
        self.assertEqual(photo.status_code, 200)
        self.assertEqual(photo["Content-Type"], "image/jpeg")

    def test_ocr_failure_degrades_to_manual_entry(self):
        response = self.capture(FakeEngine([None]))
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.data["is_manual_entry"])
        self.assertIsNone(response.data["ocr_confidence_level"])
        self.assertEqual(response.data["ocr_status"], "failed")

    def test_capture_without_photo_is_manual(self):
        response = self.client.post(
            self.url, {"quality": "P200", "meters": "10"}, format="multipart", **{"HTTP_X_ACTOR_ID": "counter-1"},
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["ocr_status"], "skipped")

    def test_invalid_photo_rejected(self):
        bad = SimpleUploadedFile("bad.txt", b"not an image", content_type="text/plain")
        response = self.capture(FakeEngine(), photo=bad)
        self.assertEqual(response.status_code, 400)
        self.assertIn("Upload a valid image", str(response.data))

    def test_closed_session_rejects_capture(self):
        CountSession.objects.filter(id=self.session.id).update(status=SessionStatus.COUNTING_COMPLETE)
        response = self.capture(FakeEngine())
        self.assertEqual(response.status_code, 409)
        self.assertFalse(CountRoll.objects.exists())

    def stored_files(self, variant):
        folder = os.path.join(self.media, str(self.session.id), variant)
        return sorted(os.listdir(folder)) if os.path.isdir(folder) else []

    def test_refused_capture_leaves_no_photos(self):
        first = self.capture(FakeEngine(), capture_sequence=1)
        second = self.capture(FakeEngine(), capture_sequence=1)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.data["code"], "precondition_failed")

        roll = CountRoll.objects.get()
        for variant in ("original", "medium", "thumb"):
            self.assertEqual(len(self.stored_files(variant)), 1, variant)
        self.assertEqual(self.stored_files("original"), [os.path.basename(roll.photo_path)])

    @override_settings(STOCKTAKE={"OCR_ENGINE": "remote", "OCR_REMOTE_URL": ""})
    def test_misconfigured_engine_falls_back_to_manual_entry(self):
        response = self.client.post(
            self.url,
            {"quality": "P200", "meters": "10", "photo": photo_upload()},
            format="multipart",
            **{"HTTP_X_ACTOR_ID": "counter-1"},
        )
        self.assertEqual(response.status_code, 201, response.data)
        self.assertTrue(response.data["is_manual_entry"])
        self.assertEqual(response.data["ocr_status"], "failed")
        self.assertIsNotNone(response.data["photo_url"])

    def test_duplicate_is_flagged(self):
        first = self.capture(FakeEngine())
        second = self.capture(FakeEngine(), meters="120.30")
        self.assertTrue(second.data["is_possible_duplicate"])
        self.assertEqual(second.data["duplicate_of_roll"], first.data["id"])

    def test_bad_photo_token(self):
        response = self.client.get(reverse("photo-download", args=["garbage"]))
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data["code"], "photo_unavailable")


@override_settings(API_STATIC_TOKEN="", STOCKTAKE={"OCR_RERUN_ASYNC": False})
class ReviewApiTests(APITestCase):
    def setUp(self):
        self.session = make_session()
        self.rolls = [add_roll(self.session, counter_meters=Decimal("10.00")) for _ in range(3)]

    def test_review_page(self):
        response = self.client.get(
            reverse("session-rolls", args=[self.session.id]),
            {"filter": "pending", "sort": "capture_sequence", "order": "desc", "page_size": 2},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 3)
        self.assertEqual(response.data["num_pages"], 2)
        self.assertEqual([r["id"] for r in response.data["results"]], [self.rolls[2].id, self.rolls[1].id])
        self.assertEqual(response.data["results"][0]["effective"]["meters"], "10.00")

    def test_review_page_rejects_unknown_sort(self):
        response = self.client.get(reverse("session-rolls", args=[self.session.id]), {"sort": "price"})
        self.assertEqual(response.status_code, 400)

    def test_approve_and_double_approve(self):
        url = reverse("roll-approve", args=[self.rolls[0].id])
        self.assertEqual(self.client.post(url, **ACTOR).status_code, 200)
        response = self.client.post(url, **ACTOR)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "roll_not_pending")

    def test_actions_require_actor(self):
        response = self.client.post(reverse("roll-approve", args=[self.rolls[0].id]))
        self.assertEqual(response.status_code, 400)

    def test_reject_recount_edit(self):
        response = self.client.post(reverse("roll-reject", args=[self.rolls[0].id]), {"reason": "torn"}, **ACTOR)
        self.assertEqual(response.data["status"], RollStatus.REJECTED)
        self.assertEqual(response.data["admin_notes"], "torn")

        response = self.client.post(reverse("roll-recount", args=[self.rolls[0].id]), {"reason": "check"}, **ACTOR)
        self.assertEqual(response.data["status"], RollStatus.RECOUNT_REQUESTED)

        response = self.client.post(
            reverse("roll-edit", args=[self.rolls[1].id]), {"meters": "12.00", "quality": "x9"}, format="json", **ACTOR,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["admin_quality"], "X9")
        self.assertEqual(response.data["effective"]["meters"], "12.00")

        empty = self.client.post(reverse("roll-edit", args=[self.rolls[1].id]), {}, format="json", **ACTOR)
        self.assertEqual(empty.status_code, 400)

    def test_bulk_approve_and_complete(self):
        url = reverse("session-bulk-approve", args=[self.session.id])
        ids = [r.id for r in self.rolls[:2]]
        response = self.client.post(url, {"roll_ids": ids}, format="json", **ACTOR)
        self.assertEqual(response.data["approved"], 2)
        again = self.client.post(url, {"roll_ids": ids}, format="json", **ACTOR)
        self.assertEqual(again.data["approved"], 0)

        can = self.client.get(reverse("session-can-complete", args=[self.session.id]))
        self.assertFalse(can.data["can_complete"])
        blocked = self.client.post(reverse("session-complete-review", args=[self.session.id]), **ACTOR)
        self.assertEqual(blocked.status_code, 409)
        self.assertEqual(blocked.data["code"], "not_ready")

        approve_roll(self.rolls[2].id, "reviewer-1")
        done = self.client.post(reverse("session-complete-review", args=[self.session.id]), **ACTOR)
        self.assertEqual(done.status_code, 200)
        self.assertEqual(done.data["transactions_posted"], 3)
        self.assertEqual(done.data["total_meters"], "30.00")
        self.assertEqual(done.data["session"]["status"], SessionStatus.RECONCILED)
        self.assertEqual(LedgerTransaction.objects.count(), 3)

    def test_export_csv(self):
        response = self.client.get(reverse("session-export", args=[self.session.id]))
        self.assertEqual(response.status_code, 200)
        self.assertIn("text/csv", response["Content-Type"])
        self.assertEqual(len(response.content.decode().strip().splitlines()), 4)


@override_settings(API_STATIC_TOKEN="", STOCKTAKE={"OCR_RERUN_ASYNC": False})
class OcrRerunApiTests(APITestCase):
    def setUp(self):
        self.session = make_session()
        for seq in range(1, 4):
            add_roll(self.session, photo_path=f"{self.session.id}/original/{seq}_x.jpg")

    def test_rerun_job_runs_and_reports_progress(self):
        with patch("counts.services.rerun.build_ocr_engine", return_value=FakeEngine()), \
                patch("counts.services.rerun.read_photo", return_value=jpeg_bytes()):
            response = self.client.post(reverse("session-ocr-rerun", args=[self.session.id]), **ACTOR)
        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.data["progress"], {"current": 3, "total": 3, "successCount": 3, "failureCount": 0})

        detail = self.client.get(reverse("ocr-rerun-detail", args=[response.data["id"]]))
        self.assertEqual(detail.data["status"], "completed")

    def test_second_job_conflicts(self):
        OcrRerunJob.objects.create(session=self.session, total=0)
        response = self.client.post(reverse("session-ocr-rerun", args=[self.session.id]), **ACTOR)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "rerun_in_progress")

    def test_cancel(self):
        job = OcrRerunJob.objects.create(session=self.session, total=0)
        response = self.client.post(reverse("ocr-rerun-cancel", args=[job.id]))
        self.assertEqual(response.data["status"], "cancelled")

    def test_single_roll_rerun_photo_missing(self):
        roll = self.session.rolls.first()
        with patch("counts.services.rerun.build_ocr_engine", return_value=FakeEngine()):
            response = self.client.post(reverse("roll-rerun-ocr", args=[roll.id]), **ACTOR)
        self.assertEqual(response.status_code, 502)


class ApiTokenTests(APITestCase):
    @override_settings(API_STATIC_TOKEN="secret")
    def test_token_required(self):
        self.assertEqual(self.client.get(reverse("session-list")).status_code, 401)
        ok = self.client.get(reverse("session-list"), HTTP_AUTHORIZATION="Bearer secret")
        self.assertEqual(ok.status_code, 200)

    @override_settings(API_STATIC_TOKEN="")
    def test_metrics_endpoint(self):
        response = self.client.get(reverse("metrics"))
        self.assertEqual(response.status_code, 200)
        self.assertIn(b"stocktake_rolls_ingested_total", response.content)
