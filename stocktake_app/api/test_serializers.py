from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase, override_settings

from counts.testing import jpeg_bytes
from .serializers import (
    BulkApproveSerializer,
    CaptureRollSerializer,
    EditRollSerializer,
    RollListQuerySerializer,
)


def capture_data(**overrides):
    data = {"quality": "P200", "meters": "12.50"}
    data.update(overrides)
    return data


class CaptureRollSerializerTests(SimpleTestCase):
    def test_minimal_manual_entry(self):
        s = CaptureRollSerializer(data=capture_data())
        self.assertTrue(s.is_valid(), s.errors)
        self.assertEqual(s.validated_data["color"], "")
        self.assertFalse(s.validated_data["skip_ocr"])

    def test_meters_must_be_positive(self):
        s = CaptureRollSerializer(data=capture_data(meters="0"))
        self.assertFalse(s.is_valid())
        self.assertIn("meters", s.errors)

    def test_invalid_photo(self):
        bad = SimpleUploadedFile("bad.txt", b"not an image", content_type="text/plain")
        s = CaptureRollSerializer(data=capture_data(photo=bad))
        self.assertFalse(s.is_valid())
        self.assertIn("Upload a valid image", str(s.errors))

    @override_settings(IMAGE_UPLOAD_MAX_WIDTH=128, IMAGE_UPLOAD_MAX_HEIGHT=128)
    def test_resolution_out_of_range(self):
        big = SimpleUploadedFile("big.jpg", jpeg_bytes(size=(400, 300)), content_type="image/jpeg")
        s = CaptureRollSerializer(data=capture_data(photo=big))
        self.assertFalse(s.is_valid())
        self.assertIn("Image resolution out of allowed range", str(s.errors))

    def test_valid_photo_is_rewound(self):
        photo = SimpleUploadedFile("ok.jpg", jpeg_bytes(), content_type="image/jpeg")
        s = CaptureRollSerializer(data=capture_data(photo=photo))
        self.assertTrue(s.is_valid(), s.errors)
        self.assertEqual(s.validated_data["photo"].read(), jpeg_bytes())


class RollListQuerySerializerTests(SimpleTestCase):
    def test_defaults(self):
        s = RollListQuerySerializer(data={})
        self.assertTrue(s.is_valid(), s.errors)
        self.assertEqual(s.validated_data["filter"], "all")
        self.assertIsNone(s.validated_data["sort"])
        self.assertEqual(s.validated_data["page"], 1)

    def test_unknown_filter(self):
        s = RollListQuerySerializer(data={"filter": "everything"})
        self.assertFalse(s.is_valid())


class EditRollSerializerTests(SimpleTestCase):
    def test_requires_a_field(self):
        s = EditRollSerializer(data={})
        self.assertFalse(s.is_valid())
        self.assertIn("Provide at least one field", str(s.errors))

    def test_null_clears(self):
        s = EditRollSerializer(data={"quality": None})
        self.assertTrue(s.is_valid(), s.errors)
        self.assertIsNone(s.validated_data["quality"])


class BulkApproveSerializerTests(SimpleTestCase):
    def test_ids_must_be_positive_integers(self):
        s = BulkApproveSerializer(data={"roll_ids": [1, "x"]})
        self.assertFalse(s.is_valid())
