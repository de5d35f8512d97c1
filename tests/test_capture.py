"""Tests for image capture and the quality gate."""

import base64
import io

import pytest
from PIL import Image

from beneficiary.errors import VerificationError
from beneficiary.kyc.capture import (
    MAX_EDGE,
    CaptureError,
    CaptureKind,
    QualityRules,
    capture_image,
    check_quality,
    strip_data_uri,
)
from conftest import make_jpeg


class TestCaptureImage:
    """Decoding and re-encoding captures."""

    def test_accepts_usable_id(self, id_image):
        """A sharp, evenly lit ID passes and is re-encoded as JPEG."""
        captured = capture_image(id_image, CaptureKind.ID_FRONT)
        assert (captured.width, captured.height) == (800, 500)
        assert captured.content[:2] == b"\xff\xd8"
        assert captured.as_data_uri().startswith("data:image/jpeg;base64,")

    def test_portrait_id_accepted(self):
        """Either orientation is accepted."""
        captured = capture_image(make_jpeg(500, 800), CaptureKind.ID_BACK)
        assert captured.height == 800

    def test_base64_and_data_uri(self, selfie_image):
        """Base64 strings and data URIs decode to the same capture size."""
        encoded = base64.b64encode(selfie_image).decode()
        plain = capture_image(encoded, CaptureKind.SELFIE)
        uri = capture_image(f"data:image/jpeg;base64,{encoded}", CaptureKind.SELFIE)
        assert (plain.width, plain.height) == (uri.width, uri.height) == (400, 400)

    def test_file_path(self, tmp_path, selfie_image):
        path = tmp_path / "selfie.jpg"
        path.write_bytes(selfie_image)
        assert capture_image(path, CaptureKind.SELFIE).width == 400
        assert capture_image(str(path), CaptureKind.SELFIE).width == 400

    def test_large_image_downscaled(self):
        """The longest edge is capped."""
        captured = capture_image(make_jpeg(3200, 2000), CaptureKind.ID_FRONT)
        assert max(captured.width, captured.height) == MAX_EDGE

    def test_low_resolution_rejected(self):
        with pytest.raises(CaptureError) as exc_info:
            capture_image(make_jpeg(300, 200), CaptureKind.ID_FRONT)
        assert "low resolution (300x200)" in exc_info.value.reasons

    def test_dark_flat_image_rejected(self):
        """A dark image without detail fails brightness and contrast."""
        with pytest.raises(CaptureError) as exc_info:
            capture_image(make_jpeg(800, 500, level=20), CaptureKind.ID_FRONT)
        reasons = exc_info.value.reasons
        assert any(r.startswith("too dark") for r in reasons)
        assert any(r.startswith("low contrast") for r in reasons)

    def test_bright_image_rejected(self):
        with pytest.raises(CaptureError) as exc_info:
            capture_image(make_jpeg(400, 400, level=250), CaptureKind.SELFIE)
        assert any(r.startswith("too bright") for r in exc_info.value.reasons)

    def test_error_is_verification_error(self):
        """Capture failures carry the kind and reasons."""
        with pytest.raises(VerificationError) as exc_info:
            capture_image(b"not an image", CaptureKind.SELFIE)
        error = exc_info.value.to_dict()
        assert error["code"] == "CAPTURE_REJECTED"
        assert error["details"]["kind"] == "selfie"

    def test_empty_and_invalid_base64(self):
        with pytest.raises(CaptureError, match="empty image"):
            capture_image(b"", CaptureKind.SELFIE)
        with pytest.raises(CaptureError, match="not valid base64"):
            capture_image("***", CaptureKind.SELFIE)

    def test_unsupported_source(self):
        with pytest.raises(TypeError):
            capture_image(12345, CaptureKind.SELFIE)

    def test_oversized_dimensions_rejected(self):
        """An image whose header declares too many pixels is refused before decoding."""
        buffer = io.BytesIO()
        Image.new("1", (8000, 6000)).save(buffer, format="PNG")
        with pytest.raises(CaptureError) as exc_info:
            capture_image(buffer.getvalue(), CaptureKind.ID_FRONT)
        assert exc_info.value.code == "CAPTURE_REJECTED"
        assert "image too large (8000x6000)" in exc_info.value.reasons

    def test_decompression_bomb_rejected(self, monkeypatch, id_image):
        """Pillow's decompression bomb guard becomes a capture rejection."""
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
        with pytest.raises(CaptureError) as exc_info:
            capture_image(id_image, CaptureKind.ID_FRONT)
        assert exc_info.value.reasons == ["unreadable image (DecompressionBombError)"]


class TestQuality:
    """The quality gate on its own."""

    def test_custom_rules(self):
        """Rules can be relaxed per call."""
        image = Image.linear_gradient("L").convert("RGB")
        assert check_quality(image, QualityRules(min_width=100, min_height=100)) == []
        assert check_quality(image, QualityRules(min_width=1000, min_height=100)) == [
            "low resolution (256x256)"
        ]

    def test_strip_data_uri(self):
        assert strip_data_uri("data:image/png;base64,QUJD") == "QUJD"
        assert strip_data_uri("QUJD") == "QUJD"
