"""
Tests for rendition generation and capture metadata
"""
from io import BytesIO

import pytest
from PIL import ExifTags, Image

from galleria.services.images import (
    InvalidImage,
    derive_renditions,
    extract_capture_metadata,
    fit_inside,
    validate,
)


def decoded(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


class TestValidate:
    @pytest.mark.parametrize("fmt", ["JPEG", "PNG", "WEBP", "TIFF"])
    def test_supported_formats(self, image_factory, fmt):
        assert validate(image_factory(fmt=fmt)) is True

    def test_heif(self, image_factory):
        data = image_factory(64, 48, fmt="HEIF")
        assert validate(data) is True

        result = derive_renditions(data)
        assert result.original_ext == "heic"
        assert result.original.content_type == "image/heic"
        assert (result.original.width, result.original.height) == (64, 48)
        assert decoded(result.web.data).format == "WEBP"

    @pytest.mark.parametrize("fmt", ["GIF", "BMP"])
    def test_other_image_formats_rejected(self, image_factory, fmt):
        assert validate(image_factory(fmt=fmt)) is False

    def test_garbage_rejected(self, image_factory):
        assert validate(b"") is False
        assert validate(b"definitely not an image") is False
        assert validate(image_factory()[:10]) is False


class TestFitInside:
    def test_landscape(self):
        assert fit_inside(3000, 2000, 1920) == (1920, 1280)

    def test_portrait(self):
        assert fit_inside(2000, 3000, 600) == (400, 600)

    def test_never_upscales(self):
        assert fit_inside(800, 600, 1920) == (800, 600)

    def test_exact_bound_unchanged(self):
        assert fit_inside(1920, 1000, 1920) == (1920, 1000)


class TestDeriveRenditions:
    def test_large_landscape(self, image_factory):
        data = image_factory(3000, 2000)
        result = derive_renditions(data)

        assert (result.original.width, result.original.height) == (3000, 2000)
        assert (result.web.width, result.web.height) == (1920, 1280)
        assert (result.thumbnail.width, result.thumbnail.height) == (600, 400)
        assert result.original_ext == "jpg"

    def test_original_bytes_untouched(self, image_factory):
        data = image_factory(1200, 900)
        result = derive_renditions(data)

        assert result.original.data == data
        assert result.original.size == len(data)
        assert result.original.content_type == "image/jpeg"

    def test_derived_copies_are_webp(self, image_factory):
        result = derive_renditions(image_factory(1200, 900))

        for rendition in (result.web, result.thumbnail):
            assert rendition.content_type == "image/webp"
            img = decoded(rendition.data)
            assert img.format == "WEBP"
            assert img.size == (rendition.width, rendition.height)

    def test_small_image_not_enlarged(self, image_factory):
        result = derive_renditions(image_factory(800, 600))

        assert (result.web.width, result.web.height) == (800, 600)
        assert (result.thumbnail.width, result.thumbnail.height) == (600, 450)

    def test_portrait_keeps_aspect(self, image_factory):
        result = derive_renditions(image_factory(1000, 3000))

        assert (result.web.width, result.web.height) == (640, 1920)
        assert (result.thumbnail.width, result.thumbnail.height) == (200, 600)

    def test_png_with_alpha(self, image_factory):
        data = image_factory(400, 300, fmt="PNG", mode="RGBA", color=(255, 0, 0, 128))
        result = derive_renditions(data)

        assert result.original_ext == "png"
        assert result.original.content_type == "image/png"
        assert decoded(result.web.data).mode == "RGBA"

    def test_exif_orientation_applied(self, image_factory):
        exif = Image.Exif()
        exif[ExifTags.Base.Orientation] = 6  # rotate 90 CW on display
        data = image_factory(400, 200, exif=exif)

        result = derive_renditions(data)

        assert (result.original.width, result.original.height) == (200, 400)
        assert (result.web.width, result.web.height) == (200, 400)

    def test_grayscale_converted(self, image_factory):
        result = derive_renditions(image_factory(300, 200, mode="L", color=128))
        assert decoded(result.web.data).mode == "RGB"

    def test_invalid_data_raises(self):
        with pytest.raises(InvalidImage):
            derive_renditions(b"not an image")

    def test_unsupported_format_raises(self, image_factory):
        with pytest.raises(InvalidImage):
            derive_renditions(image_factory(fmt="GIF"))


class TestCaptureMetadata:
    def test_camera_make_and_model(self, image_factory):
        exif = Image.Exif()
        exif[ExifTags.Base.Make] = "Fujifilm"
        exif[ExifTags.Base.Model] = "X-T4"
        meta = extract_capture_metadata(image_factory(exif=exif))

        assert meta is not None
        assert meta.camera_make == "Fujifilm"
        assert meta.camera_model == "X-T4"
        assert meta.iso is None
        assert meta.to_dict() == {"camera_make": "Fujifilm", "camera_model": "X-T4"}

    def test_exposure_settings(self, image_factory):
        exif = Image.Exif()
        exif[ExifTags.Base.Make] = "Canon"
        exif[ExifTags.IFD.Exif] = {
            ExifTags.Base.ISOSpeedRatings: 400,
            ExifTags.Base.FNumber: 2.8,
            ExifTags.Base.FocalLength: 35.0,
            ExifTags.Base.DateTimeOriginal: "2024:05:01 10:30:00",
        }
        meta = extract_capture_metadata(image_factory(exif=exif))

        assert meta.iso == 400
        assert meta.aperture == pytest.approx(2.8)
        assert meta.focal_length == pytest.approx(35.0)
        assert meta.date_taken == "2024-05-01T10:30:00"

    def test_no_exif(self, image_factory):
        assert extract_capture_metadata(image_factory()) is None

    def test_garbage(self):
        assert extract_capture_metadata(b"not an image") is None
