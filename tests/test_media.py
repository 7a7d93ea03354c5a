"""
Tests for the adaptive JPEG encoder

The encoder walks an explicit (quality, scale) plan: quality first at native
resolution, then shrink-and-sweep. The first candidate under budget wins,
otherwise the smallest buffer produced is returned and flagged.
"""

import io
from unittest.mock import patch

import pytest
from PIL import Image

from core.media import (
    DEFAULT_BUDGET_BYTES,
    EncodedBlob,
    ImageEncodingError,
    MediaAsset,
    MediaEncoder,
    crop_to_square,
    fit_within,
)
from tests.conftest import noise_image


class TestSearchPlan:
    def test_phase_one_is_native_resolution_quality_sweep(self):
        plan = MediaEncoder().candidates()
        phase1 = [c for c in plan if c.phase == 1]

        assert [c.quality for c in phase1] == [90, 80, 70, 60, 50, 40, 30, 20, 10]
        assert all(c.scale == 1.0 for c in phase1)
        assert plan[: len(phase1)] == phase1, "quality-only candidates must come first"

    def test_phase_two_shrinks_and_restarts_at_mid_quality(self):
        plan = MediaEncoder().candidates()
        phase2 = [c for c in plan if c.phase == 2]

        assert phase2[0].scale == pytest.approx(0.9)
        assert phase2[0].quality == 80
        assert min(c.scale for c in phase2) >= 0.1 - 1e-9
        assert all(c.quality >= 10 for c in phase2)

    def test_plan_never_gets_more_expensive(self):
        plan = MediaEncoder().candidates()

        for prev, cur in zip(plan, plan[1:]):
            assert cur.scale <= prev.scale
            if cur.scale == prev.scale:
                assert cur.quality < prev.quality

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            MediaEncoder(shrink_factor=1.0)
        with pytest.raises(ValueError):
            MediaEncoder(quality_step=0)


class TestEncode:
    def test_small_image_fits_at_top_quality(self, solid_image):
        blob = MediaEncoder().encode(solid_image)

        assert blob.within_budget
        assert blob.size_bytes <= DEFAULT_BUDGET_BYTES
        assert (blob.quality, blob.scale) == (90, 1.0)
        assert blob.mime_type == "image/jpeg"
        assert (blob.width, blob.height) == (200, 150)

    def test_output_is_a_decodable_jpeg(self, solid_image):
        blob = MediaEncoder().encode(solid_image)

        with Image.open(io.BytesIO(blob.data)) as im:
            assert im.format == "JPEG"
            assert im.size == (200, 150)

    def test_quality_reduction_is_tried_before_resizing(self, noisy_image):
        encoder = MediaEncoder()
        q90 = len(encoder.encode_at(noisy_image, 90))
        q10 = len(encoder.encode_at(noisy_image, 10))
        budget = (q90 + q10) // 2

        blob = encoder.encode(noisy_image, budget)

        assert blob.within_budget
        assert blob.scale == 1.0
        assert blob.quality < 90

    def test_downscales_when_quality_alone_cannot_fit(self, noisy_image):
        encoder = MediaEncoder()
        budget = len(encoder.encode_at(noisy_image, 10, 1.0)) - 1

        blob = encoder.encode(noisy_image, budget)

        assert blob.within_budget
        assert blob.size_bytes <= budget
        assert blob.scale < 1.0
        assert blob.width < noisy_image.width

    def test_returns_first_fitting_candidate(self, noisy_image):
        encoder = MediaEncoder()
        budget = len(encoder.encode_at(noisy_image, 10, 1.0)) - 1

        first_fit = next(b for b in encoder.iter_encodings(noisy_image, budget) if b.within_budget)
        blob = encoder.encode(noisy_image, budget)

        assert (blob.quality, blob.scale) == (first_fit.quality, first_fit.scale)
        assert blob.data == first_fit.data

    def test_sizes_do_not_grow_within_a_quality_sweep(self):
        encoder = MediaEncoder()
        blobs = list(encoder.iter_encodings(noise_image(400, 400), 1))

        sweeps = {}
        for b in blobs:
            sweeps.setdefault(b.scale, []).append(b.size_bytes)

        # Each scale restarts its quality sweep, so sizes may jump up between
        # scales (e.g. q10 at 1.0 -> q80 at 0.9). Within one scale they only shrink.
        assert len(sweeps) == len({c.scale for c in encoder.candidates()})
        for scale, sizes in sweeps.items():
            assert sizes == sorted(sizes, reverse=True), f"sizes grew within the sweep at scale {scale:.3f}"

    def test_unreachable_budget_falls_back_to_smallest(self, noisy_image):
        encoder = MediaEncoder()
        all_sizes = [b.size_bytes for b in encoder.iter_encodings(noisy_image, 50)]

        blob = encoder.encode(noisy_image, 50)

        assert not blob.within_budget
        assert blob.size_bytes == min(all_sizes)
        assert blob.budget_bytes == 50

    def test_accepts_media_asset(self, solid_image):
        blob = MediaEncoder().encode(MediaAsset.from_image(solid_image))

        assert blob.within_budget

    def test_transparent_image_is_flattened(self):
        rgba = Image.new("RGBA", (40, 40), (255, 0, 0, 0))

        blob = MediaEncoder().encode(rgba)

        with Image.open(io.BytesIO(blob.data)) as im:
            assert im.mode == "RGB"
            r, g, b = im.getpixel((20, 20))
            assert min(r, g, b) > 240, "fully transparent pixels should become white"

    def test_non_positive_budget_rejected(self, solid_image):
        with pytest.raises(ValueError):
            MediaEncoder().encode(solid_image, 0)


class TestEncodeFailures:
    def test_single_failing_candidate_is_skipped(self, solid_image):
        real_save = MediaEncoder._save_jpeg
        calls = {"n": 0}

        def flaky_save(image, quality):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OSError("encoder hiccup")
            return real_save(image, quality)

        with patch.object(MediaEncoder, "_save_jpeg", side_effect=flaky_save):
            blob = MediaEncoder().encode(solid_image)

        assert blob.within_budget
        assert blob.quality == 80

    def test_total_failure_raises(self, solid_image):
        with patch.object(MediaEncoder, "_save_jpeg", side_effect=OSError("broken")):
            with pytest.raises(ImageEncodingError):
                MediaEncoder().encode(solid_image)


class TestHelpers:
    def test_media_asset_from_bytes(self):
        buf = io.BytesIO()
        Image.new("RGB", (30, 20), "white").save(buf, format="PNG")

        asset = MediaAsset.from_bytes(buf.getvalue())

        assert (asset.width, asset.height) == (30, 20)
        assert asset.aspect_ratio == pytest.approx(1.5)

    def test_media_asset_from_path(self, temp_dir):
        path = temp_dir / "photo.png"
        Image.new("RGB", (10, 40), "black").save(path)

        asset = MediaAsset.from_path(path)

        assert (asset.width, asset.height) == (10, 40)

    def test_crop_to_square(self):
        square = crop_to_square(Image.new("RGB", (300, 200)))

        assert square.size == (200, 200)

    def test_fit_within_preserves_aspect_and_never_upscales(self):
        big = fit_within(Image.new("RGB", (4000, 2000)), 1000, 1000)
        small = Image.new("RGB", (100, 50))

        assert big.size == (1000, 500)
        assert fit_within(small, 1000, 1000) is small

    def test_encoded_blob_budget_flag(self):
        blob = EncodedBlob(data=b"x" * 10, quality=10, scale=0.5, width=1, height=1, budget_bytes=5)

        assert blob.size_bytes == 10
        assert not blob.within_budget
