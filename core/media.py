# core/media.py
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"

# Bluesky rejects blobs near ~1,000,000 bytes; stay comfortably under it.
DEFAULT_BUDGET_BYTES: int = 900 * 1024


class ImageEncodingError(Exception):
    """Raised when no candidate in the search plan could be encoded at all."""

    pass


@dataclass
class MediaAsset:
    """A decoded raster image plus its pixel dimensions (lives for one submission)."""

    image: Image.Image
    width: int = 0
    height: int = 0

    def __post_init__(self):
        if not self.width or not self.height:
            self.width, self.height = self.image.size

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 1.0

    @classmethod
    def from_image(cls, image: Image.Image) -> "MediaAsset":
        return cls(image=image)

    @classmethod
    def from_bytes(cls, data: bytes) -> "MediaAsset":
        with Image.open(io.BytesIO(data)) as im:
            # exif_transpose returns a loaded copy, so the file handle can close
            return cls(image=ImageOps.exif_transpose(im))

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "MediaAsset":
        return cls.from_bytes(Path(path).read_bytes())


@dataclass
class EncodedBlob:
    """
    An encoded JPEG buffer and how it was produced.

    within_budget is False only for the last-resort fallback, where the
    smallest encoding we could produce still exceeds budget_bytes.
    """

    data: bytes = field(repr=False)
    quality: int
    scale: float
    width: int
    height: int
    budget_bytes: int
    mime_type: str = JPEG_MIME

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def within_budget(self) -> bool:
        return self.size_bytes <= self.budget_bytes


@dataclass(frozen=True)
class EncodeCandidate:
    quality: int
    scale: float
    phase: int


def _to_rgb(image: Image.Image) -> Image.Image:
    """JPEG has no alpha channel: flatten transparency onto white, convert everything else."""
    if image.mode == "RGB":
        return image
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


def _scaled_size(size: Tuple[int, int], scale: float) -> Tuple[int, int]:
    w, h = size
    return max(1, int(round(w * scale))), max(1, int(round(h * scale)))


def crop_to_square(image: Image.Image) -> Image.Image:
    """Centre-crop to the shorter edge."""
    w, h = image.size
    side = min(w, h)
    left = (w - side) // 2
    top = (h - side) // 2
    return image.crop((left, top, left + side, top + side))


def fit_within(image: Image.Image, max_width: int, max_height: int) -> Image.Image:
    """Downscale preserving aspect ratio so the image fits the box. Never upscales."""
    w, h = image.size
    ratio = min(max_width / w, max_height / h, 1.0)
    if ratio >= 1.0:
        return image
    return image.resize(_scaled_size((w, h), ratio), Image.Resampling.LANCZOS)


class MediaEncoder:
    """
    Fit a raster image under a byte budget as a JPEG.

    The search plan is an explicit, ordered list of (quality, scale) candidates:

      phase 1: native resolution, quality start_quality -> quality_floor
      phase 2: for each scale shrink_factor**k (down to scale_floor),
               quality phase2_quality -> quality_floor

    Quality drops are tried (and exhausted) before any resampling. The first
    candidate at or under budget wins; if none fits, the smallest encoding
    produced is returned with within_budget == False.
    """

    def __init__(
        self,
        start_quality: int = 90,
        phase2_quality: int = 80,
        quality_floor: int = 10,
        quality_step: int = 10,
        shrink_factor: float = 0.9,
        scale_floor: float = 0.1,
    ):
        if quality_step <= 0:
            raise ValueError("quality_step must be positive")
        if not 0.0 < shrink_factor < 1.0:
            raise ValueError("shrink_factor must be between 0 and 1")
        if not 0.0 < scale_floor <= 1.0:
            raise ValueError("scale_floor must be in (0, 1]")

        self.start_quality = start_quality
        self.phase2_quality = phase2_quality
        self.quality_floor = quality_floor
        self.quality_step = quality_step
        self.shrink_factor = shrink_factor
        self.scale_floor = scale_floor

    def _qualities(self, start: int) -> List[int]:
        return list(range(start, self.quality_floor - 1, -self.quality_step))

    def _scales(self) -> List[float]:
        scales = []
        scale = self.shrink_factor
        # small epsilon so 0.9**k landing a hair under the floor still counts
        while scale >= self.scale_floor - 1e-9:
            scales.append(round(scale, 6))
            scale *= self.shrink_factor
        return scales

    def candidates(self) -> List[EncodeCandidate]:
        plan = [EncodeCandidate(quality=q, scale=1.0, phase=1) for q in self._qualities(self.start_quality)]
        for scale in self._scales():
            plan.extend(EncodeCandidate(quality=q, scale=scale, phase=2) for q in self._qualities(self.phase2_quality))
        return plan

    def encode_at(self, image: Union[MediaAsset, Image.Image], quality: int, scale: float = 1.0) -> bytes:
        """Encode a single candidate. Pillow errors propagate."""
        source = _to_rgb(image.image if isinstance(image, MediaAsset) else image)
        if scale != 1.0:
            source = source.resize(_scaled_size(source.size, scale), Image.Resampling.LANCZOS)
        return self._save_jpeg(source, quality)

    @staticmethod
    def _save_jpeg(image: Image.Image, quality: int) -> bytes:
        buf = io.BytesIO()
        image.save(buf, format="JPEG", quality=quality, optimize=True)
        return buf.getvalue()

    def iter_encodings(
        self, image: Union[MediaAsset, Image.Image], budget_bytes: int = DEFAULT_BUDGET_BYTES
    ) -> Iterator[EncodedBlob]:
        """
        Lazily encode every candidate in plan order.
        Candidates that Pillow fails to encode are logged and skipped.
        """
        source = _to_rgb(image.image if isinstance(image, MediaAsset) else image)

        resized: Optional[Image.Image] = None
        resized_scale: Optional[float] = None

        for cand in self.candidates():
            try:
                if cand.scale == 1.0:
                    frame = source
                else:
                    if resized_scale != cand.scale:
                        # Always resample from the original, not the previous round
                        resized = source.resize(_scaled_size(source.size, cand.scale), Image.Resampling.LANCZOS)
                        resized_scale = cand.scale
                    frame = resized
                data = self._save_jpeg(frame, cand.quality)
            except (OSError, ValueError) as e:
                logger.debug("Encoding failed at quality=%s scale=%.3f: %s", cand.quality, cand.scale, e)
                continue

            yield EncodedBlob(
                data=data,
                quality=cand.quality,
                scale=cand.scale,
                width=frame.width,
                height=frame.height,
                budget_bytes=budget_bytes,
            )

    def encode(self, image: Union[MediaAsset, Image.Image], budget_bytes: int = DEFAULT_BUDGET_BYTES) -> EncodedBlob:
        if budget_bytes <= 0:
            raise ValueError(f"budget_bytes must be positive, got {budget_bytes}")

        smallest: Optional[EncodedBlob] = None
        for blob in self.iter_encodings(image, budget_bytes):
            if blob.within_budget:
                logger.debug(
                    "Encoded image at quality=%s scale=%.3f -> %.1f KB (budget %.1f KB)",
                    blob.quality,
                    blob.scale,
                    blob.size_bytes / 1024,
                    budget_bytes / 1024,
                )
                return blob
            if smallest is None or blob.size_bytes < smallest.size_bytes:
                smallest = blob

        if smallest is None:
            raise ImageEncodingError("Image could not be encoded as JPEG at any quality/scale")

        logger.warning(
            "Image could not be fit under %.1f KB; using smallest encoding %.1f KB (quality=%s scale=%.3f)",
            budget_bytes / 1024,
            smallest.size_bytes / 1024,
            smallest.quality,
            smallest.scale,
        )
        return smallest
