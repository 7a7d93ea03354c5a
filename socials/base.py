# socials/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from PIL import Image

from core.media import MediaAsset
from core.richtext import compose_text, format_hashtags


@dataclass
class Post:
    """
    A single outbound post as the UI composes it.

    - `text` is the body; `hashtags` are stored without '#' and appended on submit.
    - `images` are decoded rasters (MediaAsset or PIL images), at most a handful.
    - `alt_text` overrides the pipeline's placeholder alt text for every image.
    """

    text: str = ""
    hashtags: List[str] = field(default_factory=list)
    images: List[MediaAsset | Image.Image] = field(default_factory=list)
    alt_text: Optional[str] = None

    @property
    def formatted_hashtags(self) -> str:
        return format_hashtags(self.hashtags)

    @property
    def full_text(self) -> str:
        return compose_text(self.text, self.hashtags)

    def add_hashtag(self, tag: str) -> bool:
        clean = (tag or "").strip().lstrip("#")
        if not clean or clean in self.hashtags:
            return False
        self.hashtags.append(clean)
        return True

    def remove_hashtag(self, tag: str) -> None:
        self.hashtags = [t for t in self.hashtags if t != tag]

    def add_media(self, *images: MediaAsset | Image.Image) -> None:
        self.images.extend(images)

    def remove_media(self, index: int) -> None:
        if 0 <= index < len(self.images):
            del self.images[index]
