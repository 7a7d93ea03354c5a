# core/richtext.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List

from atproto import models

# '#' followed by a maximal run of word characters (Unicode-aware \w).
_HASHTAG_PATTERN = re.compile(r"#(\w+)")


@dataclass(frozen=True)
class Annotation:
    """
    A byte-range annotation over post text.

    byte_start / byte_end index the UTF-8 encoding of the text, never
    character positions. value is the tag without the leading '#'.
    """

    byte_start: int
    byte_end: int
    value: str
    kind: str = "tag"

    def to_facet(self) -> models.AppBskyRichtextFacet.Main:
        return models.AppBskyRichtextFacet.Main(
            index=models.AppBskyRichtextFacet.ByteSlice(byte_start=self.byte_start, byte_end=self.byte_end),
            features=[models.AppBskyRichtextFacet.Tag(tag=self.value)],
        )


def _utf8_len(s: str) -> int:
    return len(s.encode("utf-8"))


def iter_annotations(text: str) -> Iterator[Annotation]:
    """
    Lazily yield hashtag annotations in left-to-right order.

    Byte offsets are accumulated incrementally: the UTF-8 length of the text
    consumed since the previous match is added to a running byte cursor, so a
    multi-byte character anywhere before a tag shifts it correctly.
      "café #sun" -> Annotation(byte_start=6, byte_end=10, value="sun")
    """
    if not text:
        return

    char_pos = 0
    byte_pos = 0
    for match in _HASHTAG_PATTERN.finditer(text):
        byte_pos += _utf8_len(text[char_pos : match.start()])
        byte_end = byte_pos + _utf8_len(match.group(0))

        yield Annotation(byte_start=byte_pos, byte_end=byte_end, value=match.group(1))

        char_pos = match.end()
        byte_pos = byte_end


def annotate(text: str) -> List[Annotation]:
    """Materialized annotations for `text`; empty list when there are no tags."""
    return list(iter_annotations(text))


def to_facets(annotations: Iterable[Annotation]) -> List[models.AppBskyRichtextFacet.Main]:
    """Re-shape annotations into richtext facet models."""
    return [a.to_facet() for a in annotations]


def format_hashtags(hashtags: Iterable[str]) -> str:
    return " ".join(f"#{tag}" for tag in hashtags)


def compose_text(text: str, hashtags: Iterable[str] | None = None) -> str:
    """
    Build the text that is actually posted.

    When hashtags are present they are appended as "#a #b" after a blank line;
    otherwise the text is returned unchanged.
    """
    tags = list(hashtags or [])
    if not tags:
        return text
    return f"{text}\n\n{format_hashtags(tags)}"
