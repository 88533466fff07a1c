from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Sequence


DEFAULT_MAX_CHUNK_CHARS = 1500
SLUG_MAX_LENGTH = 50

# Domain terms tagged on a chunk whenever they appear (case-insensitive)
DEFAULT_VOCABULARY: Sequence[str] = (
    "bot",
    "handler",
    "message",
    "channel",
    "thread",
    "space",
    "event",
    "webhook",
    "onMessage",
    "onSlashCommand",
    "onTip",
    "sendMessage",
    "threadId",
    "channelId",
    "userId",
    "eventId",
    "mentions",
    "reaction",
    "permission",
    "tip",
    "RAG",
    "OpenAI",
    "embedding",
    "SDK",
    "protocol",
)

_SECTION_SPLIT = re.compile(r"^## ", re.MULTILINE)
_CALL_SITE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*\(")
_NON_SLUG = re.compile(r"[^a-z0-9]+")
_PARAGRAPH_SPLIT = "\n\n"


@dataclass(frozen=True)
class Chunk:
    id: str
    content: str
    source: str
    section: str
    keywords: FrozenSet[str] = field(default_factory=frozenset)


def slugify(title: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Lowercase slug with runs of non-alphanumerics collapsed to '_'."""
    slug = _NON_SLUG.sub("_", title.lower()).strip("_")
    return slug[:max_length]


def split_paragraphs(content: str, max_chars: int) -> List[str]:
    """Pack paragraphs into buffers of at most ``max_chars``.

    A paragraph that alone exceeds the limit is emitted as its own piece.
    """
    pieces: List[str] = []
    buffer = ""
    for paragraph in content.split(_PARAGRAPH_SPLIT):
        # Keep leading indentation (indented code blocks); drop only blank lines
        paragraph = paragraph.strip("\n").rstrip()
        if not paragraph.strip():
            continue
        if not buffer:
            buffer = paragraph
            continue
        if len(buffer) + len(_PARAGRAPH_SPLIT) + len(paragraph) > max_chars:
            pieces.append(buffer)
            buffer = paragraph
        else:
            buffer = f"{buffer}{_PARAGRAPH_SPLIT}{paragraph}"
    if buffer:
        pieces.append(buffer)
    return pieces


class Chunker:
    """Splits a markdown document on ``## `` headings into retrievable chunks."""

    def __init__(
        self,
        *,
        max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS,
        vocabulary: Optional[Iterable[str]] = None,
    ) -> None:
        if max_chunk_chars <= 0:
            raise ValueError("max_chunk_chars must be positive")
        self.max_chunk_chars = max_chunk_chars
        self.vocabulary = tuple(vocabulary if vocabulary is not None else DEFAULT_VOCABULARY)

    def chunk(self, corpus_text: str, source_id: str) -> List[Chunk]:
        chunks: List[Chunk] = []

        for raw_section in _SECTION_SPLIT.split(corpus_text):
            section = raw_section.strip()
            if not section:
                continue

            title, _, body = section.partition("\n")
            title = title.strip() or "Introduction"
            body = body.rstrip().lstrip("\n")
            if not body.strip():
                continue

            slug = slugify(title)
            if len(body) > self.max_chunk_chars:
                for index, piece in enumerate(split_paragraphs(body, self.max_chunk_chars)):
                    chunks.append(
                        Chunk(
                            id=f"{source_id}:{slug}_{index}",
                            content=piece,
                            source=source_id,
                            section=title,
                            keywords=self.extract_keywords(piece),
                        )
                    )
            else:
                chunks.append(
                    Chunk(
                        id=f"{source_id}:{slug}",
                        content=body,
                        source=source_id,
                        section=title,
                        keywords=self.extract_keywords(body),
                    )
                )

        return chunks

    def extract_keywords(self, content: str) -> FrozenSet[str]:
        """Call-site identifiers (``name(``) plus vocabulary terms found in the text."""
        keywords = set(_CALL_SITE.findall(content))
        lowered = content.lower()
        for term in self.vocabulary:
            if term.lower() in lowered:
                keywords.add(term)
        return frozenset(keywords)
