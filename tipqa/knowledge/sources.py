"""
Knowledge source loading and corpus fingerprinting.

A corpus is a handful of markdown files read once at startup. The fingerprint
identifies one embedding generation: any byte change in any source yields a new
fingerprint and therefore a full re-embed.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence, Union

from tipqa.errors import KnowledgeSourceError
from tipqa.knowledge.chunker import slugify
from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="knowledge")


@dataclass(frozen=True)
class KnowledgeSource:
    id: str
    label: str
    file_name: str
    content: str

    @property
    def byte_length(self) -> int:
        return len(self.content.encode("utf-8"))

    @property
    def checksum(self) -> str:
        digest = hashlib.sha256(self.content.encode("utf-8")).hexdigest()
        return f"{self.byte_length}-{digest[:16]}"


def source_id_for(file_name: str) -> str:
    """AGENTS.md -> agents_md"""
    return slugify(Path(file_name).name)


def compute_fingerprint(sources: Sequence[KnowledgeSource]) -> str:
    """Checksum over every source's id, byte length and content.

    Order-sensitive: the chunk order of the index follows source order, so a
    reordered corpus is a different embedding generation.
    """
    hasher = hashlib.sha256()
    for source in sources:
        data = source.content.encode("utf-8")
        hasher.update(source.id.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(str(len(data)).encode("ascii"))
        hasher.update(b"\0")
        hasher.update(data)
        hasher.update(b"\0")
    return hasher.hexdigest()


def load_knowledge_sources(
    directory: Union[str, Path], file_names: Iterable[str]
) -> List[KnowledgeSource]:
    """Read each configured file; missing or unreadable files are logged and skipped.

    Raises:
        KnowledgeSourceError: if no source could be loaded at all.
    """
    root = Path(directory)
    sources: List[KnowledgeSource] = []
    attempted: List[str] = []

    for file_name in file_names:
        path = root / file_name
        attempted.append(str(path))
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.error("Knowledge source not found: %s", path)
            continue
        except OSError as exc:
            logger.error("Failed to read knowledge source %s: %s", path, exc)
            continue

        if not content.strip():
            logger.warning("Knowledge source %s is empty, skipping", path)
            continue

        source = KnowledgeSource(
            id=source_id_for(file_name),
            label=Path(file_name).stem,
            file_name=file_name,
            content=content,
        )
        sources.append(source)
        logger.info(
            "Loaded knowledge source %s (%.2f KB, %s lines)",
            file_name,
            source.byte_length / 1024,
            content.count("\n") + 1,
        )

    if not sources:
        raise KnowledgeSourceError(
            "No knowledge sources could be loaded (checked: " + ", ".join(attempted) + ")"
        )
    return sources
