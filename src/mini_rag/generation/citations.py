"""Citation extraction from generated answers."""

from __future__ import annotations

import re
from typing import Sequence

from mini_rag.types import Citation, RankedChunk

_MARKER = re.compile(r"\[(\d+)\]", flags=re.ASCII)


def extract_citations(answer: str, chunks: Sequence[RankedChunk]) -> list[Citation]:
    """Resolve `[n]` markers in `answer` to the ranked chunks they cite.

    Markers are 1-based positions into `chunks`. Markers outside
    `[1, len(chunks)]` are ignored because generated text may invent indices.
    Every valid occurrence yields a citation keyed by `(chunk_id, position)`;
    the same chunk cited at two positions produces two citations. Output
    follows marker order in the answer.
    """

    citations: list[Citation] = []
    seen: set[tuple[str, int]] = set()
    for match in _MARKER.finditer(answer or ""):
        chunk_index = int(match.group(1)) - 1
        if not 0 <= chunk_index < len(chunks):
            continue
        key = (chunks[chunk_index].id, match.start())
        if key in seen:
            continue
        seen.add(key)
        citations.append(
            Citation(chunk_id=key[0], position=key[1], chunk_index=chunk_index)
        )
    return citations


def cited_chunk_ids(citations: Sequence[Citation]) -> list[str]:
    deduped: list[str] = []
    for citation in citations:
        if citation.chunk_id not in deduped:
            deduped.append(citation.chunk_id)
    return deduped
