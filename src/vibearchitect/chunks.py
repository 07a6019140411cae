"""Splitting the final prompt into numbered instruction chunks.

The Taskmaster and Refiner separate their chunks with delimiter lines of the
form::

    === PROMPT 2: Wire up the settings page ===
"""

from __future__ import annotations

import re
from collections import Counter

from .models import ParsedPromptChunk

FALLBACK_CHUNK_ID = "1"
FALLBACK_CHUNK_TITLE = "Complete Mission"

DELIMITER_RE = re.compile(
    r"^[ \t]*=== PROMPT (\d+): (.*?) ===[ \t]*\r?$",
    re.MULTILINE,
)


def parse_chunks(text: str) -> list[ParsedPromptChunk]:
    """Split text into chunks on ``=== PROMPT <n>: <title> ===`` lines.

    Without any delimiter the whole text becomes a single "Complete Mission"
    chunk. Ids and titles are taken verbatim; duplicates and gaps pass through.

    Args:
        text: Final prompt text.

    Returns:
        Chunks in order of appearance.
    """
    matches = list(DELIMITER_RE.finditer(text))
    if not matches:
        return [ParsedPromptChunk(id=FALLBACK_CHUNK_ID, title=FALLBACK_CHUNK_TITLE, content=text)]

    chunks = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        chunks.append(
            ParsedPromptChunk(
                id=match.group(1),
                title=match.group(2),
                content=text[match.end():end].strip(),
            )
        )
    return chunks


def chunk_id_warnings(chunks: list[ParsedPromptChunk]) -> list[str]:
    """Describe duplicate or out-of-sequence ids. Nothing is corrected."""
    warnings = []

    duplicates = sorted((cid for cid, n in Counter(c.id for c in chunks).items() if n > 1), key=int)
    if duplicates:
        warnings.append(f"Duplicate chunk ids: {', '.join(duplicates)}")

    expected = [str(i) for i in range(1, len(chunks) + 1)]
    actual = [c.id for c in chunks]
    if not duplicates and actual != expected:
        warnings.append(f"Chunk ids are not sequential: {', '.join(actual)}")

    return warnings
