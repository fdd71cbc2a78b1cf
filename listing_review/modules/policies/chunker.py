"""Split a Markdown policy document into overlapping retrieval windows.

Windows are sized in characters at a fixed 4 characters per token:
512-token windows (2048 chars) with a 64-token (256-char) overlap.
"""

from __future__ import annotations

import re

from listing_review.modules.pipeline.schemas import PolicyChunk

CHARS_PER_TOKEN = 4
TARGET_TOKENS = 512
OVERLAP_TOKENS = 64
TARGET_CHARS = TARGET_TOKENS * CHARS_PER_TOKEN
OVERLAP_CHARS = OVERLAP_TOKENS * CHARS_PER_TOKEN

_HEADING_RE = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)


def extract_sections(text: str) -> list[str]:
    return [m.group(1).strip() for m in _HEADING_RE.finditer(text)]


def chunk_policy(
    source_file: str,
    text: str,
    *,
    target_chars: int = TARGET_CHARS,
    overlap_chars: int = OVERLAP_CHARS,
) -> list[PolicyChunk]:
    chunks: list[PolicyChunk] = []
    start = 0
    chunk_index = 0

    while start < len(text):
        end = min(start + target_chars, len(text))
        window = text[start:end]

        # Prefer a paragraph break in the second half of the window
        if end < len(text):
            last_break = window.rfind("\n\n")
            if last_break > target_chars * 0.5:
                window = window[:last_break]

        chunks.append(
            PolicyChunk(
                source_file=source_file,
                chunk_index=chunk_index,
                content=window.strip(),
                sections=extract_sections(window),
            )
        )

        if end >= len(text):
            break
        start += max(1, len(window) - overlap_chars)
        chunk_index += 1

    return chunks
