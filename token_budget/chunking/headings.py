"""
Heading-aligned document chunking.

Splits a markdown document only at numbered section headings so that each
chunk fits a request budget without cutting a section apart. Chunks are
exact slices of the input: joining them gives back the document.
"""

import logging
import re
from typing import List

from token_budget.core.config import get_settings
from token_budget.models.schemas import Heading

logger = logging.getLogger(__name__)

# Matches "# 1. Title", "## 2.3 Title", "### 1.1.2. Title".
# Unnumbered headings ("# Title") and bare "#" lines are not section markers.
NUMBERED_HEADING_RE = re.compile(r"^(#+[ \t]+\d+(?:\.\d+)*\.?[ \t]+.*?)$", re.MULTILINE)


def find_content_headings(content: str) -> List[Heading]:
    """
    Find numbered headings in content.

    Args:
        content: Markdown document

    Returns:
        Headings in ascending position order
    """
    headings = [
        Heading(text=match.group(0), position=match.start())
        for match in NUMBERED_HEADING_RE.finditer(content)
    ]
    logger.debug(f"Found {len(headings)} headings in content: {', '.join(h.text for h in headings)}")
    return headings


def has_proper_heading(chunk: str) -> bool:
    """Whether the chunk contains at least one numbered heading."""
    return NUMBERED_HEADING_RE.search(chunk) is not None


def create_optimized_chunks(content: str, max_token_limit: int) -> List[str]:
    """
    Group consecutive sections into chunks that fit a token budget.

    Strategy:
    1. No headings: the whole document is one chunk
    2. Text before the first heading becomes its own chunk, untouched
    3. Sections are added to the running chunk until the next one would
       push it past the working budget (a share of max_token_limit,
       measured with a chars-to-tokens proxy); then the chunk is flushed
    4. The last running chunk is flushed

    A section larger than the budget still becomes exactly one chunk.

    Args:
        content: Markdown document
        max_token_limit: Token limit of the request the chunk goes into

    Returns:
        Ordered chunks whose concatenation equals content
    """
    settings = get_settings()
    headings = find_content_headings(content)
    chunks: List[str] = []

    if not headings:
        chunks.append(content)
        return chunks

    first_position = headings[0].position
    if first_position > 0:
        chunks.append(content[:first_position])
        logger.debug("Added template header as separate chunk")

    max_chunk_tokens = max_token_limit * settings.chunk_budget_ratio
    tokens_per_char = settings.chunk_tokens_per_char

    current_chunk = ""
    current_heading_count = 0
    processed_headings = 0

    for i, heading in enumerate(headings):
        end = headings[i + 1].position if i + 1 < len(headings) else len(content)
        section = content[heading.position:end]
        section_tokens = len(section) * tokens_per_char

        if current_chunk and len(current_chunk) * tokens_per_char + section_tokens > max_chunk_tokens:
            chunks.append(current_chunk)
            logger.debug(
                f"Added optimized chunk with {current_heading_count} headings "
                f"({processed_headings + 1}-{processed_headings + current_heading_count})"
            )
            processed_headings += current_heading_count
            current_chunk = section
            current_heading_count = 1
        else:
            current_chunk += section
            current_heading_count += 1

    if current_chunk:
        chunks.append(current_chunk)
        logger.debug(
            f"Added final optimized chunk with {current_heading_count} headings "
            f"({processed_headings + 1}-{processed_headings + current_heading_count})"
        )
        processed_headings += current_heading_count

    if processed_headings != len(headings):
        logger.warning(
            f"Processed {processed_headings} headings but found {len(headings)} total headings"
        )

    return chunks


def ensure_trailing_newline(chunk: str) -> str:
    """Append a newline unless the chunk already ends with one."""
    return chunk if chunk.endswith("\n") else chunk + "\n"
