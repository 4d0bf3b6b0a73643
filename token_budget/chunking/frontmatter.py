"""
Frontmatter handling for chunked documents.

The YAML frontmatter block is never sent to the model: it is split off
before chunking and put back in front of the processed body.
"""

import logging
import re

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_TRANSCRIPT_RE = re.compile(r"transcript:\s*\|\s*\n([\s\S]+?)(?:\n\w|$)")
_FENCE_AFTER_FRONTMATTER_RE = re.compile(r"---[\r\n]+```")
_STRAY_FENCE_RE = re.compile(r"```[\r\n]+(?!`)")


class DocumentComponents(BaseModel):
    """A document split into frontmatter, body and embedded transcript."""

    frontmatter: str
    content_without_frontmatter: str
    transcript: str


def extract_document_components(original_content: str) -> DocumentComponents:
    """
    Split a document into its frontmatter and body.

    The frontmatter keeps its closing ``---``. A ``transcript: |`` block
    inside it is extracted as reference material for prompts.

    Args:
        original_content: The full document

    Returns:
        DocumentComponents; frontmatter and transcript are empty when absent
    """
    frontmatter = ""
    content = original_content
    transcript = ""

    if original_content.startswith("---"):
        end = original_content.find("---", 3)
        if end > 0:
            frontmatter = original_content[: end + 3]
            content = original_content[end + 3:].strip()

            match = _TRANSCRIPT_RE.search(original_content[3:end].strip())
            if match:
                transcript = match.group(1).strip()
                logger.debug("Extracted transcript from frontmatter")
            else:
                logger.debug("No transcript in frontmatter")

    return DocumentComponents(
        frontmatter=frontmatter,
        content_without_frontmatter=content,
        transcript=transcript,
    )


def reconstruct_document(frontmatter: str, enhanced_content: str) -> str:
    """
    Put the frontmatter back in front of processed content.

    Models sometimes wrap their output in a code fence; a fence opened right
    after the frontmatter is removed along with its closing backticks.
    """
    if not frontmatter:
        return enhanced_content

    document = frontmatter + "\n" + enhanced_content
    if _FENCE_AFTER_FRONTMATTER_RE.search(document):
        logger.debug("Removing code fence after frontmatter")
        document = _FENCE_AFTER_FRONTMATTER_RE.sub("---", document)
        document = _STRAY_FENCE_RE.sub("", document)
    return document
