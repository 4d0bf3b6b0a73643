"""
Heading-aligned document chunking and chunk-by-chunk processing.
"""

from token_budget.chunking.frontmatter import (
    DocumentComponents,
    extract_document_components,
    reconstruct_document,
)
from token_budget.chunking.headings import (
    create_optimized_chunks,
    ensure_trailing_newline,
    find_content_headings,
    has_proper_heading,
)
from token_budget.chunking.processor import (
    BaseChunkSender,
    ChunkedDocumentProcessor,
    LangChainChunkSender,
    ProcessingResult,
    plan_chunk_documents,
)

__all__ = [
    "DocumentComponents",
    "extract_document_components",
    "reconstruct_document",
    "create_optimized_chunks",
    "ensure_trailing_newline",
    "find_content_headings",
    "has_proper_heading",
    "BaseChunkSender",
    "ChunkedDocumentProcessor",
    "LangChainChunkSender",
    "ProcessingResult",
    "plan_chunk_documents",
]
