"""
Chunked processing of long documents through an LLM.

The processor owns the loop the document pipeline runs: split off the
frontmatter, plan heading-aligned chunks under the request budget, send
each section chunk with a per-request max_tokens cap, and stitch the
results back together. A chunk whose request fails is kept as-is, so the
output document never loses content.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Literal, Optional

from langchain_core.documents import Document
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.runnables import Runnable
from pydantic import BaseModel

from token_budget.budget.calculator import BudgetCalculator
from token_budget.chunking.frontmatter import extract_document_components, reconstruct_document
from token_budget.chunking.headings import (
    create_optimized_chunks,
    ensure_trailing_newline,
    find_content_headings,
    has_proper_heading,
)
from token_budget.models.enums import Provider

logger = logging.getLogger(__name__)

# (original_chunk, response) -> accept?
ResponseValidator = Callable[[str, str], bool]


class BaseChunkSender(ABC):
    """
    Sends one chunk to a model under a computed budget.

    Implementations wrap whatever client talks to the provider.
    """

    @abstractmethod
    async def send(self, chunk: str, max_tokens: int) -> str:
        """
        Send a chunk and return the model's text response.

        Args:
            chunk: Document slice to process
            max_tokens: Output cap for this request

        Raises:
            Exception: Any client failure; the processor keeps the original chunk
        """
        pass

    def render(self, chunk: str) -> str:
        """
        Prompt text actually sent for a chunk, used to size the request.

        Senders that wrap the chunk in instructions must override this so the
        instructions are counted against the context window.
        """
        return chunk


class LangChainChunkSender(BaseChunkSender):
    """
    Chunk sender backed by a langchain runnable.

    The prompt template receives the chunk as ``{chunk}``. The max_tokens cap
    is bound to the model under ``max_tokens_param`` (``max_tokens`` for most
    chat models, ``num_predict`` for Ollama).
    """

    def __init__(
        self,
        llm: Runnable,
        prompt_template: str,
        max_tokens_param: str = "max_tokens",
    ):
        self.llm = llm
        self.prompt = ChatPromptTemplate.from_template(prompt_template)
        self.max_tokens_param = max_tokens_param

    def render(self, chunk: str) -> str:
        return self.prompt.format(chunk=chunk)

    async def send(self, chunk: str, max_tokens: int) -> str:
        llm = self.llm.bind(**{self.max_tokens_param: max_tokens})
        chain = self.prompt | llm | StrOutputParser()
        return await chain.ainvoke({"chunk": chunk})


class ChunkOutcome(BaseModel):
    """What happened to one planned chunk."""

    index: int
    heading_count: int
    status: Literal["preserved", "processed", "fallback"]
    max_tokens: int = 0
    reason: Optional[str] = None


class ProcessingResult(BaseModel):
    """Reassembled document plus per-chunk outcomes."""

    document: str
    max_tokens: int
    instruction_tokens: int = 0
    chunks: List[ChunkOutcome]

    @property
    def processed_count(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.status == "processed")

    @property
    def fallback_count(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.status == "fallback")


def plan_chunk_documents(content: str, max_token_limit: int) -> List[Document]:
    """
    Plan heading-aligned chunks as Documents with chunk metadata.

    Metadata:
    - chunk_index: position in the plan
    - heading_count: numbered headings inside the chunk
    - has_heading: False for the preamble (sent through untouched)
    - char_length: chunk size in characters
    """
    documents = []
    for i, chunk in enumerate(create_optimized_chunks(content, max_token_limit)):
        heading_count = len(find_content_headings(chunk))
        documents.append(
            Document(
                page_content=chunk,
                metadata={
                    "chunk_index": i,
                    "heading_count": heading_count,
                    "has_heading": has_proper_heading(chunk),
                    "char_length": len(chunk),
                },
            )
        )
    return documents


class ChunkedDocumentProcessor:
    """
    Runs a document through a model chunk by chunk.

    Process:
    1. Split off frontmatter
    2. Decide the output cap with get_dynamic_max_tokens
    3. Plan heading-aligned chunks under that cap, less the sender's
       instruction overhead
    4. Send each section chunk with a cap sized to its rendered prompt;
       a prompt that cannot fit the model is kept as-is without sending
    5. Reassemble frontmatter + chunks

    Chunks are sent one at a time to keep output order and provider rate
    limits simple.
    """

    def __init__(
        self,
        calculator: BudgetCalculator,
        sender: BaseChunkSender,
        validator: ResponseValidator | None = None,
    ):
        self.calculator = calculator
        self.sender = sender
        self.validator = validator

    async def _process_chunk(
        self,
        chunk: Document,
        provider: Provider | str,
        model: str,
        is_mobile: bool,
        configured_max_tokens: int | None,
    ) -> tuple[str, ChunkOutcome]:
        index = chunk.metadata["chunk_index"]
        heading_count = chunk.metadata["heading_count"]
        text = chunk.page_content

        if not chunk.metadata["has_heading"]:
            logger.debug(f"Preserving non-section chunk {index + 1} unchanged")
            return ensure_trailing_newline(text), ChunkOutcome(
                index=index, heading_count=heading_count, status="preserved"
            )

        prompt_tokens = await self.calculator.counter.count_tokens(
            self.sender.render(text), provider, model
        )
        max_tokens = self.calculator.get_dynamic_max_tokens(
            provider,
            model,
            is_mobile=is_mobile,
            configured_max_tokens=configured_max_tokens,
            prompt_tokens=prompt_tokens,
        )

        def fallback(reason: str) -> tuple[str, ChunkOutcome]:
            return ensure_trailing_newline(text), ChunkOutcome(
                index=index,
                heading_count=heading_count,
                status="fallback",
                max_tokens=max_tokens,
                reason=reason,
            )

        # Unregistered models run on legacy caps and cannot be checked
        if self.calculator.registry.is_model_supported(provider, model):
            validation = self.calculator.validate_token_limits(provider, model, prompt_tokens, max_tokens)
            if not validation.is_valid:
                logger.warning(f"Chunk {index + 1} does not fit {provider}:{model}: {validation.error}")
                return fallback(f"does not fit: {validation.error}")

        logger.debug(f"Processing chunk {index + 1} ({len(text)} chars, {prompt_tokens} tokens, max_tokens={max_tokens})")
        try:
            response = await self.sender.send(text, max_tokens)
        except Exception as e:
            logger.error(f"Error processing chunk {index + 1}: {e}")
            return fallback(f"send failed: {e}")

        if not response or not response.strip():
            logger.warning(f"Empty response for chunk {index + 1}")
            return fallback("empty response")

        if self.validator is not None and not self.validator(text, response):
            logger.warning(f"Response for chunk {index + 1} rejected by validator")
            return fallback("rejected by validator")

        return ensure_trailing_newline(response), ChunkOutcome(
            index=index,
            heading_count=heading_count,
            status="processed",
            max_tokens=max_tokens,
        )

    async def process(
        self,
        document: str,
        provider: Provider | str,
        model: str,
        is_mobile: bool = False,
        configured_max_tokens: int | None = None,
    ) -> ProcessingResult:
        """
        Process a document chunk by chunk.

        Args:
            document: Full document, optionally with YAML frontmatter
            provider: Model provider
            model: Model id
            is_mobile: Apply mobile output scaling
            configured_max_tokens: User's max_tokens preference

        Returns:
            ProcessingResult with the reassembled document
        """
        components = extract_document_components(document)
        max_tokens = self.calculator.get_dynamic_max_tokens(
            provider,
            model,
            is_mobile=is_mobile,
            configured_max_tokens=configured_max_tokens,
        )

        # Instructions sent with every chunk shrink the room left for the chunk
        instruction_tokens = await self.calculator.counter.count_tokens(
            self.sender.render(""), provider, model
        )
        chunk_budget = max(1, max_tokens - instruction_tokens)

        chunks = plan_chunk_documents(components.content_without_frontmatter, chunk_budget)
        logger.info(
            f"Split content into {len(chunks)} chunks for {provider}:{model} "
            f"(max_tokens={max_tokens}, instruction_tokens={instruction_tokens})"
        )

        pieces: List[str] = []
        outcomes: List[ChunkOutcome] = []
        for chunk in chunks:
            piece, outcome = await self._process_chunk(
                chunk, provider, model, is_mobile, configured_max_tokens
            )
            pieces.append(piece)
            outcomes.append(outcome)

        result = ProcessingResult(
            document=reconstruct_document(components.frontmatter, "".join(pieces)),
            max_tokens=max_tokens,
            instruction_tokens=instruction_tokens,
            chunks=outcomes,
        )
        logger.info(
            f"Chunked processing complete: {result.processed_count} processed, "
            f"{result.fallback_count} kept original"
        )
        return result
