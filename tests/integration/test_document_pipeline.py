"""
Integration tests for chunked document processing.

Wires the shared registry, counter and calculator from the composition root
into ChunkedDocumentProcessor and runs a multi-section document through it
for every provider:
- chunk plans respect heading boundaries and the request budget
- every sent chunk passes validate_token_limits with its own cap
- failed chunks keep their original text
- custom models from an overrides file drive the budget
"""

import json

import pytest

from tests.utils.verification import verify_chunk_plan, verify_processed_document
from token_budget.chunking.frontmatter import extract_document_components
from token_budget.chunking.headings import create_optimized_chunks
from token_budget.chunking.processor import ChunkedDocumentProcessor
from token_budget.core import dependencies

FRONTMATTER = "---\ntitle: Planning meeting\ntranscript: |\n  we talked about everything\ndate: 2024-05-01\n---"
PREAMBLE = "Attendees: Ana, Bo, Chris\n\n"
SECTIONS = [
    f"## {n}. Topic {n}\n" + f"Discussion for topic {n} is still pending review by the team. " * 5 + "\n\n"
    for n in range(1, 13)
]
BODY = PREAMBLE + "".join(SECTIONS)
DOCUMENT = FRONTMATTER + "\n\n" + BODY

CONFIGURED_MAX_TOKENS = 300

MODELS = [
    ("openai", "gpt-4o"),
    ("anthropic", "claude-3-5-haiku-20241022"),
    ("google", "gemini-1.5-flash"),
    ("ollama", "llama3.1"),
]


def mark_reviewed(chunk: str) -> str:
    return chunk.replace("pending review", "reviewed")


@pytest.mark.integration
class TestDocumentPipeline:
    """Full pipeline through the shared calculator."""

    @pytest.fixture
    def calculator(self):
        return dependencies.get_budget_calculator()

    @pytest.mark.parametrize("provider, model", MODELS)
    def test_chunk_plan_is_well_formed(self, calculator, provider, model):
        components = extract_document_components(DOCUMENT)
        max_tokens = calculator.get_dynamic_max_tokens(
            provider, model, configured_max_tokens=CONFIGURED_MAX_TOKENS
        )

        chunks = create_optimized_chunks(components.content_without_frontmatter, max_tokens)
        verification = verify_chunk_plan(chunks, components.content_without_frontmatter, max_tokens)

        assert verification["plan_valid"], verification["issues"]
        assert chunks[0] == PREAMBLE
        assert len(chunks) > 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider, model", MODELS)
    async def test_document_round_trip(self, calculator, recording_sender, provider, model):
        sender = recording_sender(transform=mark_reviewed)
        processor = ChunkedDocumentProcessor(calculator, sender)

        result = await processor.process(
            DOCUMENT, provider, model, configured_max_tokens=CONFIGURED_MAX_TOKENS
        )

        expected_body = mark_reviewed(BODY.strip()) + "\n"
        assert result.document == FRONTMATTER + "\n" + expected_body
        assert result.max_tokens == CONFIGURED_MAX_TOKENS
        assert result.fallback_count == 0
        assert result.processed_count == len(result.chunks) - 1
        assert sum(c.heading_count for c in result.chunks) == len(SECTIONS)

        verification = verify_processed_document(DOCUMENT, result.document, FRONTMATTER)
        assert verification["document_valid"], verification["issues"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider, model", MODELS)
    async def test_sent_chunks_fit_their_budget(self, calculator, recording_sender, provider, model):
        sender = recording_sender(transform=mark_reviewed)
        processor = ChunkedDocumentProcessor(calculator, sender)

        await processor.process(DOCUMENT, provider, model, configured_max_tokens=CONFIGURED_MAX_TOKENS)

        assert sender.calls
        for chunk, max_tokens in sender.calls:
            prompt_tokens = await calculator.counter.count_tokens(chunk, provider, model)
            validation = calculator.validate_token_limits(provider, model, prompt_tokens, max_tokens)
            assert validation.is_valid, validation.error

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_original_sections(self, calculator, recording_sender):
        sender = recording_sender(transform=mark_reviewed)
        calls = 0

        async def flaky_send(chunk, max_tokens):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise TimeoutError("request timed out")
            return mark_reviewed(chunk)

        sender.send = flaky_send
        processor = ChunkedDocumentProcessor(calculator, sender)

        result = await processor.process(
            DOCUMENT, "anthropic", "claude-3-5-haiku-20241022", configured_max_tokens=CONFIGURED_MAX_TOKENS
        )

        assert result.fallback_count == 1
        assert "pending review" in result.document
        assert "reviewed" in result.document
        verification = verify_processed_document(DOCUMENT, result.document, FRONTMATTER)
        assert verification["document_valid"], verification["issues"]

    @pytest.mark.asyncio
    async def test_overrides_file_drives_budget(self, monkeypatch, tmp_path, recording_sender):
        path = tmp_path / "models.json"
        path.write_text(
            json.dumps(
                {"ollama": {"phi4": {"context": 16_384, "max_output": 1_024, "reserve_output_pct": 0.15}}}
            )
        )
        monkeypatch.setenv("TOKEN_BUDGET_MODEL_OVERRIDES_FILE", str(path))
        calculator = dependencies.get_budget_calculator()
        processor = ChunkedDocumentProcessor(calculator, recording_sender(transform=mark_reviewed))

        result = await processor.process(DOCUMENT, "ollama", "phi4")

        assert result.max_tokens == 870  # floor(1024 * 0.85)
        assert result.fallback_count == 0

    def test_chunk_estimate_covers_document(self, calculator):
        estimate = calculator.estimate_optimal_chunks(
            "openai",
            "gpt-4",
            total_document_tokens=20_000,
            instructions_tokens=1_500,
            desired_output_tokens=2_000,
        )

        assert estimate.tokens_per_chunk == 8_192 - 1_500 - 2_000 - 409
        assert estimate.estimated_chunks * estimate.tokens_per_chunk >= 20_000
        assert (estimate.estimated_chunks - 1) * estimate.tokens_per_chunk < 20_000
