from langchain_core.messages import AIMessage

from mini_rag.generation.answer import (
    SYSTEM_PROMPT,
    ChatModelAnswerGenerator,
    ExtractiveAnswerGenerator,
    build_prompts,
    format_context,
)
from mini_rag.generation.citations import extract_citations
from mini_rag.types import RankedChunk


def _ranked() -> list[RankedChunk]:
    return [
        RankedChunk(id="c1", text="Paris is the capital of France. It is large.", score=0.9, metadata={}, index=3),
        RankedChunk(id="c2", text="The Louvre is a museum in Paris.", score=0.8, metadata={}, index=0),
    ]


class _RecordingChatModel:
    model_name = "fake-chat"

    def __init__(self, message: AIMessage) -> None:
        self.message = message
        self.received: list[object] = []

    def invoke(self, messages: list[object]) -> AIMessage:
        self.received = messages
        return self.message


def test_system_prompt_requires_numbered_citations() -> None:
    assert "cite it using [1], [2]" in SYSTEM_PROMPT
    assert "based on the provided context" in SYSTEM_PROMPT


def test_context_block_numbers_chunks_by_rank_position() -> None:
    context = format_context(_ranked())

    assert context == (
        "[1] Paris is the capital of France. It is large.\n\n"
        "[2] The Louvre is a museum in Paris."
    )
    system_prompt, user_prompt = build_prompts("What is in Paris?", _ranked())
    assert system_prompt == SYSTEM_PROMPT
    assert context in user_prompt
    assert user_prompt.rstrip().endswith("Question: What is in Paris?\n\nAnswer:")


def test_extractive_generator_cites_context_positions() -> None:
    chunks = _ranked()
    system_prompt, user_prompt = build_prompts("What is in Paris?", chunks)

    generation = ExtractiveAnswerGenerator().generate(system_prompt, user_prompt)

    assert generation.text == "Paris is the capital of France. [1] The Louvre is a museum in Paris. [2]"
    assert [c.chunk_id for c in extract_citations(generation.text, chunks)] == ["c1", "c2"]
    assert generation.usage.total_tokens == (
        generation.usage.prompt_tokens + generation.usage.completion_tokens
    )


def test_chat_model_generator_reads_usage_metadata() -> None:
    message = AIMessage(
        content="Paris is the capital [1].",
        usage_metadata={"input_tokens": 120, "output_tokens": 8, "total_tokens": 128},
    )
    llm = _RecordingChatModel(message)
    generator = ChatModelAnswerGenerator(llm)

    generation = generator.generate("system {braces}", "user prompt")

    assert generation.text == "Paris is the capital [1]."
    assert (generation.usage.prompt_tokens, generation.usage.completion_tokens) == (120, 8)
    assert generation.usage.total_tokens == 128
    assert [m.content for m in llm.received] == ["system {braces}", "user prompt"]
    assert generator.describe() == {"model": "fake-chat"}


def test_chat_model_generator_falls_back_to_response_metadata() -> None:
    message = AIMessage(
        content=[{"type": "text", "text": "Answer [2]"}],
        response_metadata={"token_usage": {"prompt_tokens": 50, "completion_tokens": 5}},
    )
    generation = ChatModelAnswerGenerator(_RecordingChatModel(message)).generate("s", "u")

    assert generation.text == "Answer [2]"
    assert generation.usage.total_tokens == 55
