"""Token-window chunking with bounded overlap."""

from __future__ import annotations

from typing import Sequence

import structlog
from pydantic import ValidationError

from mini_rag.config import ChunkingConfig
from mini_rag.errors import ConfigurationError
from mini_rag.ingest.tokenizer import Tokenizer, default_tokenizer
from mini_rag.types import Segment

logger = structlog.get_logger(__name__)


class TokenWindowChunker:
    """Splits text into overlapping segments bounded by token count.

    Algorithm:
    1. Text that fits in `max_tokens` is returned as a single segment spanning
       the whole input; no windowing happens.
    2. Longer text is tokenized once and walked with a fixed-size sliding
       window (`window=max_tokens`, `stride=step_size`). Each window is decoded
       back to text. Consecutive windows share `max_tokens - step_size` tokens.
    3. The loop stops once a window reaches the end of the token stream. The
       final window may be shorter than `min_tokens`; it is kept as is.

    Character offsets are measured by decoding the token prefix up to each
    window boundary. A BPE token can split a multi-byte character, so the
    offsets are positional hints rather than exact slice bounds.
    """

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        tokenizer: Tokenizer | None = None,
    ) -> None:
        self.config = config or ChunkingConfig()
        # Configs built with model_construct() skip validation; re-check here.
        if self.config.step_size < 1 or self.config.min_tokens > self.config.max_tokens:
            raise ConfigurationError(
                f"Invalid chunking config: step_size={self.config.step_size}, "
                f"min_tokens={self.config.min_tokens}, max_tokens={self.config.max_tokens}"
            )
        self.tokenizer = tokenizer or default_tokenizer()

    def chunk(self, text: str) -> list[Segment]:
        """Chunk `text` into ordered, overlapping segments.

        Returns an empty list for empty or whitespace-only text.
        """

        if not text or not text.strip():
            return []

        tokens = self.tokenizer.encode(text)
        total = len(tokens)
        max_tokens = self.config.max_tokens

        if total <= max_tokens:
            return [Segment(text=text, token_count=total, start_offset=0, end_offset=len(text))]

        step = self.config.step_size
        segments: list[Segment] = []
        position = 0

        while position < total:
            window_end = min(position + max_tokens, total)
            window = tokens[position:window_end]
            segments.append(
                Segment(
                    text=self.tokenizer.decode(window),
                    token_count=len(window),
                    start_offset=0 if position == 0 else self._text_position(text, tokens, position),
                    end_offset=self._text_position(text, tokens, window_end),
                )
            )
            if window_end >= total:
                break
            position += step

        logger.debug(
            "text_chunked",
            total_tokens=total,
            segment_count=len(segments),
            max_tokens=max_tokens,
            step_size=step,
        )
        return segments

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return len(self.tokenizer.encode(text))

    def _text_position(self, text: str, tokens: Sequence[int], token_position: int) -> int:
        if token_position >= len(tokens):
            return len(text)
        decoded = self.tokenizer.decode(tokens[:token_position])
        return min(len(decoded), len(text))


def chunk_text(
    text: str,
    min_tokens: int = 800,
    max_tokens: int = 1200,
    overlap_percent: float = 12.5,
    *,
    tokenizer: Tokenizer | None = None,
) -> list[Segment]:
    """Chunk `text` with an ad-hoc configuration.

    Raises:
        ConfigurationError: if the parameters are invalid, e.g. an overlap that
            leaves a non-positive step size.
    """

    config = ChunkingConfig.build(min_tokens, max_tokens, overlap_percent)
    return TokenWindowChunker(config, tokenizer).chunk(text)


def build_chunker(
    config: ChunkingConfig | dict[str, object] | None = None,
    tokenizer: Tokenizer | None = None,
) -> TokenWindowChunker:
    """Build a chunker from a config model or a raw mapping of its fields."""

    if isinstance(config, dict):
        try:
            config = ChunkingConfig.model_validate(config)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc
    return TokenWindowChunker(config, tokenizer)
