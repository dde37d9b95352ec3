"""Tokenizer adapter shared by the chunker and token counting."""

from __future__ import annotations

from functools import lru_cache
from typing import Protocol, Sequence

import tiktoken

DEFAULT_MODEL = "gpt-4"


class Tokenizer(Protocol):
    """Converts text to a token sequence and back."""

    def encode(self, text: str) -> list[int]:
        """Encode text into token ids."""

    def decode(self, tokens: Sequence[int]) -> str:
        """Decode token ids back into text."""


class TiktokenTokenizer:
    """`tiktoken` BPE encoding for an OpenAI model (cl100k_base for gpt-4)."""

    def __init__(self, model: str = DEFAULT_MODEL, *, encoding_name: str | None = None) -> None:
        if encoding_name is not None:
            self._encoding = tiktoken.get_encoding(encoding_name)
        else:
            self._encoding = tiktoken.encoding_for_model(model)
        self.name = self._encoding.name

    def encode(self, text: str) -> list[int]:
        # Special-token text in user documents is treated as plain text.
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: Sequence[int]) -> str:
        return self._encoding.decode(list(tokens))


@lru_cache(maxsize=1)
def default_tokenizer() -> TiktokenTokenizer:
    """Return the shared read-only gpt-4 tokenizer."""
    return TiktokenTokenizer(DEFAULT_MODEL)


def count_tokens(text: str, tokenizer: Tokenizer | None = None) -> int:
    if not text:
        return 0
    return len((tokenizer or default_tokenizer()).encode(text))
