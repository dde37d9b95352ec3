"""Retrieval-augmented generation pipeline with token-window chunking."""

from .config import ChunkingConfig, PipelineConfig, PricingConfig, RetrievalConfig
from .errors import CollaboratorFailure, ConfigurationError, EmptyInputError

__all__ = [
    "ChunkingConfig",
    "CollaboratorFailure",
    "ConfigurationError",
    "EmptyInputError",
    "PipelineConfig",
    "PricingConfig",
    "RetrievalConfig",
]
