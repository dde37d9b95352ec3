"""Error taxonomy shared by the chunker and the query pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mini_rag.types import StageTimings


class RagError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(RagError, ValueError):
    """Invalid chunking or pipeline parameters; raised before any work starts."""


class EmptyInputError(RagError, ValueError):
    """Empty query or empty document text."""


class CollaboratorFailure(RagError):
    """A fatal failure of an external collaborator at a named pipeline stage.

    `timings` holds whatever stage timings were collected before the pipeline
    aborted, including the elapsed time of the failing stage.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        *,
        timings: StageTimings | None = None,
    ) -> None:
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
        self.reason = message
        self.timings = timings


class CollaboratorTimeout(CollaboratorFailure):
    """A collaborator call exceeded its stage timeout."""
