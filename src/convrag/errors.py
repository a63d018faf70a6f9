"""Error taxonomy for ConvRAG."""

from __future__ import annotations

from typing import Sequence


class ConvRAGError(RuntimeError):
    """Base class for errors raised by ConvRAG components."""


class MissingInputError(ConvRAGError, KeyError):
    """Raised when a required key is absent from the pipeline input."""

    def __init__(self, key: str, description: str = "Input") -> None:
        super().__init__(f"{description} key {key!r} not found.")
        self.key = key

    def __str__(self) -> str:
        return str(self.args[0])


class AmbiguousOutputError(ConvRAGError):
    """Raised when a sub-chain that must return a single field returns several."""

    def __init__(self, keys: Sequence[str]) -> None:
        super().__init__(
            f"Chain returned multiple values ({', '.join(keys)}), only single values are supported."
        )
        self.keys = tuple(keys)


class UpstreamCallError(ConvRAGError):
    """Raised by backend adapters when the underlying library call fails."""


__all__ = ["AmbiguousOutputError", "ConvRAGError", "MissingInputError", "UpstreamCallError"]
