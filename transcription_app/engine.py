"""Recognition engine contract and per-request engine configuration."""

import os
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from transcription_app._types import Segment

__all__ = [
    "DEFAULT_LANGUAGE",
    "RecognitionConfig",
    "CancellationToken",
    "RecognitionEngine",
    "EngineError",
    "InferenceAborted",
    "UnknownLanguageError",
    "default_thread_count",
]

DEFAULT_LANGUAGE = "en"


def default_thread_count() -> int:
    return min(4, os.cpu_count() or 1)


class EngineError(RuntimeError):
    """Recognition engine failed to process audio."""


class InferenceAborted(EngineError):
    """Inference stopped early because the request was cancelled."""


class UnknownLanguageError(ValueError):
    """Requested language code is not known to the engine."""

    def __init__(self, language: str):
        super().__init__(f"Unknown language: {language!r}")
        self.language = language


@dataclass(frozen=True)
class RecognitionConfig:
    """Engine configuration for one request. Never mutated after construction."""

    language: str = DEFAULT_LANGUAGE
    translate: bool = False
    n_threads: int = 4
    n_processors: int = 1
    max_context: int = -1
    print_special: bool = False
    word_threshold: float = 0.01
    max_len: int = 0
    speed_up: bool = False
    token_timestamps: bool = False
    offset_ms: int = 0
    duration_ms: int = 0
    beam_size: int = 5

    @property
    def task(self) -> str:
        return "translate" if self.translate else "transcribe"


class CancellationToken:
    """Request-scoped abort flag shared by all inference workers.

    Backed by ``threading.Event`` so it can be set from any thread,
    including a signal handler, while workers poll it.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


class RecognitionEngine(Protocol):
    """Interface for speech recognition backends.

    Times on emitted segments and tokens are centiseconds relative to the
    start of the samples passed to ``decode``. Segment indices are local to
    the call; the orchestrator renumbers them.
    """

    @property
    def end_of_text_id(self) -> int:
        """Token ids at or above this value are control tokens."""
        raise NotImplementedError

    @property
    def is_multilingual(self) -> bool:
        raise NotImplementedError

    def language_id(self, code: str) -> int:
        """Return the engine's id for a language code, or -1 if unknown."""
        raise NotImplementedError

    def configure(self, config: RecognitionConfig) -> RecognitionConfig:
        """Validate/complete ``config`` for this engine and return the handle to run with."""
        raise NotImplementedError

    def decode(
        self,
        samples: np.ndarray,
        config: RecognitionConfig,
        *,
        should_continue: Callable[[], bool],
    ) -> Iterator[Segment]:
        """Decode one chunk of mono audio, yielding finalized segments in order.

        ``should_continue`` is called before each encoder step; returning
        False stops decoding.
        """
        raise NotImplementedError
