"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from transcription_app.timestamps import SAMPLE_RATE, to_timestamp

SPEAKER_0 = "speaker 0"
SPEAKER_1 = "speaker 1"
SPEAKER_UNKNOWN = "speaker ?"


@dataclass
class AudioBuffer:
    """Decoded PCM audio at 16 kHz, float32 in [-1.0, 1.0].

    ``stereo`` holds the two independently normalized channels and is only
    populated when diarization was requested.
    """

    mono: np.ndarray
    stereo: tuple[np.ndarray, np.ndarray] | None = None
    sample_rate: int = SAMPLE_RATE

    def __post_init__(self) -> None:
        if self.stereo is not None:
            left, right = self.stereo
            if not (len(left) == len(right) == len(self.mono)):
                raise ValueError(
                    "stereo channels must match mono length: "
                    f"{len(left)}, {len(right)} vs {len(self.mono)}"
                )

    @property
    def n_samples(self) -> int:
        return len(self.mono)

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.n_samples / self.sample_rate


@dataclass(frozen=True)
class Token:
    """Smallest recognized unit within a segment.

    ``t0``/``t1`` are centiseconds and only set when token-level
    timestamps were requested.
    """

    id: int
    text: str
    probability: float
    t0: int | None = None
    t1: int | None = None


@dataclass(frozen=True)
class Segment:
    """A contiguous span of recognized speech, times in centiseconds."""

    index: int
    t0: int
    t1: int
    text: str
    tokens: tuple[Token, ...] = ()


@dataclass(frozen=True)
class SegmentRecord:
    """Exported row of the segment table, times in centiseconds."""

    segment: int
    t0: int
    t1: int
    text: str
    speaker: str = ""

    @property
    def start(self) -> str:
        return to_timestamp(self.t0)

    @property
    def end(self) -> str:
        return to_timestamp(self.t1)


@dataclass(frozen=True)
class TokenRecord:
    """Exported row of the token table."""

    segment: int
    token: str
    probability: float
    start: str | None = None
    end: str | None = None


@dataclass
class TranscriptResult:
    """Result of transcribing one audio file."""

    segments: list[SegmentRecord] = field(default_factory=list)
    tokens: list[TokenRecord] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def n_segments(self) -> int:
        return len(self.segments)

    @property
    def text(self) -> str:
        return "".join(seg.text for seg in self.segments).strip()

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict view used by the JSON writer and the CLI."""
        return {
            "n_segments": self.n_segments,
            "segments": [
                {
                    "segment": seg.segment,
                    "from": seg.start,
                    "to": seg.end,
                    "text": seg.text,
                    **({"speaker": seg.speaker} if seg.speaker else {}),
                }
                for seg in self.segments
            ],
            "tokens": [
                {
                    "segment": tok.segment,
                    "token": tok.token,
                    "token_prob": tok.probability,
                    **(
                        {"token_from": tok.start, "token_to": tok.end}
                        if tok.start is not None
                        else {}
                    ),
                }
                for tok in self.tokens
            ],
            "params": dict(self.params),
            "warnings": list(self.warnings),
        }
