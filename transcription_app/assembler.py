"""Builds the exported segment and token tables from engine output."""

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from transcription_app._types import (
    AudioBuffer,
    Segment,
    SegmentRecord,
    Token,
    TokenRecord,
    TranscriptResult,
)
from transcription_app.diarization import speaker_for_segment
from transcription_app.engine import RecognitionConfig
from transcription_app.timestamps import to_timestamp

logger = logging.getLogger(__name__)

__all__ = ["visible_tokens", "color_index", "assemble_result"]


def visible_tokens(
    tokens: Iterable[Token], end_of_text_id: int, print_special: bool
) -> list[Token]:
    """Drop control tokens (id >= end-of-text) unless specials are requested.

    Shared by the live display and final extraction so both show the same
    tokens.
    """
    if print_special:
        return list(tokens)
    return [tok for tok in tokens if tok.id < end_of_text_id]


def color_index(probability: float, n_colors: int) -> int:
    """Confidence bucket ``floor(p**3 * n)`` clamped to ``[0, n]``.

    The cubic skews mid-range confidence toward the low buckets.
    """
    return max(0, min(n_colors, int(probability**3 * n_colors)))


def assemble_result(
    segments: Sequence[Segment],
    *,
    end_of_text_id: int,
    config: RecognitionConfig,
    audio: AudioBuffer | None = None,
    source: Path | str | None = None,
    warnings: Sequence[str] = (),
) -> TranscriptResult:
    """Walk the engine's segments once and build the transcript tables.

    Segment numbers in the exported tables are 1-based. Token start/end are
    taken from token-level timing only. They stay empty when token
    timestamps were not requested or the engine gave the token no timing.

    Args:
        segments: All segments of the request, in order
        end_of_text_id: Engine threshold for control tokens
        config: Effective engine configuration
        audio: Buffer with stereo channels when diarizing, else None
        source: Input path echoed into the parameters
        warnings: Policy warnings raised while configuring

    Returns:
        TranscriptResult
    """
    result = TranscriptResult(warnings=list(warnings))

    for seg in segments:
        number = seg.index + 1
        result.segments.append(
            SegmentRecord(
                segment=number,
                t0=seg.t0,
                t1=seg.t1,
                text=seg.text,
                speaker=speaker_for_segment(audio, seg.t0, seg.t1),
            )
        )

        for tok in visible_tokens(seg.tokens, end_of_text_id, config.print_special):
            start = end = None
            if config.token_timestamps and tok.t0 is not None and tok.t1 is not None:
                start = to_timestamp(tok.t0)
                end = to_timestamp(tok.t1)
            result.tokens.append(
                TokenRecord(
                    segment=number,
                    token=tok.text,
                    probability=tok.probability,
                    start=start,
                    end=end,
                )
            )

    result.params = {
        "audio": str(source) if source is not None else None,
        "language": config.language,
        "offset": config.offset_ms,
        "duration": config.duration_ms,
        "translate": config.translate,
        "token_timestamps": config.token_timestamps,
        "word_threshold": config.word_threshold,
    }

    logger.debug(
        "Assembled %d segments and %d tokens", result.n_segments, len(result.tokens)
    )
    return result
