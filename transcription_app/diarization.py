"""Two-channel energy heuristic for speaker attribution."""

import logging

import numpy as np

from transcription_app._types import (
    SPEAKER_0,
    SPEAKER_1,
    SPEAKER_UNKNOWN,
    AudioBuffer,
)
from transcription_app.timestamps import timestamp_to_sample

logger = logging.getLogger(__name__)

__all__ = ["ENERGY_MARGIN", "channel_energies", "label_from_energies", "speaker_for_segment"]

# A channel must be this much louder than the other to claim the segment.
ENERGY_MARGIN = 1.1


def channel_energies(
    stereo: tuple[np.ndarray, np.ndarray], t0: int, t1: int
) -> tuple[float, float]:
    """Sum absolute amplitude of each channel over the segment window."""
    n_samples = len(stereo[0])
    if n_samples == 0:
        return 0.0, 0.0

    is0 = timestamp_to_sample(t0, n_samples)
    is1 = timestamp_to_sample(t1, n_samples)

    energy0 = float(np.abs(stereo[0][is0:is1], dtype=np.float64).sum())
    energy1 = float(np.abs(stereo[1][is0:is1], dtype=np.float64).sum())
    return energy0, energy1


def label_from_energies(energy0: float, energy1: float) -> str:
    if energy0 > ENERGY_MARGIN * energy1:
        return SPEAKER_0
    if energy1 > ENERGY_MARGIN * energy0:
        return SPEAKER_1
    return SPEAKER_UNKNOWN


def speaker_for_segment(audio: AudioBuffer | None, t0: int, t1: int) -> str:
    """Return the speaker label for a segment, or "" when not diarizing.

    Only produces a label when ``audio`` carries both stereo channels.
    """
    if audio is None or audio.stereo is None:
        return ""

    energy0, energy1 = channel_energies(audio.stereo, t0, t1)
    label = label_from_energies(energy0, energy1)
    logger.debug(
        "Diarization t0=%d t1=%d energy0=%.3f energy1=%.3f -> %s",
        t0,
        t1,
        energy0,
        energy1,
        label,
    )
    return label
