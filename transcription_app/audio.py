"""WAV ingestion and validation."""

import logging
from pathlib import Path

import numpy as np
import soundfile

from transcription_app._types import SAMPLE_RATE, AudioBuffer

logger = logging.getLogger(__name__)

__all__ = [
    "AudioValidationError",
    "UnsupportedContainerError",
    "ChannelCountError",
    "DiarizationInputError",
    "SampleRateError",
    "BitDepthError",
    "load_audio",
]

_WAV_FORMATS = ("WAV", "WAVEX")
_PCM16_SUBTYPE = "PCM_16"


class AudioValidationError(Exception):
    """Input audio does not satisfy the 16 kHz/16-bit mono or stereo WAV contract."""

    def __init__(self, message: str, path: Path | str):
        super().__init__(f"{message}: {path}")
        self.path = Path(path)


class UnsupportedContainerError(AudioValidationError):
    """File could not be opened or is not a WAV container."""


class ChannelCountError(AudioValidationError):
    """WAV file is neither mono nor stereo."""


class DiarizationInputError(AudioValidationError):
    """Diarization was requested on input that cannot support it."""


class SampleRateError(AudioValidationError):
    """WAV file is not sampled at 16 kHz."""


class BitDepthError(AudioValidationError):
    """WAV file is not 16-bit signed PCM."""


def _validate(
    info,
    path: Path,
    diarize: bool,
    timestamps: bool,
) -> None:
    """Check the header against the input contract, in a fixed order."""
    if info.format not in _WAV_FORMATS:
        raise UnsupportedContainerError(
            f"Failed to open the file as WAV file (format {info.format})", path
        )

    if info.channels not in (1, 2):
        raise ChannelCountError(
            f"WAV file must be mono or stereo, got {info.channels} channels", path
        )

    if diarize:
        if info.channels != 2:
            raise DiarizationInputError(
                "WAV file must be stereo for diarization", path
            )
        if not timestamps:
            raise DiarizationInputError(
                "Timestamps have to be enabled for diarization", path
            )

    if info.samplerate != SAMPLE_RATE:
        raise SampleRateError(
            f"WAV file must be 16 kHz, got {info.samplerate} Hz", path
        )

    if info.subtype != _PCM16_SUBTYPE:
        raise BitDepthError(
            f"WAV file must be 16 bit, got {info.subtype}", path
        )


def load_audio(
    path: Path | str,
    *,
    diarize: bool = False,
    timestamps: bool = True,
) -> AudioBuffer:
    """Load and validate a 16 kHz 16-bit PCM WAV file.

    Stereo input is downmixed to mono by averaging the channels. When
    ``diarize`` is set the two channels are also kept, each normalized on
    its own.

    Args:
        path: Path to WAV file
        diarize: Keep per-channel buffers for speaker attribution
        timestamps: Whether segment timestamps are enabled for this request

    Returns:
        AudioBuffer with float32 samples in [-1.0, 1.0]

    Raises:
        AudioValidationError: If the file violates the input contract
    """
    path = Path(path)

    try:
        info = soundfile.info(str(path))
    except RuntimeError as e:
        raise UnsupportedContainerError(
            "Failed to open the file as WAV file", path
        ) from e

    _validate(info, path, diarize, timestamps)

    try:
        pcm16, _ = soundfile.read(str(path), dtype="int16", always_2d=True)
    except RuntimeError as e:
        raise UnsupportedContainerError(
            f"Failed to read PCM frames ({e})", path
        ) from e

    logger.debug(
        "Read %s: %d frames, %d channels", path, pcm16.shape[0], pcm16.shape[1]
    )

    if pcm16.shape[1] == 1:
        mono = pcm16[:, 0].astype(np.float32) / 32768.0
    else:
        summed = pcm16[:, 0].astype(np.int32) + pcm16[:, 1].astype(np.int32)
        mono = summed.astype(np.float32) / 65536.0

    stereo = None
    if diarize:
        stereo = (
            pcm16[:, 0].astype(np.float32) / 32768.0,
            pcm16[:, 1].astype(np.float32) / 32768.0,
        )

    return AudioBuffer(mono=mono, stereo=stereo)
