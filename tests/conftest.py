"""Shared fixtures: an in-memory recognition engine and WAV writers."""

import time
from pathlib import Path

import numpy as np
import pytest
import soundfile

from transcription_app._types import Segment, Token
from transcription_app.engine import EngineError

EOT = 50257


class FakeEngine:
    """Deterministic engine emitting one segment per second of audio.

    Each segment carries a text token with token-level timing offset from
    the segment, followed by an end-of-text control token.
    """

    end_of_text_id = EOT

    def __init__(
        self,
        multilingual: bool = True,
        languages: tuple[str, ...] = ("en", "de", "fr", "ja"),
        fail_with: Exception | None = None,
        delay: float = 0.0,
    ):
        self.is_multilingual = multilingual
        self.languages = languages
        self.fail_with = fail_with
        self.delay = delay
        self.configured = None
        self.decode_calls = []

    def language_id(self, code):
        return self.languages.index(code) if code in self.languages else -1

    def configure(self, config):
        self.configured = config
        return config

    def decode(self, samples, config, *, should_continue):
        self.decode_calls.append(len(samples))
        duration = len(samples) * 100 // 16000
        for i, t0 in enumerate(range(0, duration, 100)):
            if not should_continue():
                return
            if self.delay:
                time.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            t1 = min(t0 + 100, duration)
            yield Segment(
                index=i,
                t0=t0,
                t1=t1,
                text=f" word{i}",
                tokens=(
                    Token(id=100 + i, text=f" word{i}", probability=0.9, t0=t0 + 10, t1=t0 + 60),
                    Token(id=EOT, text="[_EOT_]", probability=1.0, t0=t1, t1=t1),
                ),
            )


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def failing_engine():
    return FakeEngine(fail_with=EngineError("decoder exploded"))


@pytest.fixture
def write_wav(tmp_path):
    """Write a WAV file from an int16 or float array and return its path."""

    def _write(
        name: str,
        data: np.ndarray,
        sample_rate: int = 16000,
        subtype: str = "PCM_16",
        format: str = "WAV",
    ) -> Path:
        path = tmp_path / name
        soundfile.write(str(path), data, sample_rate, subtype=subtype, format=format)
        return path

    return _write


@pytest.fixture
def silent_wav(write_wav):
    """Two seconds of mono silence."""
    return write_wav("silence.wav", np.zeros(32000, dtype=np.int16))


@pytest.fixture
def stereo_wav(write_wav):
    """Two seconds of stereo: speaker on the left for 1s, then on the right."""
    left = np.zeros(32000, dtype=np.int16)
    right = np.zeros(32000, dtype=np.int16)
    left[:16000] = 8000
    right[16000:] = 8000
    return write_wav("stereo.wav", np.stack([left, right], axis=1))
