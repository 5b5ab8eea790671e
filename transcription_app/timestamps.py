"""Conversion between engine centiseconds, display strings and sample indices."""

SAMPLE_RATE = 16000

__all__ = ["SAMPLE_RATE", "to_timestamp", "timestamp_to_sample", "seconds_to_centiseconds"]


def to_timestamp(t: int, comma: bool = False) -> str:
    """Format a centisecond time as ``HH:MM:SS.mmm``.

    Truncating integer arithmetic only, so 500 -> ``00:00:05.000`` and
    6000 -> ``00:01:00.000``. With ``comma`` the millisecond separator is
    ``,`` (SRT style).
    """
    msec = int(t) * 10
    hr = msec // (1000 * 60 * 60)
    msec -= hr * (1000 * 60 * 60)
    minutes = msec // (1000 * 60)
    msec -= minutes * (1000 * 60)
    sec = msec // 1000
    msec -= sec * 1000

    return "%02d:%02d:%02d%s%03d" % (hr, minutes, sec, "," if comma else ".", msec)


def timestamp_to_sample(t: int, n_samples: int, sample_rate: int = SAMPLE_RATE) -> int:
    """Map a centisecond time to a sample index clamped to ``[0, n_samples-1]``."""
    return max(0, min(n_samples - 1, (int(t) * sample_rate) // 100))


def seconds_to_centiseconds(seconds: float) -> int:
    return int(round(seconds * 100))
