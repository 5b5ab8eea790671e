"""Live display of segments as they are finalized."""

import logging
from collections.abc import Sequence
from typing import Protocol

import typer

from transcription_app._types import AudioBuffer, Segment
from transcription_app.assembler import color_index, visible_tokens
from transcription_app.diarization import speaker_for_segment
from transcription_app.timestamps import to_timestamp

logger = logging.getLogger(__name__)

__all__ = ["OutputSink", "TerminalSink", "NullSink", "SegmentPrinter", "COLORS"]

# 256-color ANSI palette from red (low confidence) to green (high).
COLORS = (
    "\033[38;5;196m",
    "\033[38;5;202m",
    "\033[38;5;208m",
    "\033[38;5;214m",
    "\033[38;5;220m",
    "\033[38;5;226m",
    "\033[38;5;190m",
    "\033[38;5;154m",
    "\033[38;5;118m",
    "\033[38;5;82m",
)
RESET = "\033[0m"


class OutputSink(Protocol):
    """Destination for live transcript text."""

    def write(self, text: str) -> None:
        ...

    def flush(self) -> None:
        ...


class TerminalSink:
    """Writes to stdout (or stderr) through typer."""

    def __init__(self, err: bool = False):
        self.err = err

    def write(self, text: str) -> None:
        typer.echo(text, nl=False, err=self.err)

    def flush(self) -> None:
        pass


class NullSink:
    """Discards everything, for headless use."""

    def write(self, text: str) -> None:
        pass

    def flush(self) -> None:
        pass


class SegmentPrinter:
    """Segment listener that renders each new batch to a sink.

    Pass an instance as ``TranscriptionRequest.listener``.
    """

    def __init__(
        self,
        sink: OutputSink,
        *,
        end_of_text_id: int,
        print_special: bool = False,
        print_colors: bool = False,
        no_timestamps: bool = False,
    ):
        self.sink = sink
        self.end_of_text_id = end_of_text_id
        self.print_special = print_special
        self.print_colors = print_colors
        self.no_timestamps = no_timestamps

    def __call__(self, batch: Sequence[Segment], audio: AudioBuffer | None = None) -> None:
        if not batch:
            return
        if batch[0].index == 0:
            self.sink.write("\n")

        for seg in batch:
            self.sink.write(self.format_segment(seg, audio))
        self.sink.flush()

    def format_segment(self, seg: Segment, audio: AudioBuffer | None = None) -> str:
        if self.no_timestamps:
            return self._colored_tokens(seg) if self.print_colors else seg.text

        speaker = speaker_for_segment(audio, seg.t0, seg.t1)
        if speaker:
            speaker = f"({speaker})"

        prefix = f"[{to_timestamp(seg.t0)} --> {to_timestamp(seg.t1)}]  "
        if self.print_colors:
            return f"{prefix}{self._colored_tokens(seg, speaker)}\n"
        return f"{prefix}{speaker}{seg.text}\n"

    def _colored_tokens(self, seg: Segment, speaker: str = "") -> str:
        parts = []
        for tok in visible_tokens(seg.tokens, self.end_of_text_id, self.print_special):
            col = min(color_index(tok.probability, len(COLORS)), len(COLORS) - 1)
            parts.append(f"{speaker}{COLORS[col]}{tok.text}{RESET}")
        return "".join(parts)
