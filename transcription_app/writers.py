"""Transcript output formats."""

import json
import os
from typing import TextIO

from transcription_app._types import TranscriptResult
from transcription_app.timestamps import to_timestamp

__all__ = [
    "TXTWriter",
    "VTTWriter",
    "SRTWriter",
    "JSONWriter",
    "TSVWriter",
    "WRITERS",
    "get_writer",
    "get_default_writer",
]


class TXTWriter:
    """Plain text, one segment per line."""

    ext = "txt"

    def write(self, file: TextIO, result: TranscriptResult) -> None:
        for seg in result.segments:
            file.write("%s\n" % seg.text.strip())


class VTTWriter:
    """WebVTT (Web Video Text Tracks), the W3C caption format supported by
    browsers through HTML5.

    See also: https://www.w3.org/TR/webvtt1/
    """

    ext = "vtt"

    def write(self, file: TextIO, result: TranscriptResult) -> None:
        file.write("WEBVTT\n\n")
        for seg in result.segments:
            text = seg.text.strip()
            if seg.speaker:
                text = "<v %s>%s" % (seg.speaker, text)
            file.write("%s --> %s\n%s\n\n" % (seg.start, seg.end, text))


class SRTWriter:
    """SubRip subtitles, numbered from 1 with a comma before milliseconds."""

    ext = "srt"

    def write(self, file: TextIO, result: TranscriptResult) -> None:
        for index, seg in enumerate(result.segments, start=1):
            file.write(
                "%i\n%s --> %s\n%s\n\n"
                % (
                    index,
                    to_timestamp(seg.t0, comma=True),
                    to_timestamp(seg.t1, comma=True),
                    seg.text.strip(),
                )
            )


class JSONWriter:

    ext = "json"

    def write(self, file: TextIO, result: TranscriptResult) -> None:
        json.dump(result.to_dict(), file, ensure_ascii=False, indent=2)
        file.write("\n")


class TSVWriter:

    ext = "tsv"

    def write(self, file: TextIO, result: TranscriptResult) -> None:
        file.write("segment\tfrom\tto\tspeaker\ttext\n")
        for seg in result.segments:
            file.write(
                "%i\t%s\t%s\t%s\t%s\n"
                % (seg.segment, seg.start, seg.end, seg.speaker, seg.text.strip())
            )


WRITERS = (TXTWriter, VTTWriter, SRTWriter, JSONWriter, TSVWriter)


def get_writer(ext: str):
    for cls in WRITERS:
        if cls.ext == ext:
            return cls()
    return None


def get_default_writer(path: str | os.PathLike | None):
    """Guess a writer from the output file name, defaulting to JSON."""
    if path is not None:
        ext = os.path.splitext(os.fspath(path))[1][1:].lower()
        writer = get_writer(ext)
        if writer is not None:
            return writer
    return JSONWriter()
