"""Drives the recognition engine over one request and assembles the transcript."""

import dataclasses
import logging
import queue
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from transcription_app._types import SAMPLE_RATE, AudioBuffer, Segment, TranscriptResult
from transcription_app.assembler import assemble_result
from transcription_app.audio import load_audio
from transcription_app.engine import (
    DEFAULT_LANGUAGE,
    CancellationToken,
    EngineError,
    InferenceAborted,
    RecognitionConfig,
    RecognitionEngine,
    UnknownLanguageError,
    default_thread_count,
)
from transcription_app.timestamps import to_timestamp

logger = logging.getLogger(__name__)

__all__ = [
    "BatchCallback",
    "SegmentListener",
    "TranscriptionRequest",
    "InferenceOrchestrator",
    "NoInputError",
    "transcribe_file",
    "transcribe_files",
]

NOT_MULTILINGUAL_WARNING = (
    "model is not multilingual, ignoring language and translation options"
)

# Called on the requesting thread with each batch of newly finalized segments.
BatchCallback = Callable[[Sequence[Segment]], None]
# Request-level listener; also receives the decoded audio of the file.
SegmentListener = Callable[[Sequence[Segment], AudioBuffer], None]

_CHUNK_DONE = object()


class NoInputError(ValueError):
    """No input files were given."""


@dataclass
class TranscriptionRequest:
    """Caller-supplied parameters for one transcription request."""

    language: str = DEFAULT_LANGUAGE
    translate: bool = False
    token_timestamps: bool = False
    print_special: bool = False
    offset_ms: int = 0
    duration_ms: int = 0
    trace: bool = False
    n_threads: int = field(default_factory=default_thread_count)
    n_processors: int = 1
    diarize: bool = False
    no_timestamps: bool = False
    max_context: int = -1
    max_len: int = 0
    word_threshold: float = 0.01
    speed_up: bool = False
    beam_size: int = 5
    listener: SegmentListener | None = None
    token: CancellationToken = field(default_factory=CancellationToken)


class InferenceOrchestrator:
    """Configures the engine for a request and runs it across parallel workers.

    Each worker decodes a disjoint chunk of the audio into its own queue.
    Segments are renumbered and handed to the listener on the calling
    thread in chunk order, so a slow listener never stalls a worker.
    """

    def __init__(self, engine: RecognitionEngine):
        self.engine = engine

    def build_config(
        self, request: TranscriptionRequest
    ) -> tuple[RecognitionConfig, list[str]]:
        """Resolve request parameters into an engine configuration.

        Returns:
            The configuration and any non-fatal policy warnings

        Raises:
            UnknownLanguageError: If the engine does not know the language
        """
        if self.engine.language_id(request.language) == -1:
            raise UnknownLanguageError(request.language)

        warnings = []
        language = request.language
        translate = request.translate

        if not self.engine.is_multilingual:
            if language != DEFAULT_LANGUAGE or translate:
                logger.warning(NOT_MULTILINGUAL_WARNING)
                warnings.append(NOT_MULTILINGUAL_WARNING)
                language = DEFAULT_LANGUAGE
                translate = False

        config = RecognitionConfig(
            language=language,
            translate=translate,
            n_threads=request.n_threads,
            n_processors=max(1, request.n_processors),
            max_context=request.max_context,
            print_special=request.print_special,
            word_threshold=request.word_threshold,
            max_len=request.max_len,
            speed_up=request.speed_up,
            token_timestamps=request.token_timestamps,
            offset_ms=request.offset_ms,
            duration_ms=request.duration_ms,
            beam_size=request.beam_size,
        )
        return self.engine.configure(config), warnings

    def run(
        self,
        samples: np.ndarray,
        config: RecognitionConfig,
        *,
        token: CancellationToken | None = None,
        listener: BatchCallback | None = None,
    ) -> list[Segment]:
        """Run inference to completion and return all segments in order.

        Blocks until every worker finishes or stops on cancellation.

        Raises:
            InferenceAborted: If the token was cancelled
            EngineError: If any worker failed
        """
        token = token or CancellationToken()
        window, window_start = _apply_window(samples, config)
        chunks = _split_chunks(window, config.n_processors)

        logger.debug(
            "Dispatching %d samples across %d worker(s)", len(window), len(chunks)
        )

        segments: list[Segment] = []
        if not chunks:
            return segments

        queues = [queue.Queue() for _ in chunks]
        with ThreadPoolExecutor(
            max_workers=len(chunks), thread_name_prefix="inference"
        ) as pool:
            futures = [
                pool.submit(
                    self._decode_chunk,
                    chunk,
                    _samples_to_centiseconds(window_start + chunk_start),
                    config,
                    token,
                    out,
                )
                for (chunk_start, chunk), out in zip(chunks, queues)
            ]
            try:
                for out in queues:
                    self._drain(out, segments, listener)
            except BaseException:
                token.cancel()
                raise

            for future in futures:
                try:
                    future.result()
                except EngineError:
                    raise
                except Exception as e:
                    raise EngineError(f"failed to process audio: {e}") from e

        if token.is_cancelled():
            raise InferenceAborted(
                f"inference aborted after {len(segments)} segments"
            )
        return segments

    def _decode_chunk(
        self,
        samples: np.ndarray,
        shift: int,
        config: RecognitionConfig,
        token: CancellationToken,
        out: queue.Queue,
    ) -> None:
        try:
            for seg in self.engine.decode(
                samples, config, should_continue=lambda: not token.is_cancelled()
            ):
                out.put(_shift_segment(seg, shift))
        except Exception:
            # Stop the other workers; the error surfaces from the future.
            token.cancel()
            raise
        finally:
            out.put(_CHUNK_DONE)

    def _drain(
        self,
        out: queue.Queue,
        segments: list[Segment],
        listener: BatchCallback | None,
    ) -> None:
        """Collect one worker's segments, notifying the listener per batch."""
        done = False
        while not done:
            batch = []
            item = out.get()
            while True:
                if item is _CHUNK_DONE:
                    done = True
                    break
                batch.append(dataclasses.replace(item, index=len(segments) + len(batch)))
                try:
                    item = out.get_nowait()
                except queue.Empty:
                    break

            if batch:
                segments.extend(batch)
                if listener is not None:
                    listener(batch)


def _apply_window(samples: np.ndarray, config: RecognitionConfig) -> tuple[np.ndarray, int]:
    start = min(len(samples), config.offset_ms * SAMPLE_RATE // 1000)
    end = len(samples)
    if config.duration_ms > 0:
        end = min(end, start + config.duration_ms * SAMPLE_RATE // 1000)
    return samples[start:end], start


def _split_chunks(samples: np.ndarray, n_processors: int) -> list[tuple[int, np.ndarray]]:
    """Split into contiguous chunks; the last one takes the remainder."""
    n_samples = len(samples)
    if n_samples == 0:
        return []

    n_chunks = max(1, min(n_processors, n_samples))
    per_chunk = n_samples // n_chunks
    chunks = []
    for i in range(n_chunks):
        start = i * per_chunk
        end = n_samples if i == n_chunks - 1 else start + per_chunk
        chunks.append((start, samples[start:end]))
    return chunks


def _samples_to_centiseconds(n: int) -> int:
    return n * 100 // SAMPLE_RATE


def _shift_segment(seg: Segment, shift: int) -> Segment:
    if shift == 0:
        return seg
    tokens = tuple(
        dataclasses.replace(
            tok,
            t0=tok.t0 + shift if tok.t0 is not None else None,
            t1=tok.t1 + shift if tok.t1 is not None else None,
        )
        for tok in seg.tokens
    )
    return dataclasses.replace(seg, t0=seg.t0 + shift, t1=seg.t1 + shift, tokens=tokens)


def transcribe_file(
    engine: RecognitionEngine,
    path: Path | str,
    request: TranscriptionRequest | None = None,
) -> TranscriptResult:
    """Validate, decode and transcribe a single WAV file.

    Raises:
        UnknownLanguageError: If the requested language is unknown
        AudioValidationError: If the file violates the input contract
        EngineError: If inference fails or is aborted
    """
    request = request or TranscriptionRequest()
    path = Path(path)

    orchestrator = InferenceOrchestrator(engine)
    config, warnings = orchestrator.build_config(request)

    audio = load_audio(
        path,
        diarize=request.diarize,
        timestamps=not request.no_timestamps,
    )

    logger.info(
        "Processing %s (%d samples, %.1f sec), lang = %s, translate = %s, timestamps = %s",
        path,
        audio.n_samples,
        audio.duration,
        config.language,
        config.translate,
        config.token_timestamps,
    )

    def notify(batch: Sequence[Segment]) -> None:
        request.listener(batch, audio)

    listener = None
    if request.trace:
        listener = _trace_listener
    elif request.listener is not None:
        listener = notify

    segments = orchestrator.run(
        audio.mono, config, token=request.token, listener=listener
    )

    return assemble_result(
        segments,
        end_of_text_id=engine.end_of_text_id,
        config=config,
        audio=audio if request.diarize else None,
        source=path,
        warnings=warnings,
    )


def _trace_listener(batch: Sequence[Segment]) -> None:
    for seg in batch:
        logger.info("[%s --> %s]  %s", to_timestamp(seg.t0), to_timestamp(seg.t1), seg.text)


def transcribe_files(
    engine: RecognitionEngine,
    paths: Sequence[Path | str],
    request: TranscriptionRequest | None = None,
) -> list[TranscriptResult]:
    """Transcribe several files in order, stopping at the first failure.

    Raises:
        NoInputError: If ``paths`` is empty
    """
    if not paths:
        raise NoInputError("no input files specified")

    request = request or TranscriptionRequest()
    return [transcribe_file(engine, path, request) for path in paths]
