"""Audio transcription via Faster Whisper."""

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np

from transcription_app._types import Segment, Token, TranscriptResult
from transcription_app.engine import (
    EngineError,
    RecognitionConfig,
    default_thread_count,
)
from transcription_app.orchestrator import TranscriptionRequest, transcribe_file
from transcription_app.timestamps import seconds_to_centiseconds

logger = logging.getLogger(__name__)

_EOT_TOKEN = "<|endoftext|>"
_FIRST_LANGUAGE_TOKEN = "<|en|>"
_NO_TIMESTAMPS_TOKEN = "<|notimestamps|>"


class FasterWhisperEngine:
    """Recognition engine backed by a Faster Whisper model.

    Lazy-loads the model on first use to avoid startup overhead. The loaded
    model is shared read-only by every worker that decodes with it.
    """

    def __init__(
        self,
        model_name: str = "base.en",
        device: str = "cpu",
        compute_type: str = "int8",
        model_directory: str | None = None,
        beam_size: int = 5,
        n_threads: int | None = None,
        n_processors: int = 1,
    ):
        """Initialize engine.

        Args:
            model_name: Faster Whisper model name (tiny, base.en, small, etc.)
            device: Device to run on (cpu, cuda, auto)
            compute_type: Compute precision (int8, float16, float32)
            model_directory: Custom cache directory for model weights
            beam_size: Beam search width for decoding
            n_threads: CPU threads per worker (defaults to min(4, cpu_count))
            n_processors: Model workers, one per concurrent decode call
        """
        self.model_name = model_name
        self.device = device
        self.compute_type = compute_type
        self.model_directory = model_directory
        self.beam_size = beam_size
        self.n_threads = n_threads or default_thread_count()
        self.n_processors = max(1, n_processors)
        self._model = None
        self._model_lock = threading.Lock()
        logger.info(
            "FasterWhisperEngine initialized: model=%s, device=%s, compute_type=%s, beam_size=%d",
            model_name,
            device,
            compute_type,
            beam_size,
        )

    @property
    def model(self):
        """The loaded WhisperModel, loading it on first access.

        Raises:
            EngineError: If model fails to load
        """
        with self._model_lock:
            if self._model is None:
                self._model = self._load_model()
            return self._model

    def _load_model(self):
        logger.info(
            "Loading Faster Whisper model: %s (device=%s, compute_type=%s)",
            self.model_name,
            self.device,
            self.compute_type,
        )
        try:
            from faster_whisper import WhisperModel

            start_time = time.perf_counter()
            model = WhisperModel(
                self.model_name,
                device=self.device,
                compute_type=self.compute_type,
                cpu_threads=self.n_threads,
                num_workers=self.n_processors,
                download_root=self.model_directory,
            )
            duration = time.perf_counter() - start_time
            logger.info("Model loaded successfully in %.2f seconds", duration)
            return model
        except Exception as e:
            logger.error(
                "Failed to load model %s on device %s: %s",
                self.model_name,
                self.device,
                e,
            )
            raise EngineError(
                f"Failed to load Whisper model '{self.model_name}' on device "
                f"'{self.device}' with compute_type '{self.compute_type}': {e}"
            ) from e

    @property
    def end_of_text_id(self) -> int:
        return self.model.hf_tokenizer.token_to_id(_EOT_TOKEN)

    @property
    def is_multilingual(self) -> bool:
        return bool(self.model.model.is_multilingual)

    def supported_languages(self) -> list[str]:
        return list(self.model.supported_languages)

    def language_id(self, code: str) -> int:
        # Language tokens follow <|en|> contiguously, also in English-only vocabularies.
        # Control tokens such as <|translate|> share the syntax but not the length.
        if not code or len(code) > 3:
            return -1
        tokenizer = self.model.hf_tokenizer
        token_id = tokenizer.token_to_id(f"<|{code}|>")
        if token_id is None:
            return -1
        return token_id - tokenizer.token_to_id(_FIRST_LANGUAGE_TOKEN)

    def configure(self, config: RecognitionConfig) -> RecognitionConfig:
        if config.max_len > 0 or config.speed_up:
            logger.debug(
                "max_len=%d and speed_up=%s are not supported by faster-whisper, ignoring",
                config.max_len,
                config.speed_up,
            )
        return config

    def _decode_options(self, config: RecognitionConfig) -> dict:
        return {
            "language": config.language,
            "task": config.task,
            "beam_size": config.beam_size or self.beam_size,
            # Word detail carries the per-token confidence, so it is always requested.
            "word_timestamps": True,
            "condition_on_previous_text": config.max_context != 0,
        }

    def decode(
        self,
        samples: np.ndarray,
        config: RecognitionConfig,
        *,
        should_continue: Callable[[], bool],
    ) -> Iterator[Segment]:
        model = self.model
        if not should_continue():
            return

        try:
            segments, info = model.transcribe(
                samples.astype(np.float32, copy=False),
                **self._decode_options(config),
            )
            logger.debug(
                "Decoding %d samples (language=%s, probability=%.2f)",
                len(samples),
                info.language,
                info.language_probability,
            )

            index = 0
            # Segments are produced lazily; each pull runs the encoder.
            while should_continue():
                try:
                    seg = next(segments)
                except StopIteration:
                    break
                yield self._convert_segment(model, index, seg, config)
                index += 1
        except EngineError:
            raise
        except Exception as e:
            logger.error("Faster Whisper decode failed: %s", e, exc_info=True)
            raise EngineError(f"failed to process audio: {e}") from e

    def _convert_segment(self, model, index: int, seg, config: RecognitionConfig) -> Segment:
        tokenizer = model.hf_tokenizer
        end_of_text = tokenizer.token_to_id(_EOT_TOKEN)
        t0 = seconds_to_centiseconds(seg.start)
        t1 = seconds_to_centiseconds(seg.end)
        segment_probability = math.exp(seg.avg_logprob) if seg.avg_logprob is not None else 0.0

        text_ids = [int(token_id) for token_id in seg.tokens if token_id < end_of_text]
        words = iter(_align_words(tokenizer, text_ids, seg.words or ()))

        tokens = []
        seen_text = False
        for token_id in seg.tokens:
            token_id = int(token_id)
            if token_id >= end_of_text:
                # Control tokens mark a segment edge: its start before any text, else its end.
                edge = t1 if seen_text else t0
                tokens.append(
                    Token(
                        id=token_id,
                        text=_special_token_text(tokenizer, token_id),
                        probability=segment_probability,
                        t0=edge if config.token_timestamps else None,
                        t1=edge if config.token_timestamps else None,
                    )
                )
                continue

            seen_text = True
            word = next(words)
            timed = config.token_timestamps and word is not None
            tokens.append(
                Token(
                    id=token_id,
                    text=tokenizer.decode([token_id]),
                    probability=float(word.probability) if word is not None else segment_probability,
                    t0=seconds_to_centiseconds(word.start) if timed else None,
                    t1=seconds_to_centiseconds(word.end) if timed else None,
                )
            )

        return Segment(
            index=index,
            t0=t0,
            t1=t1,
            text=seg.text,
            tokens=tuple(tokens),
        )


def _align_words(tokenizer, text_ids: list[int], words) -> list:
    """Map each text token to the word it belongs to, or None without word detail.

    Words are tokenized again to count their tokens; any tokens left over
    belong to the last word.
    """
    aligned = []
    for word in words:
        n = len(tokenizer.encode(word.word, add_special_tokens=False).ids)
        aligned.extend([word] * max(1, n))

    missing = len(text_ids) - len(aligned)
    if missing > 0:
        aligned.extend([aligned[-1] if aligned else None] * missing)
    return aligned[: len(text_ids)]


def _special_token_text(tokenizer, token_id: int) -> str:
    text = tokenizer.id_to_token(token_id)
    if text is not None:
        return text

    # Timestamp tokens are not part of every vocabulary file.
    no_timestamps = tokenizer.token_to_id(_NO_TIMESTAMPS_TOKEN)
    if no_timestamps is not None and token_id > no_timestamps:
        return "<|%.2f|>" % ((token_id - no_timestamps - 1) * 0.02)
    return tokenizer.decode([token_id], skip_special_tokens=False)


class Transcriber:
    """Async facade running the blocking transcription pipeline in an executor."""

    def __init__(
        self,
        engine: FasterWhisperEngine,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.engine = engine
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._executor_owned = executor is None

    async def transcribe(
        self,
        audio_path: Path,
        request: TranscriptionRequest | None = None,
        timeout: float | None = None,
    ) -> TranscriptResult:
        """Transcribe an audio file without blocking the event loop.

        The request's cancellation token is cancelled when the timeout
        expires or the awaiting task is cancelled, so workers stop at the
        next encoder step.

        Raises:
            AudioValidationError: If the input file is rejected
            EngineError: If transcription fails or times out
        """
        audio_path = Path(audio_path)
        request = request or TranscriptionRequest()

        logger.info("Starting transcription of %s (language=%s)", audio_path, request.language)

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(
            self.executor, transcribe_file, self.engine, audio_path, request
        )
        try:
            result = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as e:
            request.token.cancel()
            logger.error("Transcription timed out after %.1f seconds", timeout)
            raise EngineError(f"Transcription timed out after {timeout} seconds") from e
        except asyncio.CancelledError:
            request.token.cancel()
            raise

        logger.info("Transcription completed: %d segments", result.n_segments)
        return result

    async def shutdown(self) -> None:
        """Stop the executor if owned by this instance."""
        logger.info("Transcriber shutting down")
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=True)
            logger.debug("Executor shut down")
