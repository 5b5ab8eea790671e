"""Tests for the Faster Whisper engine and the async transcriber."""

import asyncio
import math
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from tokenizers import Tokenizer
from tokenizers.models import WordLevel
from tokenizers.pre_tokenizers import Whitespace

from conftest import FakeEngine
from transcription_app.assembler import assemble_result
from transcription_app.engine import EngineError, RecognitionConfig
from transcription_app.orchestrator import TranscriptionRequest
from transcription_app.transcriber import FasterWhisperEngine, Transcriber

EOT = 50257


def _mock_segment(start, end, text, tokens, avg_logprob=-0.1, words=None):
    seg = MagicMock()
    seg.start = start
    seg.end = end
    seg.text = text
    seg.tokens = tokens
    seg.avg_logprob = avg_logprob
    seg.words = words
    return seg


def _mock_word(start, end, word, probability):
    w = MagicMock()
    w.start = start
    w.end = end
    w.word = word
    w.probability = probability
    return w


@pytest.fixture
def mock_model():
    """Patch WhisperModel with a mock exposing tokenizer and language info."""
    with patch("faster_whisper.WhisperModel") as mock_model_class:
        instance = MagicMock()
        mock_model_class.return_value = instance

        instance.hf_tokenizer.token_to_id.side_effect = lambda tok: {
            "<|endoftext|>": EOT,
            "<|en|>": 50259,
            "<|zh|>": 50260,
            "<|de|>": 50261,
        }.get(tok)
        instance.hf_tokenizer.decode.side_effect = lambda ids: f"<{ids[0]}>"
        instance.hf_tokenizer.encode.return_value.ids = [77, 78]
        instance.model.is_multilingual = True
        instance.supported_languages = ["en", "de", "fr"]

        info = MagicMock()
        info.language = "en"
        info.language_probability = 0.99
        instance.transcribe.return_value = (
            iter(
                [
                    _mock_segment(0.0, 1.5, " Hello.", [123, 456]),
                    _mock_segment(1.5, 2.25, " Bye.", [789]),
                ]
            ),
            info,
        )
        yield mock_model_class


def _always():
    return True


class TestFasterWhisperEngineInit:
    """Tests for engine initialization and lazy loading."""

    def test_init_default_params(self):
        engine = FasterWhisperEngine()
        assert engine.model_name == "base.en"
        assert engine.device == "cpu"
        assert engine.compute_type == "int8"
        assert engine.beam_size == 5
        assert 1 <= engine.n_threads <= 4
        assert engine._model is None

    def test_model_loaded_once(self, mock_model):
        engine = FasterWhisperEngine(model_name="small", n_threads=2)
        assert engine.model is engine.model
        mock_model.assert_called_once_with(
            "small",
            device="cpu",
            compute_type="int8",
            cpu_threads=2,
            num_workers=1,
            download_root=None,
        )

    def test_one_model_worker_per_processor(self, mock_model):
        engine = FasterWhisperEngine(n_processors=3)
        engine.model

        _, kwargs = mock_model.call_args
        assert kwargs["num_workers"] == 3

    def test_model_load_failure(self):
        with patch("faster_whisper.WhisperModel") as mock_model_class:
            mock_model_class.side_effect = RuntimeError("Model download failed")
            engine = FasterWhisperEngine()
            with pytest.raises(EngineError, match="Failed to load Whisper model"):
                engine.model


class TestFasterWhisperEngineCapabilities:
    """Tests for tokenizer and language lookups."""

    def test_end_of_text_id(self, mock_model):
        assert FasterWhisperEngine().end_of_text_id == EOT

    def test_is_multilingual(self, mock_model):
        assert FasterWhisperEngine().is_multilingual is True

    def test_language_id(self, mock_model):
        engine = FasterWhisperEngine()
        assert engine.language_id("en") == 0
        assert engine.language_id("de") == 2
        assert engine.language_id("xx") == -1

    def test_language_id_ignores_control_tokens(self, mock_model):
        mock_model.return_value.hf_tokenizer.token_to_id.side_effect = lambda tok: 50358
        assert FasterWhisperEngine().language_id("translate") == -1
        assert FasterWhisperEngine().language_id("") == -1


class TestFasterWhisperEngineDecode:
    """Tests for converting model output into segments."""

    def test_segments_in_centiseconds(self, mock_model):
        engine = FasterWhisperEngine()
        segments = list(engine.decode(np.zeros(16000), RecognitionConfig(), should_continue=_always))

        assert [(s.t0, s.t1) for s in segments] == [(0, 150), (150, 225)]
        assert [s.index for s in segments] == [0, 1]
        assert segments[0].text == " Hello."

    def test_vocabulary_tokens(self, mock_model):
        engine = FasterWhisperEngine()
        first = next(engine.decode(np.zeros(16000), RecognitionConfig(), should_continue=_always))

        assert [t.id for t in first.tokens] == [123, 456]
        assert [t.text for t in first.tokens] == ["<123>", "<456>"]
        assert first.tokens[0].probability == pytest.approx(math.exp(-0.1))
        assert first.tokens[0].t0 is None

    def test_word_tokens_with_timestamps(self, mock_model):
        words = [_mock_word(0.12, 0.6, " Hello.", 0.93)]
        info = MagicMock(language="en", language_probability=1.0)
        mock_model.return_value.transcribe.return_value = (
            iter([_mock_segment(0.0, 1.5, " Hello.", [123], words=words)]),
            info,
        )
        engine = FasterWhisperEngine()
        config = RecognitionConfig(token_timestamps=True)

        (segment,) = engine.decode(np.zeros(16000), config, should_continue=_always)

        (token,) = segment.tokens
        assert token.id == 123
        assert token.text == "<123>"
        assert token.probability == pytest.approx(0.93)
        assert (token.t0, token.t1) == (12, 60)

    def test_decode_options(self, mock_model):
        engine = FasterWhisperEngine()
        config = RecognitionConfig(language="de", translate=True, token_timestamps=True, beam_size=2)
        list(engine.decode(np.zeros(160), config, should_continue=_always))

        _, kwargs = mock_model.return_value.transcribe.call_args
        assert kwargs["language"] == "de"
        assert kwargs["task"] == "translate"
        assert kwargs["beam_size"] == 2
        assert kwargs["word_timestamps"] is True
        assert kwargs["condition_on_previous_text"] is True

    def test_word_detail_requested_without_token_timestamps(self, mock_model):
        engine = FasterWhisperEngine()
        list(engine.decode(np.zeros(160), RecognitionConfig(), should_continue=_always))

        _, kwargs = mock_model.return_value.transcribe.call_args
        assert kwargs["word_timestamps"] is True

    def test_per_token_probability_from_words(self, mock_model):
        tokenizer = mock_model.return_value.hf_tokenizer
        tokenizer.encode.side_effect = lambda text, add_special_tokens=False: MagicMock(ids=[0])
        words = [_mock_word(0.0, 0.5, " Hello", 0.9), _mock_word(0.5, 1.0, " world", 0.4)]
        mock_model.return_value.transcribe.return_value = (
            iter([_mock_segment(0.0, 1.0, " Hello world", [11, 12, 13], words=words)]),
            MagicMock(language="en", language_probability=1.0),
        )
        engine = FasterWhisperEngine()

        (segment,) = engine.decode(np.zeros(16000), RecognitionConfig(), should_continue=_always)

        assert [t.probability for t in segment.tokens] == pytest.approx([0.9, 0.4, 0.4])
        assert all(t.t0 is None and t.t1 is None for t in segment.tokens)

    def test_abort_hook_stops_decoding(self, mock_model):
        engine = FasterWhisperEngine()
        calls = iter([True, True, False])

        segments = list(
            engine.decode(np.zeros(16000), RecognitionConfig(), should_continue=lambda: next(calls))
        )

        assert len(segments) == 1

    def test_decode_failure_wrapped(self, mock_model):
        mock_model.return_value.transcribe.side_effect = RuntimeError("CUDA out of memory")
        engine = FasterWhisperEngine()
        with pytest.raises(EngineError, match="CUDA out of memory"):
            list(engine.decode(np.zeros(16000), RecognitionConfig(), should_continue=_always))


@pytest.fixture
def word_level_tokenizer():
    """Small real tokenizer whose end-of-text token is registered as special."""
    vocab = {"hello": 0, "world": 1, "<|endoftext|>": 2, "<|en|>": 3, "[UNK]": 4}
    tokenizer = Tokenizer(WordLevel(vocab, unk_token="[UNK]"))
    tokenizer.pre_tokenizer = Whitespace()
    tokenizer.add_special_tokens(["<|endoftext|>", "<|en|>"])
    return tokenizer


class TestFasterWhisperEngineSpecialTokens:
    """Tests for control-token text with a real tokenizer."""

    def _decode(self, mock_model, tokenizer, config):
        mock_model.return_value.hf_tokenizer = tokenizer
        words = [_mock_word(0.0, 0.4, " hello", 0.8), _mock_word(0.4, 0.9, " world", 0.6)]
        mock_model.return_value.transcribe.return_value = (
            iter([_mock_segment(0.0, 1.0, " hello world", [0, 1, 2], words=words)]),
            MagicMock(language="en", language_probability=1.0),
        )
        engine = FasterWhisperEngine()
        segments = list(engine.decode(np.zeros(16000), config, should_continue=_always))
        return engine, segments

    def test_control_token_keeps_its_text(self, mock_model, word_level_tokenizer):
        _, (segment,) = self._decode(mock_model, word_level_tokenizer, RecognitionConfig())

        assert [t.text for t in segment.tokens] == ["hello", "world", "<|endoftext|>"]
        assert [t.probability for t in segment.tokens[:2]] == pytest.approx([0.8, 0.6])

    def test_control_token_in_exported_table(self, mock_model, word_level_tokenizer):
        config = RecognitionConfig(print_special=True, token_timestamps=True)
        engine, segments = self._decode(mock_model, word_level_tokenizer, config)

        result = assemble_result(segments, end_of_text_id=engine.end_of_text_id, config=config)

        assert [(t.token, t.start) for t in result.tokens] == [
            ("hello", "00:00:00.000"),
            ("world", "00:00:00.400"),
            ("<|endoftext|>", "00:00:01.000"),
        ]

    def test_control_token_hidden_by_default(self, mock_model, word_level_tokenizer):
        config = RecognitionConfig()
        engine, segments = self._decode(mock_model, word_level_tokenizer, config)

        result = assemble_result(segments, end_of_text_id=engine.end_of_text_id, config=config)

        assert [t.token for t in result.tokens] == ["hello", "world"]


class TestTranscriber:
    """Tests for the async facade."""

    def test_executor_ownership(self):
        transcriber = Transcriber(FakeEngine())
        assert transcriber._executor_owned is True

        executor = ThreadPoolExecutor(max_workers=1)
        transcriber = Transcriber(FakeEngine(), executor=executor)
        assert transcriber._executor_owned is False
        executor.shutdown()

    @pytest.mark.asyncio
    async def test_transcribe(self, silent_wav):
        transcriber = Transcriber(FakeEngine())
        try:
            result = await transcriber.transcribe(silent_wav)
            assert result.n_segments == 2
        finally:
            await transcriber.shutdown()

    @pytest.mark.asyncio
    async def test_timeout_cancels_request(self, write_wav):
        path = write_wav("long.wav", np.zeros(16000 * 20, dtype=np.int16))
        transcriber = Transcriber(FakeEngine(delay=0.05))
        request = TranscriptionRequest()
        try:
            with pytest.raises(EngineError, match="timed out"):
                await transcriber.transcribe(path, request, timeout=0.1)
            assert request.token.is_cancelled()
        finally:
            await transcriber.shutdown()

    @pytest.mark.asyncio
    async def test_validation_error_propagates(self, stereo_wav):
        from transcription_app.audio import DiarizationInputError

        transcriber = Transcriber(FakeEngine())
        request = TranscriptionRequest(diarize=True, no_timestamps=True)
        try:
            with pytest.raises(DiarizationInputError):
                await transcriber.transcribe(stereo_wav, request)
        finally:
            await transcriber.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_requests_use_own_tokens(self, silent_wav):
        transcriber = Transcriber(FakeEngine(), executor=ThreadPoolExecutor(max_workers=2))
        first, second = TranscriptionRequest(), TranscriptionRequest()

        results = await asyncio.gather(
            transcriber.transcribe(silent_wav, first),
            transcriber.transcribe(silent_wav, second),
        )

        assert [r.n_segments for r in results] == [2, 2]
        assert first.token is not second.token
        transcriber.executor.shutdown()
