"""Typer CLI entrypoint for transcription-app."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import typer

from transcription_app._types import TranscriptResult
from transcription_app.audio import AudioValidationError
from transcription_app.config import DEFAULT_MODEL, Config, ConfigError, load_config
from transcription_app.display import SegmentPrinter, TerminalSink
from transcription_app.engine import EngineError, UnknownLanguageError
from transcription_app.orchestrator import NoInputError, TranscriptionRequest
from transcription_app.transcriber import FasterWhisperEngine, Transcriber
from transcription_app.writers import get_default_writer, get_writer

app = typer.Typer(help="Transcribe 16 kHz WAV recordings via Faster Whisper")

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _merge_config_overrides(
    cfg: Config,
    *,
    model: str | None = None,
    language: str | None = None,
    translate: bool = False,
    token_timestamps: bool = False,
    print_special: bool = False,
    diarize: bool = False,
    no_timestamps: bool = False,
    colors: bool = False,
    trace: bool = False,
    offset: int | None = None,
    duration: int | None = None,
    threads: int | None = None,
    processors: int | None = None,
    output_format: str | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values. Flags can only
    switch a setting on.
    """
    if model is not None:
        logger.debug("Overriding model to '%s'", model)
        cfg.model.name = model

    tcfg = cfg.transcription
    if language is not None:
        tcfg.language = language
    if offset is not None:
        tcfg.offset_ms = offset
    if duration is not None:
        tcfg.duration_ms = duration
    tcfg.translate = tcfg.translate or translate
    tcfg.token_timestamps = tcfg.token_timestamps or token_timestamps
    tcfg.print_special = tcfg.print_special or print_special
    tcfg.diarize = tcfg.diarize or diarize
    tcfg.no_timestamps = tcfg.no_timestamps or no_timestamps

    if threads is not None:
        cfg.processing.n_threads = threads
    if processors is not None:
        cfg.processing.n_processors = processors

    cfg.output.print_colors = cfg.output.print_colors or colors
    cfg.output.trace = cfg.output.trace or trace
    if output_format is not None:
        cfg.output.format = output_format

    return cfg


def _build_request(cfg: Config, listener=None) -> TranscriptionRequest:
    tcfg = cfg.transcription
    return TranscriptionRequest(
        language=tcfg.language,
        translate=tcfg.translate,
        token_timestamps=tcfg.token_timestamps,
        print_special=tcfg.print_special,
        offset_ms=tcfg.offset_ms,
        duration_ms=tcfg.duration_ms,
        trace=cfg.output.trace,
        n_threads=cfg.processing.n_threads,
        n_processors=cfg.processing.n_processors,
        diarize=tcfg.diarize,
        no_timestamps=tcfg.no_timestamps,
        max_context=tcfg.max_context,
        max_len=tcfg.max_len,
        word_threshold=tcfg.word_threshold,
        speed_up=tcfg.speed_up,
        beam_size=cfg.model.beam_size,
        listener=listener,
    )


async def _transcribe_all(
    transcriber: Transcriber,
    paths: list[Path],
    request: TranscriptionRequest,
    timeout: float | None,
) -> list[TranscriptResult]:
    if not paths:
        raise NoInputError("no input files specified")

    try:
        return [
            await transcriber.transcribe(path, request, timeout=timeout)
            for path in paths
        ]
    finally:
        await transcriber.shutdown()


def _write_results(results: list[TranscriptResult], output: Path | None, output_format: str | None) -> None:
    writer = get_writer(output_format) if output_format else get_default_writer(output)
    if writer is None:
        raise ConfigError(f"Unknown output format '{output_format}'")

    if output is None:
        for result in results:
            writer.write(sys.stdout, result)
        return

    with open(output, "w", encoding="utf-8") as f:
        for result in results:
            writer.write(f, result)
    logger.info("Transcript written to %s", output)


@app.command()
def transcribe(
    audio: list[Path] = typer.Argument(None, help="16 kHz 16-bit WAV file(s)"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Override model (tiny.en, base, small, ...)"
    ),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Spoken language code"
    ),
    translate: bool = typer.Option(
        False, "--translate", help="Translate to English"
    ),
    token_timestamps: bool = typer.Option(
        False, "--token-timestamps", help="Add per-token start/end times"
    ),
    print_special: bool = typer.Option(
        False, "--print-special", help="Keep special tokens in the output"
    ),
    diarize: bool = typer.Option(
        False, "--diarize", help="Label speakers of stereo input by channel energy"
    ),
    no_timestamps: bool = typer.Option(
        False, "--no-timestamps", help="Print live text without timestamps"
    ),
    colors: bool = typer.Option(
        False, "--colors", help="Color live tokens by confidence"
    ),
    trace: bool = typer.Option(
        False, "--trace", help="Log each segment as it is decoded"
    ),
    offset: int | None = typer.Option(
        None, "--offset", help="Start offset in milliseconds"
    ),
    duration: int | None = typer.Option(
        None, "--duration", help="Duration to process in milliseconds"
    ),
    threads: int | None = typer.Option(
        None, "--threads", "-t", help="Threads per worker"
    ),
    processors: int | None = typer.Option(
        None, "--processors", "-p", help="Parallel workers over audio chunks"
    ),
    output_format: str | None = typer.Option(
        None, "--to", help="Output format (txt, vtt, srt, json, tsv)"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="File to write the transcript to"
    ),
    live: bool = typer.Option(
        True, "--live/--quiet", help="Print segments to stderr as they are decoded"
    ),
) -> None:
    """Transcribe WAV recordings."""
    _setup_logging(verbose)
    request = None
    try:
        cfg = load_config(config)
        cfg = _merge_config_overrides(
            cfg,
            model=model,
            language=language,
            translate=translate,
            token_timestamps=token_timestamps,
            print_special=print_special,
            diarize=diarize,
            no_timestamps=no_timestamps,
            colors=colors,
            trace=trace,
            offset=offset,
            duration=duration,
            threads=threads,
            processors=processors,
            output_format=output_format,
        )
        cfg.validate()
        logger.debug("Config: %s", cfg)

        engine = FasterWhisperEngine(
            model_name=cfg.model.name,
            device=cfg.model.device,
            compute_type=cfg.model.compute_type,
            model_directory=cfg.model.model_directory,
            beam_size=cfg.model.beam_size,
            n_threads=cfg.processing.n_threads,
            n_processors=cfg.processing.n_processors,
        )

        listener = None
        if live and audio:
            listener = SegmentPrinter(
                TerminalSink(err=True),
                end_of_text_id=engine.end_of_text_id,
                print_special=cfg.transcription.print_special,
                print_colors=cfg.output.print_colors,
                no_timestamps=cfg.transcription.no_timestamps,
            )

        request = _build_request(cfg, listener)
        results = asyncio.run(
            _transcribe_all(
                Transcriber(engine), list(audio or []), request, cfg.processing.timeout
            )
        )

        _write_results(results, output, cfg.output.format)

    except (ConfigError, NoInputError, UnknownLanguageError) as e:
        logger.error("Invalid request: %s", e)
        raise typer.Exit(1)
    except AudioValidationError as e:
        logger.error("Invalid audio input: %s", e)
        raise typer.Exit(1)
    except EngineError as e:
        logger.error("Transcription failed: %s", e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        if request is not None:
            request.token.cancel()
        logger.info("Transcription interrupted by user")
        raise typer.Exit(EXIT_INTERRUPTED)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        raise typer.Exit(1)


@app.command()
def languages(
    model: str = typer.Option(DEFAULT_MODEL, "--model", "-m", help="Model to query"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of a list"
    ),
) -> None:
    """List language codes supported by a model."""
    _setup_logging(verbose)
    try:
        engine = FasterWhisperEngine(model_name=model)
        codes = engine.supported_languages()
        if json_output:
            typer.echo(json.dumps(codes, indent=2))
        else:
            typer.echo(f"Languages supported by {model}:")
            for code in codes:
                typer.echo(f"  {code}")
    except EngineError as e:
        logger.error("Error loading model: %s", e)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
