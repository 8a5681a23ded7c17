#!/usr/bin/env python3
"""
AudioJournal v1.0.0: command-line entry point.

    main.py chunk <audio>                      split a recording for a transcription backend
    main.py process <audio>                    chunk, transcribe, reassemble and summarize
    main.py summarize <transcript.txt>         summarize a transcript file
    main.py health                             engine health report
    main.py engines                            list engines and their availability

Every command prints JSON on stdout.
"""

import argparse
import json
import logging
import shutil
import sys
import traceback
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from audio_journal.core.constants import (
    APP_NAME, APP_VERSION, APP_LOG_DIR, STORE_PATH, ErrorCode, TranscriptionBackendKind,
)
from audio_journal.core.config import AppConfig
from audio_journal.core.error_codes import JobError, recovery_suggestion

logger = logging.getLogger(APP_NAME)


def setup_logging(verbose: bool = False):
    """File log under the user cache directory plus stderr."""
    APP_LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(APP_LOG_DIR / "app.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


def check_prerequisites():
    """ffmpeg and ffprobe are needed for any command that touches audio."""
    missing = [tool for tool in ("ffmpeg", "ffprobe") if not shutil.which(tool)]
    if missing:
        raise JobError(ErrorCode.CONFIGURATION_MISSING,
                       f"Missing required tools: {', '.join(missing)} (install ffmpeg)")
    logger.info("ffmpeg found at: %s", shutil.which("ffmpeg"))


def emit(data):
    print(json.dumps(data, indent=2, default=str))


# ── Wiring ────────────────────────────────────────────────────────────

def build_services(config: AppConfig):
    from audio_journal.core.event_bus import EventBus
    from audio_journal.core.store import SqliteBlobStore, SummaryStore
    from audio_journal.core.engine_registry import EngineRegistry
    from audio_journal.core.orchestrator import SummarizationOrchestrator

    bus = EventBus()
    store = SqliteBlobStore(STORE_PATH)
    registry = EngineRegistry(store, config=config, bus=bus)
    registry.initialize()
    orchestrator = SummarizationOrchestrator(registry, SummaryStore(store), store, config=config, bus=bus)
    return bus, store, registry, orchestrator


def build_transcription_backend(config: AppConfig):
    """Local Whisper server when configured, else the hosted API."""
    from audio_journal.core.backends import WhisperHttpBackend

    whisper_url = config.get('whisper_url', '')
    if whisper_url:
        return WhisperHttpBackend(whisper_url), TranscriptionBackendKind.WHISPER
    if config.openai_api_key:
        backend = WhisperHttpBackend(config.get('openai_base_url'), api_key=config.openai_api_key)
        return backend, TranscriptionBackendKind.OPENAI
    raise JobError(ErrorCode.CONFIGURATION_MISSING,
                   "No transcription backend configured (set whisper_url or an OpenAI API key)")


# ── Commands ──────────────────────────────────────────────────────────

def cmd_chunk(args, config: AppConfig):
    from audio_journal.core.chunk_export import AudioChunker
    from audio_journal.core.chunk_planner import limit_for_backend

    check_prerequisites()
    limit = limit_for_backend(args.backend, config.chunk_overlap_sec)
    result = AudioChunker().chunk_file(Path(args.audio), limit, export_timeout=config.export_timeout_sec)
    emit({
        "was_chunked": result.was_chunked,
        "total_duration": result.total_duration,
        "total_size": result.total_size,
        "temp_dir": str(result.temp_dir) if result.temp_dir else None,
        "chunks": [
            {"sequence": c.sequence_number, "path": str(c.chunk_ref),
             "start": c.start_time, "end": c.end_time, "bytes": c.byte_size}
            for c in result.chunks
        ],
    })


def cmd_process(args, config: AppConfig):
    from audio_journal.core.chunk_export import AudioChunker
    from audio_journal.core.pipeline import RecordingPipeline

    check_prerequisites()
    bus, store, registry, orchestrator = build_services(config)
    try:
        if args.engine:
            registry.set_engine(args.engine)
        backend, kind = build_transcription_backend(config)
        pipeline = RecordingPipeline(AudioChunker(), backend, kind, orchestrator, config=config, bus=bus)
        audio = Path(args.audio)
        report = pipeline.process(audio, args.recording_id or audio.stem, args.name or "",
                                  timeout=args.timeout)
        emit(asdict(report))
    finally:
        orchestrator.close()
        store.close()


def cmd_summarize(args, config: AppConfig):
    bus, store, registry, orchestrator = build_services(config)
    try:
        if args.engine:
            registry.set_engine(args.engine)
        path = Path(args.transcript)
        text = path.read_text(encoding="utf-8")
        outcome = orchestrator.summarize(text, args.recording_id or path.stem, args.name or "")
        emit({
            "summary": outcome.summary.to_dict(),
            "quality": asdict(outcome.quality),
            "metrics": {
                "word_count": outcome.summary.word_count,
                "compression_ratio": round(outcome.summary.compression_ratio, 3),
                "quality_description": outcome.summary.quality_description,
            },
            "fallback_used": outcome.fallback_used,
            "failure": outcome.failure.to_dict() if outcome.failure else None,
            "recovery_actions": [a.value for a in outcome.recovery_actions],
        })
    finally:
        orchestrator.close()
        store.close()


def cmd_health(args, config: AppConfig):
    _bus, store, registry, orchestrator = build_services(config)
    try:
        emit(asdict(registry.health_report()))
    finally:
        orchestrator.close()
        store.close()


def cmd_engines(args, config: AppConfig):
    _bus, store, registry, orchestrator = build_services(config)
    try:
        emit({
            "current": registry.current.value,
            "engines": [asdict(d) for d in registry.descriptors()],
        })
    finally:
        orchestrator.close()
        store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="audio-journal", description="AudioJournal core tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--config", type=Path, default=None, help="config file path")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("chunk", help="split a recording into transcription-sized chunks")
    p.add_argument("audio")
    p.add_argument("--backend", default=TranscriptionBackendKind.WHISPER,
                   choices=[TranscriptionBackendKind.OPENAI, TranscriptionBackendKind.WHISPER,
                            TranscriptionBackendKind.CLOUD_JOB, TranscriptionBackendKind.ON_DEVICE])
    p.set_defaults(func=cmd_chunk)

    p = sub.add_parser("process", help="transcribe and summarize a recording")
    p.add_argument("audio")
    p.add_argument("--engine", default=None)
    p.add_argument("--recording-id", default=None)
    p.add_argument("--name", default=None)
    p.add_argument("--timeout", type=float, default=None, help="whole-pipeline time limit in seconds")
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("summarize", help="summarize a transcript text file")
    p.add_argument("transcript")
    p.add_argument("--engine", default=None)
    p.add_argument("--recording-id", default=None)
    p.add_argument("--name", default=None)
    p.set_defaults(func=cmd_summarize)

    sub.add_parser("health", help="engine health report").set_defaults(func=cmd_health)
    sub.add_parser("engines", help="list engines").set_defaults(func=cmd_engines)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    logger.info("%s v%s starting at %s (%s)", APP_NAME, APP_VERSION, datetime.now().isoformat(), args.command)

    config = AppConfig(args.config) if args.config else AppConfig()
    try:
        args.func(args, config)
    except JobError as e:
        logger.error("%s failed: %s", args.command, e)
        emit({"error": e.code, "message": e.message, "suggestion": recovery_suggestion(e.code)})
        return 1
    except Exception as e:
        logger.critical("Fatal error: %s\n%s", f"{type(e).__name__}: {e}", traceback.format_exc())
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
