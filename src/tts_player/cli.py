"""
Command-Line Interface for tts-player.

Generates one audio file for text of any length without running the HTTP
server, and shows quota and usage from the local ledger.

Usage Examples:
    # Generate speech
    tts-player --text "Hello there." --out hello.mp3

    # Positional text (same as above)
    tts-player "Hello there." --voice nova --model tts-1

    # Read the text from a file
    tts-player --file article.txt --out article.mp3

    # Dry-run mode (no API calls, shows chunking and cost)
    tts-player --file article.txt --dry-run --json

    # Quota and usage
    tts-player --usage
    tts-player --stats 7
    tts-player --history 20

Exit Codes:
    0  success
    1  generation failed (the error message is printed)
    2  invalid command-line usage

Environment Variables:
    TTS_PLAYER_API_KEY / OPENAI_API_KEY: Upstream API key
    TTS_PLAYER_SETTINGS: Settings file (default config/settings.yaml)
"""

from __future__ import annotations

import argparse
import json
import os
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from tts_player.core.config import ConfigValidationError, Settings, default_settings, load_settings
from tts_player.core.errors import TTSError
from tts_player.core.logging import configure_logging, get_logger, info, set_request_id
from tts_player.services.speech_service import SpeechRequest, SpeechService, new_request_id
from tts_player.tts.chunker import chunk_text, count_characters
from tts_player.usage.tracker import estimate_cost


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tts-player", description="tts-player CLI (chunked text-to-speech)")

    # Input options
    parser.add_argument("text_pos", nargs="?", help="Text to speak (positional)")
    parser.add_argument("--text", "-t", help="Text to speak")
    parser.add_argument("--file", help="Read the text from a file")

    # Generation options
    parser.add_argument("--voice", "-v", help="Voice id (default from settings)")
    parser.add_argument("--model", help="Model id (tts-1, tts-1-hd)")
    parser.add_argument("--out", help="Copy the generated audio to this path")
    parser.add_argument("--config", help="Settings file (default $TTS_PLAYER_SETTINGS or config/settings.yaml)")

    # Execution modes
    parser.add_argument("--dry-run", action="store_true",
                        help="Chunk and summarize without calling the API")
    parser.add_argument("--json", action="store_true",
                        help="Print JSON output")

    # Usage ledger
    parser.add_argument("--usage", action="store_true", help="Show quota and characters used")
    parser.add_argument("--stats", type=int, metavar="DAYS", help="Show usage statistics for the last DAYS days")
    parser.add_argument("--history", type=int, metavar="N", help="Show the last N usage events")

    return parser


def _load_text(parser: argparse.ArgumentParser, args: argparse.Namespace) -> str:
    """
    Resolve the input text from --text, the positional argument or --file.

    Exits with code 2 on missing or conflicting input.
    """
    text = args.text or args.text_pos

    if args.file:
        if text:
            parser.error("use --file without --text or positional text")
        try:
            text = Path(args.file).read_text(encoding="utf-8")
        except OSError as e:
            parser.error(f"cannot read {args.file}: {e}")

    if not text:
        parser.error("provide --text, a positional text or --file")
    return text


def _load_settings(path: Optional[str]) -> Settings:
    path = path or os.getenv("TTS_PLAYER_SETTINGS", "config/settings.yaml")
    if Path(path).exists():
        return load_settings(path)
    return default_settings()


def _emit(payload: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False, default=str))
        return
    for key, value in payload.items():
        print(f"{key}: {value}")


def _dry_run_summary(text: str, settings: Settings, model: Optional[str]) -> Dict[str, Any]:
    config = settings.get_player_config()
    model = model or config.api.default_model
    result = chunk_text(text, max_chars=config.chunking.max_chars)
    characters = count_characters(text)
    return {
        "ok": True,
        "dry_run": True,
        "characters": characters,
        "chunks": len(result.chunks),
        "max_chars": config.chunking.max_chars,
        "chunk_lengths": [c.char_length for c in result.chunks],
        "model": model,
        "estimated_cost_usd": estimate_cost(characters, model),
    }


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 success, 1 generation error, 2 usage error).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.stats is not None and args.stats <= 0:
        parser.error("--stats DAYS must be positive")
    if args.history is not None and args.history <= 0:
        parser.error("--history N must be positive")

    configure_logging()
    log = get_logger("tts-player.cli")
    set_request_id(new_request_id())

    try:
        settings = _load_settings(args.config)
        settings.get_player_config()
    except (ConfigValidationError, OSError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # ─────────────────────────────────────────────────────────────────────────
    # Usage ledger commands (no generation)
    # ─────────────────────────────────────────────────────────────────────────
    if args.usage or args.stats is not None or args.history is not None:
        service = SpeechService(settings)
        try:
            payload: Dict[str, Any] = {"ok": True}
            if args.usage:
                payload["usage"] = service.get_user_info().to_dict()
            if args.stats is not None:
                payload["stats"] = service.get_usage_stats(args.stats).to_dict()
            if args.history is not None:
                payload["history"] = [e.to_dict() for e in service.get_usage_history(limit=args.history)]
            _emit(payload, args.json)
        finally:
            service.close()
        return 0

    text = _load_text(parser, args)

    # ─────────────────────────────────────────────────────────────────────────
    # Dry run: chunk and price without any API call
    # ─────────────────────────────────────────────────────────────────────────
    if args.dry_run:
        payload = _dry_run_summary(text, settings, args.model)
        if args.json:
            print(json.dumps(payload, ensure_ascii=False))
        else:
            info(log, "dry_run", chars=payload["characters"], chunks=payload["chunks"])
            print(payload)
        print("DRY_RUN_OK")
        return 0

    # ─────────────────────────────────────────────────────────────────────────
    # Generation
    # ─────────────────────────────────────────────────────────────────────────
    service = SpeechService(settings)
    try:
        result = service.synthesize(SpeechRequest(text=text, voice_id=args.voice, model=args.model))
        path = result.artifact.path
        if args.out:
            out_path = Path(args.out)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, out_path)
            path = out_path

        payload = {
            "ok": True,
            "path": str(path),
            "request_id": result.request_id,
            "characters": result.characters,
            "chunks": result.artifact.chunk_count,
            "bytes": result.artifact.byte_size,
            "duration_estimate_s": result.artifact.total_duration_estimate_s,
        }
        _emit(payload, args.json)
        return 0

    except TTSError as e:
        if args.json:
            print(json.dumps(e.to_dict(), ensure_ascii=False, default=str))
        else:
            print(f"Error: {e.user_message}", file=sys.stderr)
        return 1

    finally:
        service.close()


if __name__ == "__main__":
    raise SystemExit(main())
