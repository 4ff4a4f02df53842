"""
ai-voice — MCP server that lets agents speak through platform or OpenAI voices.

Usage:
    ai-voice                                  # MCP server over stdio
    ai-voice --transport streamable-http      # MCP server over HTTP (:8000/mcp)
    ai-voice --no-fallback                    # OpenAI failures are not retried locally
    ai-voice --default-config                 # Ignore config files
    ai-voice status                           # Engine availability as JSON
    ai-voice voices [LANG]                    # Installed platform voices
    ai-voice cleanup [--max-age-hours N]      # Delete old OpenAI audio files

In stdio mode stdout carries the MCP protocol, so startup messages go to
stderr and the server log only.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Optional

from .background import BackgroundTasks
from .config import VoiceConfig
from .logging import SERVER_LOG, get_logger, log_context
from .selector import EngineSelector
from .server import create_mcp_server
from .voices import VoiceDirectory, language_name

_log = get_logger("ai-voice.main", SERVER_LOG, json_format=False)

SHUTDOWN_GRACE_SECONDS = 5.0


def _say(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


def _load_config(config_file: Optional[str], default_config: bool) -> VoiceConfig:
    if default_config:
        return VoiceConfig.defaults()
    return VoiceConfig.load(config_file)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config-file", default=None, metavar="PATH",
                        help="Config file (default: $XDG_CONFIG_HOME/ai-voice/config.yml)")
    parser.add_argument("--default-config", action="store_true",
                        help="Use built-in defaults only, ignore config files")


# ─── Subcommands ─────────────────────────────────────────────────

async def _status(config: VoiceConfig) -> dict:
    selector = EngineSelector(config)
    await selector.initialize()
    return {
        "status": selector.get_engine_status().as_dict(),
        "fallback": selector.fallback_enabled,
        "languages": selector.supported_languages(),
        "voices": len(selector.directory.voices),
        "config": config.config_path,
        "warnings": config.validation_warnings,
    }


def _run_status_command(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="ai-voice status",
                                     description="Show engine availability as JSON")
    _add_config_args(parser)
    args = parser.parse_args(argv)
    config = _load_config(args.config_file, args.default_config)
    print(json.dumps(asyncio.run(_status(config)), indent=2))
    return 0


def _run_voices_command(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="ai-voice voices",
                                     description="List installed platform voices, best first")
    parser.add_argument("language", nargs="?", default=None,
                        help="Only voices for this language code (e.g. en, pl)")
    args = parser.parse_args(argv)

    directory = VoiceDirectory()
    asyncio.run(directory.discover())
    codes = [args.language.lower()] if args.language else directory.supported_languages
    voices = [v for code in codes for v in directory.voices_for(code)]
    if not voices:
        print("No voices found" + (f" for '{args.language}'" if args.language else ""))
        return 1
    for v in voices:
        print(f"{v.language_code}  {v.name:<28} {v.quality:<9} {v.gender:<7} {language_name(v.language_code)}")
    return 0


def _run_cleanup_command(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="ai-voice cleanup",
                                     description="Delete old OpenAI audio files")
    parser.add_argument("--max-age-hours", type=float, default=None, metavar="HOURS",
                        help="Age threshold (default: audio.cleanupHours from config)")
    _add_config_args(parser)
    args = parser.parse_args(argv)

    from .cloud import CloudVoiceBackend

    config = _load_config(args.config_file, args.default_config)
    max_age = args.max_age_hours if args.max_age_hours is not None else config.cleanup_hours
    backend = CloudVoiceBackend(output_dir=config.output_dir)
    removed = backend.cleanup_old_files(max_age)
    print(f"Removed {removed} file(s) older than {max_age:g}h from {config.output_dir}")
    return 0


# ─── Server ──────────────────────────────────────────────────────

async def _serve(args: argparse.Namespace, config: VoiceConfig) -> None:
    tasks = BackgroundTasks()
    selector = EngineSelector(config, tasks=tasks)
    if args.no_fallback:
        selector.set_fallback_enabled(False)
    await selector.initialize()

    status = selector.get_engine_status()
    _say(f"  Engines: platform=yes, openai={'yes' if status.cloud_available else 'no'}, "
         f"preferred={status.preferred_engine.value}, fallback={selector.fallback_enabled}")
    _say(f"  Languages: {', '.join(selector.supported_languages()) or 'none discovered'}")

    server = create_mcp_server(selector, tasks, host=args.host, port=args.port)
    _log.info("Starting MCP server",
              extra={"context": log_context(transport=args.transport, **status.as_dict())})
    try:
        if args.transport == "streamable-http":
            _say(f"  MCP: http://{args.host}:{args.port}/mcp")
            await server.run_streamable_http_async()
        else:
            await server.run_stdio_async()
    finally:
        if not await tasks.wait_idle(timeout=SHUTDOWN_GRACE_SECONDS):
            _log.warning("Cancelling %d unfinished background task(s)", tasks.active_count)
            tasks.cancel_all()
        _log.info("MCP server stopped")


def main(argv: Optional[list[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)

    # Subcommands are dispatched before the server parser
    if argv and argv[0] == "status":
        return _run_status_command(argv[1:])
    if argv and argv[0] == "voices":
        return _run_voices_command(argv[1:])
    if argv and argv[0] == "cleanup":
        return _run_cleanup_command(argv[1:])

    parser = argparse.ArgumentParser(
        prog="ai-voice",
        description="MCP server that speaks text with platform or OpenAI voices",
    )
    parser.add_argument("--transport", choices=["stdio", "streamable-http"], default="stdio")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (streamable-http)")
    parser.add_argument("--port", type=int, default=8000, help="Port (streamable-http)")
    parser.add_argument("--no-fallback", action="store_true",
                        help="Do not retry failed OpenAI requests with the platform voice")
    _add_config_args(parser)
    args = parser.parse_args(argv)

    config = _load_config(args.config_file, args.default_config)
    _say(f"  Config: {config.config_path}")
    _say(f"  TTS: model={config.tts_model}, voice={config.tts_voice}, speed={config.tts_speed}")
    for warning in config.validation_warnings:
        _say(f"  Config warning: {warning}")

    try:
        asyncio.run(_serve(args, config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
