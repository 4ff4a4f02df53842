"""MCP server module for ai-voice.

Defines the ``say`` tool.  Arguments are validated synchronously, the
voice that will be used is described up front, and synthesis runs as a
tracked background task so the agent gets its acknowledgement at once.
"""

from __future__ import annotations

from typing import Any, Mapping

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from .background import BackgroundTasks
from .errors import ValidationError
from .logging import get_logger, log_context
from .models import SynthesisRequest
from .selector import EngineSelector
from .validation import check_say_fields, parse_say_arguments

log = get_logger("ai-voice.server")

SAY_DESCRIPTION = (
    "Speak text aloud. Use it freely to react, explain, celebrate, or warn, "
    "or whenever someone asks you to speak. Synthesis runs in the background "
    "and does not block your work."
)

PREVIEW_CHARS = 50


def describe_tool(selector: EngineSelector) -> str:
    """Tool description listing discovered languages and cloud availability."""
    parts = [SAY_DESCRIPTION]
    languages = selector.supported_languages()
    if languages:
        parts.append("Supported languages: " + ", ".join(lang.upper() for lang in languages)
                     + ". The best installed voice for the language is chosen automatically.")
    if selector.get_engine_status().cloud_available:
        parts.append("OpenAI voices are available (useOpenAI, openaiVoice: "
                     "alloy, echo, fable, onyx, nova, shimmer; openaiModel: standard or hd). "
                     "Failed OpenAI requests fall back to the platform voice.")
    else:
        parts.append("OpenAI voices are not configured; the platform voice is used.")
    return "\n\n".join(parts)


def format_acknowledgement(request: SynthesisRequest, engine: str, voice: str) -> str:
    preview = request.text[:PREVIEW_CHARS]
    if len(request.text) > PREVIEW_CHARS:
        preview += "..."
    label = request.language or request.voice_name
    language = f"[Language: {label.upper()}]" if label else "[System default]"
    return (f'Voice synthesis initiated: "{preview}" {language} '
            f'| Engine: {engine} | Voice: "{voice}"')


def handle_say(selector: EngineSelector, tasks: BackgroundTasks,
               args: Mapping[str, Any]) -> str:
    """Validate *args*, start synthesis in the background, return the acknowledgement.

    Raises ValidationError for malformed arguments; nothing is spawned then.
    """
    config = selector.config
    request = parse_say_arguments(args, config.echo, config.echo_enabled)
    engine = selector.select_engine(request)
    voice = selector.get_used_voice_info(request)
    tasks.spawn(selector.synthesize(request), tag="synthesis")
    log.debug("Synthesis scheduled",
              extra={"context": log_context(engine=engine.value, text_preview=request.text,
                                            voice=voice)})
    return format_acknowledgement(request, engine.value, voice)


class VoiceServer(FastMCP):
    """FastMCP server that rejects ``say`` arguments it does not define.

    FastMCP's argument model ignores unknown keys, so they are checked on
    the raw arguments before dispatch.
    """

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        if name == "say":
            try:
                check_say_fields(arguments or {})
            except ValidationError as e:
                log.warning("Rejected say request: %s", e)
                raise ToolError(str(e)) from e
        return await super().call_tool(name, arguments)


def create_mcp_server(
    selector: EngineSelector,
    tasks: BackgroundTasks | None = None,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> VoiceServer:
    """Create the MCP server with the ``say`` tool.

    The selector must already be initialized: the tool description is built
    from the languages discovered at startup.
    """
    server = VoiceServer("ai-voice", host=host, port=port)
    tasks = tasks or selector.tasks

    @server.tool(name="say", description=describe_tool(selector))
    async def say(
        text: str,
        language: str | None = None,
        useOpenAI: bool | None = None,
        openaiVoice: str | None = None,
        openaiModel: str | None = None,
        openaiSpeed: float | None = None,
        openaiFormat: str | None = None,
        echo: bool | dict | None = None,
    ) -> str:
        args = {
            "text": text,
            "language": language,
            "useOpenAI": useOpenAI,
            "openaiVoice": openaiVoice,
            "openaiModel": openaiModel,
            "openaiSpeed": openaiSpeed,
            "openaiFormat": openaiFormat,
            "echo": echo,
        }
        try:
            return handle_say(selector, tasks, args)
        except ValidationError as e:
            log.warning("Rejected say request: %s", e)
            raise ToolError(str(e)) from e

    return server
