# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""HTTP surface of the relay: SSE push channel plus send/stop/state commands."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from argparse import ArgumentParser
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from agent_relay.core.broadcast import BroadcastHub
from agent_relay.core.claude_runtime import ClaudeRuntime
from agent_relay.core.config import Config
from agent_relay.core.config_builder import add_config_arguments, build_config
from agent_relay.core.logs import LogBuffer, configure_logging
from agent_relay.core.relay_error import RelayError
from agent_relay.core.runtime import AgentRuntime
from agent_relay.core.session import Session, SessionReducer

logger = logging.getLogger(__name__)


def ensure_workspace(path: str) -> str:
    """Resolve the agent workspace, creating it if it does not exist.

    Raises:
        RelayError: If the path exists but is not a directory.
    """
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        resolved.mkdir(parents=True, exist_ok=True)
    if not resolved.is_dir():
        raise RelayError(f"Agent directory is not a directory: {resolved}")
    return str(resolved)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def build_reducer(
    workspace: str, config: Config, runtime: AgentRuntime | None = None
) -> SessionReducer:
    """Wire a session, hub and runtime together for one workspace."""
    hub = BroadcastHub(
        buffer_size=config.server.channel_buffer_size,
        heartbeat_interval=config.server.heartbeat_interval,
    )
    return SessionReducer(
        Session(workspace),
        hub,
        runtime or ClaudeRuntime(config.runtime),
        debug=config.debug,
    )


def create_app(
    reducer: SessionReducer,
    config: Config,
    log_buffer: LogBuffer | None = None,
    seed_prompt: str | None = None,
) -> Starlette:
    """Build the Starlette app serving one relayed session.

    Args:
        reducer: The reducer owning the session.
        config: Relay configuration.
        log_buffer: Recent log lines sent to each viewer on connect.
        seed_prompt: Message enqueued as soon as the app starts.

    Returns:
        Starlette: The ASGI application.
    """
    background: set[asyncio.Task[None]] = set()

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info(
            "Relay ready workspace=%s seedPrompt=%s",
            reducer.session.workspace,
            "yes" if seed_prompt and seed_prompt.strip() else "no",
        )
        if seed_prompt and seed_prompt.strip():
            task = asyncio.create_task(reducer.enqueue(seed_prompt))
            background.add(task)
            task.add_done_callback(background.discard)
        try:
            yield
        finally:
            await reducer.shutdown()
            reducer.hub.close_all()
            if config.server.transcript_dir:
                path = reducer.session.save_transcript(config.server.transcript_dir)
                logger.info("Transcript written to %s", path)

    async def stream(request: Request) -> StreamingResponse:
        channel = reducer.attach_viewer(log_buffer.lines() if log_buffer else None)
        return StreamingResponse(
            channel.stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache, no-transform",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
                "X-SSE-Client-Id": channel.id,
            },
        )

    async def send(request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            return _error("Invalid JSON payload.", 400)
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            text = ""
        logger.info('Send text="%s"', text.strip()[:200])
        try:
            await reducer.enqueue(text)
        except RelayError as e:
            return _error(e.message, 400)
        except Exception as e:
            logger.exception("Failed to enqueue message")
            return _error(str(e), 500)
        return JSONResponse({"success": True})

    async def stop(request: Request) -> JSONResponse:
        logger.info("Stop requested")
        try:
            stopped = await reducer.interrupt()
        except Exception as e:
            logger.exception("Failed to interrupt response")
            return _error(str(e), 500)
        if not stopped:
            return _error("No active response to stop.", 400)
        return JSONResponse({"success": True})

    async def state(request: Request) -> JSONResponse:
        return JSONResponse(reducer.session.snapshot())

    return Starlette(
        routes=[
            Route("/chat/stream", stream, methods=["GET"]),
            Route("/chat/send", send, methods=["POST"]),
            Route("/chat/stop", stop, methods=["POST"]),
            Route("/chat/state", state, methods=["GET"]),
        ],
        lifespan=lifespan,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Command-line entry point: ``agent-relay --agent-dir PATH [--prompt TEXT]``."""
    parser = ArgumentParser(description="Relay an agent session to browser viewers over SSE")
    parser.add_argument("--agent-dir", required=True, help="Workspace the agent runs in")
    parser.add_argument("--prompt", default=None, help="Message sent as soon as the relay starts")
    add_config_arguments(parser)
    args = parser.parse_args(argv)
    config = build_config(argv)
    log_buffer = configure_logging(config.debug, config.server.log_buffer_lines)

    try:
        workspace = ensure_workspace(args.agent_dir)
    except RelayError as e:
        logger.error("%s", e)
        sys.exit(1)

    app = create_app(build_reducer(workspace, config), config, log_buffer, args.prompt)
    logger.info("Listening on http://%s:%d", config.server.host, config.server.port)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if config.debug else "warning",
    )


if __name__ == "__main__":
    main()
