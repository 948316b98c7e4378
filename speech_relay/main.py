"""
FastAPI server for the speech-to-speech relay.

This module initializes and configures the FastAPI application that accepts a
caller's raw audio as a long-lived chunked POST and streams the backend
agent's audio back in the response body.

At startup the tool registry is built (and durable tools are optionally
registered with the backend); every request then gets its own ``AudioRelay``
and backend session for the lifetime of the call.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.types import Receive, Scope, Send

from speech_relay.bot.audio_relay import AudioRelay
from speech_relay.bot.backend_session import BackendSession
from speech_relay.config.constants import AUDIO_MEDIA_TYPE, CALLER_ID_HEADER
from speech_relay.config.logging_config import configure_logging
from speech_relay.config.settings import Settings, load_env_file
from speech_relay.errors import BackendConnectionError
from speech_relay.tools.loader import load_tools
from speech_relay.tools.remote import (
    ToolManagementClient,
    durable_tool_selection,
    temporary_tool_selection,
)
from speech_relay.utils.datetime_context import format_current_datetime

# Load environment variables from .env file if it exists
load_env_file()

# Configure logging
logger = configure_logging()

SERVICE_NAME = "Speech Relay"
SERVICE_DESCRIPTION = "Bridges chunked HTTP caller audio to a speech-to-speech agent over WebSocket"
SERVICE_VERSION = "1.0.0"


class RelayStreamingResponse(StreamingResponse):
    """
    Streaming response that leaves the ASGI receive channel to the request body.

    The relay keeps reading caller audio while the response is being written,
    so the response must not consume receive messages itself. A caller
    disconnect surfaces as ``ClientDisconnect`` from the request stream.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.stream_response(send)
        if self.background is not None:
            await self.background()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use, read from the environment at startup when omitted

    Returns:
        FastAPI: The configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or Settings.from_env()
        app_settings.require_backend()
        # Fail at startup rather than on the first call
        format_current_datetime(app_settings.datetime_locale, app_settings.datetime_timezone)

        registry = load_tools(app_settings.tools_dir, app_settings.debug)

        durable_ids = []
        if app_settings.register_durable_tools:
            durable_ids = await ToolManagementClient(app_settings).register_durable_tools(registry)

        selected_tools = temporary_tool_selection(registry) + durable_tool_selection(durable_ids)

        app.state.settings = app_settings
        app.state.registry = registry
        app.state.backend = BackendSession(app_settings, selected_tools=selected_tools)
        app.state.active_calls = {}

        logger.info(f"Relay ready with {len(registry)} tools, forwarding to agent {app_settings.ultravox_agent_id}")
        yield
        logger.info(f"Shutting down with {len(app.state.active_calls)} active calls")

    app = FastAPI(
        title=SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    @app.post("/speech-to-speech-stream")
    async def speech_to_speech_stream(request: Request):
        """Relay one call: caller audio in the request body, agent audio in the response body.

        The caller is identified by the ``x-uuid`` header. The backend session is
        opened before the response starts, so a backend failure is reported as
        502 instead of an empty audio stream.
        """
        caller_id = request.headers.get(CALLER_ID_HEADER)
        if not caller_id:
            logger.warning(f"Rejecting stream without {CALLER_ID_HEADER} header")
            return JSONResponse({"detail": f"Missing {CALLER_ID_HEADER} header"}, status_code=400)

        state = request.app.state
        relay = AudioRelay(caller_id, state.backend, state.registry, state.settings)
        try:
            await relay.open()
        except BackendConnectionError as e:
            logger.error(f"[{caller_id}] Could not open backend session: {e}")
            return Response(status_code=502)

        state.active_calls[caller_id] = relay
        logger.info(f"[{caller_id}] Stream started ({len(state.active_calls)} active calls)")

        async def audio_stream():
            try:
                async for chunk in relay.stream(request.stream()):
                    yield chunk
            finally:
                if state.active_calls.get(caller_id) is relay:
                    del state.active_calls[caller_id]
                logger.info(f"[{caller_id}] Stream ended")

        return RelayStreamingResponse(audio_stream(), media_type=AUDIO_MEDIA_TYPE)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint for monitoring system status.

        Returns:
            dict: Status information including the number of loaded tools and active calls.
        """
        state = request.app.state
        return {
            "status": "healthy",
            "agent_configured": bool(state.settings.ultravox_agent_id),
            "tools": len(state.registry),
            "active_calls": len(state.active_calls),
        }

    @app.get("/")
    async def root():
        """Root endpoint to display basic information about the API."""
        return {
            "name": SERVICE_NAME,
            "description": SERVICE_DESCRIPTION,
            "version": SERVICE_VERSION,
            "endpoints": {
                "/speech-to-speech-stream": "Chunked POST of caller audio, streams agent audio back",
                "/health": "Health check endpoint",
            },
        }

    return app


app = create_app()
