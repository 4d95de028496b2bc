from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config import get_settings
from middleware.logging import LoggingMiddleware
from middleware.request_id import RequestIDMiddleware
from routers import health, recording_stream, sessions
from services.broadcast import BroadcastChannel
from services.dispatcher import DispatcherConfig, EventDispatcher
from services.http_client import close_http_client
from services.session_registry import SessionRegistry
from services.session_store import build_session_store
from telemetry.logging import configure_logging
from telemetry.tracing import configure_tracing

settings = get_settings()

configure_logging(settings.log_level)
configure_tracing()

app = FastAPI(
    title="Live Scribe API",
    version=settings.stack_version,
    default_response_class=ORJSONResponse,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(LoggingMiddleware)

instrumentator = Instrumentator(should_group_status_codes=True)
instrumentator.instrument(app).expose(app, include_in_schema=False)

app.include_router(health.router)
app.include_router(recording_stream.router)
app.include_router(sessions.router)


@app.on_event("startup")
async def startup_event() -> None:
    store = build_session_store(settings.session_store_backend)
    await store.startup()
    app.state.session_store = store
    app.state.dispatcher = EventDispatcher(
        SessionRegistry(buffer_max_bytes=settings.audio_buffer_max_bytes),
        BroadcastChannel(),
        store,
        config=DispatcherConfig(
            download_url_template=settings.download_url_template,
            max_chunk_bytes=settings.ws_max_message_bytes,
        ),
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is not None:
        await dispatcher.shutdown()
    await close_http_client()
    store = getattr(app.state, "session_store", None)
    if store is not None:
        await store.shutdown()
