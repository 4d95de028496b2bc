import asyncio
import contextlib
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import structlog
from opentelemetry import trace
from prometheus_client import Counter, Gauge, Histogram
from pydantic import BaseModel, ValidationError

from schemas.recording import (
    AudioChunkPayload,
    InboundEvent,
    OutboundEvent,
    SessionPayload,
    SessionStatus,
    StartRecordingPayload,
    StopRecordingPayload,
)
from services.audio_buffer import is_valid_audio_chunk
from services.broadcast import BroadcastChannel, Connection
from services.gemini_client import (
    MOCK_TRANSCRIPTION_MARKER,
    SummaryResult,
    TranscriptionResult,
    generate_meeting_summary,
    transcribe_audio_chunk,
)
from services.session_registry import (
    InvalidTransitionError,
    LiveSession,
    SessionError,
    SessionRegistry,
)
from services.session_store import SessionStore
from services.transcript_accumulator import NO_TRANSCRIPT_TEXT

LOGGER = structlog.get_logger(__name__)
TRACER = trace.get_tracer(__name__)

ACTIVE_SESSIONS = Gauge("recording_active_sessions", "Sessions currently registered in memory")
INBOUND_EVENTS = Counter(
    "recording_inbound_events_total",
    "Inbound recording events received",
    ["event"],
)
EVENT_FAILURES = Counter(
    "recording_event_failures_total",
    "Inbound events answered with an error",
    ["event", "code"],
)
AUDIO_BYTES = Counter("recording_audio_bytes_total", "Audio bytes accepted into session buffers")
TRANSCRIPTION_DEGRADED = Counter(
    "recording_transcription_degraded_total",
    "Audio chunks whose transcription came back degraded",
)
SUMMARY_FAILURES = Counter("recording_summary_failures_total", "Sessions completed without a summary")
STOP_FAILURES = Counter("recording_stop_failures_total", "Stop requests that ended in ERROR")
EVENT_DURATION_SECONDS = Histogram(
    "recording_event_duration_seconds",
    "Time spent handling one inbound event",
    ["event"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)
QUEUE_WAIT_SECONDS = Histogram(
    "recording_queue_wait_seconds",
    "Time a session event waited in its session queue",
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30),
)

TranscribeCallable = Callable[[bytes, int, Optional[str]], Awaitable[TranscriptionResult]]
SummarizeCallable = Callable[[str], Awaitable[SummaryResult]]
Handler = Callable[[Connection, Any], Awaitable[None]]

PAYLOAD_MODELS: Dict[InboundEvent, type] = {
    InboundEvent.START_RECORDING: StartRecordingPayload,
    InboundEvent.AUDIO_CHUNK: AudioChunkPayload,
    InboundEvent.PAUSE_RECORDING: SessionPayload,
    InboundEvent.RESUME_RECORDING: SessionPayload,
    InboundEvent.STOP_RECORDING: StopRecordingPayload,
    InboundEvent.JOIN_SESSION: SessionPayload,
}

FAILURES: Dict[InboundEvent, Tuple[str, str]] = {
    InboundEvent.START_RECORDING: ("Failed to start recording", "START_FAILED"),
    InboundEvent.AUDIO_CHUNK: ("Failed to process audio chunk", "CHUNK_FAILED"),
    InboundEvent.PAUSE_RECORDING: ("Failed to pause recording", "PAUSE_FAILED"),
    InboundEvent.RESUME_RECORDING: ("Failed to resume recording", "RESUME_FAILED"),
    InboundEvent.STOP_RECORDING: ("Failed to stop recording", "STOP_FAILED"),
    InboundEvent.JOIN_SESSION: ("Failed to join session", "JOIN_FAILED"),
}

SESSION_QUEUED_EVENTS = frozenset(
    {
        InboundEvent.AUDIO_CHUNK,
        InboundEvent.PAUSE_RECORDING,
        InboundEvent.RESUME_RECORDING,
        InboundEvent.STOP_RECORDING,
    }
)


@dataclass
class DispatcherConfig:
    download_url_template: str = "/sessions/{session_id}/download"
    placeholder_marker: str = MOCK_TRANSCRIPTION_MARKER
    transcription_context_chars: int = 200
    max_chunk_bytes: int = 10_000_000

    def download_url(self, session_id: str) -> str:
        return self.download_url_template.format(session_id=session_id)


@dataclass
class SessionJob:
    event: InboundEvent
    payload: BaseModel
    connection: Connection
    enqueued_at: float


def _validation_message(event: InboundEvent, exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return f"Invalid {event.value} payload"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"Invalid {event.value} payload: {location}: {first.get('msg')}"


class _SessionWorker:
    """FIFO queue plus the task that drains it; one per session."""

    def __init__(self, session_id: str, process: Callable[[SessionJob], Awaitable[None]]) -> None:
        self.session_id = session_id
        self.queue: "asyncio.Queue[SessionJob | object]" = asyncio.Queue()
        self._process = process
        self._sentinel = object()
        self.retiring = False
        self.task = asyncio.create_task(self._run(), name=f"session-worker-{session_id}")

    def submit(self, job: SessionJob) -> None:
        self.queue.put_nowait(job)

    def retire(self) -> None:
        if self.retiring:
            return
        self.retiring = True
        self.queue.put_nowait(self._sentinel)

    async def _run(self) -> None:
        while True:
            job = await self.queue.get()
            try:
                if job is self._sentinel:
                    break
                QUEUE_WAIT_SECONDS.observe(max(time.monotonic() - job.enqueued_at, 0.0))
                await self._process(job)
            finally:
                self.queue.task_done()


class EventDispatcher:
    """
    Entry point for inbound recording events.

    Session-scoped events are queued per session and handled one at a time, so
    buffer and transcript mutations never interleave and transcription calls
    complete in chunk arrival order. Different sessions proceed concurrently.
    Every failure is answered with an error event to the originating
    connection only.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        channel: BroadcastChannel,
        store: SessionStore,
        *,
        transcriber: Optional[TranscribeCallable] = None,
        summarizer: Optional[SummarizeCallable] = None,
        config: Optional[DispatcherConfig] = None,
    ) -> None:
        self._registry = registry
        self._channel = channel
        self._store = store
        self._transcriber = transcriber or transcribe_audio_chunk
        self._summarizer = summarizer or generate_meeting_summary
        self._config = config or DispatcherConfig()
        self._workers: Dict[str, _SessionWorker] = {}
        self._handlers: Dict[InboundEvent, Handler] = {
            InboundEvent.START_RECORDING: self._handle_start,
            InboundEvent.AUDIO_CHUNK: self._handle_audio_chunk,
            InboundEvent.PAUSE_RECORDING: self._handle_pause,
            InboundEvent.RESUME_RECORDING: self._handle_resume,
            InboundEvent.STOP_RECORDING: self._handle_stop,
            InboundEvent.JOIN_SESSION: self._handle_join,
        }

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def channel(self) -> BroadcastChannel:
        return self._channel

    async def dispatch(self, connection: Connection, event: Optional[str], payload: Optional[Dict[str, Any]]) -> None:
        try:
            inbound = InboundEvent(event)
        except ValueError:
            INBOUND_EVENTS.labels(event="unknown").inc()
            await self._send_error(connection, f"Unknown event: {event}", "UNKNOWN_EVENT")
            return
        INBOUND_EVENTS.labels(event=inbound.value).inc()

        try:
            data = PAYLOAD_MODELS[inbound].model_validate(payload or {})
        except ValidationError as exc:
            EVENT_FAILURES.labels(event=inbound.value, code="INVALID_PAYLOAD").inc()
            await self._send_error(connection, _validation_message(inbound, exc), "INVALID_PAYLOAD")
            return

        if inbound not in SESSION_QUEUED_EVENTS:
            await self._run_handler(inbound, connection, data)
            return

        worker = self._workers.get(data.session_id)
        if worker is None or data.session_id not in self._registry:
            EVENT_FAILURES.labels(event=inbound.value, code="SESSION_NOT_FOUND").inc()
            LOGGER.info("session_event_unknown_session", event=inbound.value, session_id=data.session_id)
            await self._send_error(connection, "Session not found", "SESSION_NOT_FOUND")
            return
        worker.submit(
            SessionJob(event=inbound, payload=data, connection=connection, enqueued_at=time.monotonic())
        )

    async def disconnect(self, connection: Connection) -> None:
        left = self._channel.unsubscribe_all(connection)
        if left:
            LOGGER.info("connection_left_sessions", connection_id=connection.id, sessions=left)

    async def drain(self, session_id: Optional[str] = None) -> None:
        """Wait until queued events are handled, for one session or for all of them."""
        if session_id is not None:
            worker = self._workers.get(session_id)
            workers = [worker] if worker else []
        else:
            workers = list(self._workers.values())
        for worker in workers:
            await worker.queue.join()

    async def shutdown(self) -> None:
        workers = list(self._workers.values())
        self._workers.clear()
        for worker in workers:
            worker.task.cancel()
        for worker in workers:
            with contextlib.suppress(asyncio.CancelledError):
                await worker.task
        if len(self._registry):
            LOGGER.warning(
                "dispatcher_shutdown_with_active_sessions",
                sessions=sorted(self._registry.session_ids()),
            )
        LOGGER.info("dispatcher_shutdown", workers=len(workers))

    async def _process_job(self, job: SessionJob) -> None:
        session_id = job.payload.session_id
        try:
            await self._run_handler(job.event, job.connection, job.payload)
        finally:
            if session_id not in self._registry:
                self._retire_worker(session_id)

    def _retire_worker(self, session_id: str) -> None:
        worker = self._workers.get(session_id)
        if worker is None or worker.retiring:
            return
        worker.retire()
        worker.task.add_done_callback(lambda _task: self._forget_worker(session_id, worker))

    def _forget_worker(self, session_id: str, worker: _SessionWorker) -> None:
        if self._workers.get(session_id) is worker:
            del self._workers[session_id]

    async def _run_handler(self, event: InboundEvent, connection: Connection, payload: BaseModel) -> None:
        session_id = getattr(payload, "session_id", None)
        started = time.perf_counter()
        with TRACER.start_as_current_span(f"recording.{event.value}") as span:
            span.set_attribute("recording.event", event.value)
            if session_id:
                span.set_attribute("recording.session_id", session_id)
            try:
                await self._handlers[event](connection, payload)
            except SessionError as exc:
                EVENT_FAILURES.labels(event=event.value, code=exc.code).inc()
                LOGGER.info(
                    "session_event_rejected",
                    event=event.value,
                    session_id=session_id,
                    code=exc.code,
                    reason=exc.message,
                )
                await self._send_error(connection, exc.message, exc.code)
            except Exception as exc:  # noqa: BLE001
                message, code = FAILURES[event]
                EVENT_FAILURES.labels(event=event.value, code=code).inc()
                span.record_exception(exc)
                LOGGER.exception("session_event_failed", event=event.value, session_id=session_id, error=str(exc))
                await self._send_error(connection, message, code)
            finally:
                EVENT_DURATION_SECONDS.labels(event=event.value).observe(time.perf_counter() - started)

    async def _send_error(self, connection: Connection, message: str, code: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"message": message}
        if code:
            payload["code"] = code
        await self._channel.send(connection, OutboundEvent.ERROR.value, payload)

    async def _publish_status(self, session_id: str, status: SessionStatus) -> None:
        await self._channel.publish(
            session_id,
            OutboundEvent.STATUS_UPDATE.value,
            {"sessionId": session_id, "status": status.value},
        )

    async def _handle_start(self, connection: Connection, payload: StartRecordingPayload) -> None:
        session_id = uuid.uuid4().hex
        record = await self._store.create_session(
            session_id=session_id,
            user_id=payload.user_id,
            audio_source=payload.audio_source,
            status=SessionStatus.RECORDING,
        )
        self._registry.create(
            session_id,
            payload.user_id,
            payload.audio_source,
            status=SessionStatus.RECORDING,
            created_at=record.created_at,
        )
        self._workers[session_id] = _SessionWorker(session_id, self._process_job)
        self._channel.subscribe(session_id, connection)
        ACTIVE_SESSIONS.inc()
        LOGGER.info(
            "session_created",
            session_id=session_id,
            user_id=payload.user_id,
            audio_source=payload.audio_source.value,
            connection_id=connection.id,
        )
        await self._channel.send(connection, OutboundEvent.SESSION_CREATED.value, {"sessionId": session_id})

    async def _handle_join(self, connection: Connection, payload: SessionPayload) -> None:
        session = self._registry.require(payload.session_id)
        self._channel.subscribe(session.session_id, connection)
        LOGGER.info("session_joined", session_id=session.session_id, connection_id=connection.id)
        await self._channel.send(
            connection,
            OutboundEvent.STATUS_UPDATE.value,
            {"sessionId": session.session_id, "status": session.status.value},
        )

    async def _handle_audio_chunk(self, connection: Connection, payload: AudioChunkPayload) -> None:
        session = self._registry.require(payload.session_id)
        if session.status == SessionStatus.PAUSED:
            LOGGER.info("audio_chunk_ignored_paused", session_id=session.session_id, chunk_bytes=len(payload.chunk))
            await self._channel.send(
                connection,
                OutboundEvent.STATUS_UPDATE.value,
                {"sessionId": session.session_id, "status": SessionStatus.PAUSED.value},
            )
            return
        if session.status != SessionStatus.RECORDING:
            raise SessionError(f"Session is {session.status.value}, not recording", code="INVALID_STATE")
        if not is_valid_audio_chunk(payload.chunk):
            raise SessionError("Audio chunk is empty", code="INVALID_PAYLOAD")
        if len(payload.chunk) > self._config.max_chunk_bytes:
            raise SessionError("Audio chunk exceeds the maximum message size", code="MESSAGE_TOO_LARGE")

        session.buffer.add_fragment(payload.chunk)
        AUDIO_BYTES.inc(len(payload.chunk))

        timestamp = int(payload.timestamp)
        context = session.transcript.tail(self._config.transcription_context_chars) or None
        result = await self._transcriber(payload.chunk, timestamp, context)
        if result.degraded:
            TRANSCRIPTION_DEGRADED.inc()
            LOGGER.warning(
                "transcription_degraded",
                session_id=session.session_id,
                timestamp_ms=timestamp,
                error=result.error,
            )
        session.transcript.append(result.chunk)
        await self._channel.publish(
            session.session_id,
            OutboundEvent.TRANSCRIPTION_UPDATE.value,
            {"sessionId": session.session_id, "chunk": result.chunk.to_payload()},
        )

        duration = session.update_duration(timestamp)
        await self._store.update_session(session.session_id, duration=duration)

    async def _change_status(self, session: LiveSession, new_status: SessionStatus) -> None:
        if not session.can_transition(new_status):
            raise InvalidTransitionError(session.status, new_status)
        await self._store.update_session(session.session_id, status=new_status)
        session.transition(new_status)
        await self._publish_status(session.session_id, new_status)

    async def _handle_pause(self, connection: Connection, payload: SessionPayload) -> None:
        session = self._registry.require(payload.session_id)
        await self._change_status(session, SessionStatus.PAUSED)
        LOGGER.info("session_paused", session_id=session.session_id)

    async def _handle_resume(self, connection: Connection, payload: SessionPayload) -> None:
        session = self._registry.require(payload.session_id)
        await self._change_status(session, SessionStatus.RECORDING)
        LOGGER.info("session_resumed", session_id=session.session_id)

    async def _handle_stop(self, connection: Connection, payload: StopRecordingPayload) -> None:
        session = self._registry.require(payload.session_id)
        session_id = session.session_id
        session.transition(SessionStatus.PROCESSING)
        try:
            await self._store.update_session(session_id, status=SessionStatus.PROCESSING)
            await self._publish_status(session_id, SessionStatus.PROCESSING)

            content = session.transcript.resolve_final_text(
                payload.client_transcript, self._config.placeholder_marker
            )
            if payload.client_transcript and content == payload.client_transcript:
                LOGGER.info("client_transcript_used", session_id=session_id)
            content = content or NO_TRANSCRIPT_TEXT
            chunks = [chunk.to_record() for chunk in session.transcript.chunks]
            await self._store.save_transcript(session_id, content, chunks)

            await self._summarize(session_id, content)

            duration = int(payload.duration) if payload.duration else None
            await self._store.update_session(session_id, status=SessionStatus.COMPLETED, duration=duration)
            session.transition(SessionStatus.COMPLETED)
        except Exception as exc:  # noqa: BLE001
            await self._fail_stop(connection, session, exc)
            return

        self._teardown(session_id)
        await self._channel.publish(
            session_id,
            OutboundEvent.PROCESSING_COMPLETE.value,
            {"sessionId": session_id, "downloadUrl": self._config.download_url(session_id)},
        )
        await self._publish_status(session_id, SessionStatus.COMPLETED)
        self._channel.close_group(session_id)
        LOGGER.info(
            "session_completed",
            session_id=session_id,
            transcript_chunks=len(chunks),
            transcript_chars=len(content),
        )

    async def _summarize(self, session_id: str, transcript: str) -> bool:
        try:
            summary = await self._summarizer(transcript)
            await self._store.save_summary(session_id, summary)
        except Exception as exc:  # noqa: BLE001
            SUMMARY_FAILURES.inc()
            LOGGER.warning("summary_generation_failed", session_id=session_id, error=str(exc))
            return False
        return True

    async def _fail_stop(self, connection: Connection, session: LiveSession, exc: Exception) -> None:
        session_id = session.session_id
        STOP_FAILURES.inc()
        EVENT_FAILURES.labels(event=InboundEvent.STOP_RECORDING.value, code="STOP_FAILED").inc()
        LOGGER.error("stop_recording_failed", session_id=session_id, error=str(exc), exc_info=exc)
        await self._send_error(connection, *FAILURES[InboundEvent.STOP_RECORDING])

        if session.can_transition(SessionStatus.ERROR):
            session.transition(SessionStatus.ERROR)
        try:
            await self._store.update_session(session_id, status=SessionStatus.ERROR)
        except Exception as db_exc:  # noqa: BLE001
            LOGGER.error("session_error_status_failed", session_id=session_id, error=str(db_exc))
        await self._publish_status(session_id, SessionStatus.ERROR)
        self._teardown(session_id)
        self._channel.close_group(session_id)

    def _teardown(self, session_id: str) -> None:
        if self._registry.remove(session_id) is not None:
            ACTIVE_SESSIONS.dec()
