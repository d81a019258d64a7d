"""
Interactive gemma session

Owns one gemma child process, tracks its phase from the markers it prints,
and serializes request/response exchanges against its output.
"""

import asyncio
import random
import re
import string
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from .collector import ResponseCollector, ResponseStream
from ..output_handling.output_classifier import ChunkKind, ClassifiedChunk, OutputClassifier
from ..output_handling.transcript import TranscriptWriter
from ..process_control.process_controller import ProcessController
from ..utils.config import Config
from ..utils.error_handler import (
    BusyError,
    ClosedSessionError,
    ErrorHandler,
    NotReadyError,
    SessionClosedError,
    SessionTimeoutError,
    SpawnError,
)
from ..utils.logging_setup import get_logger

logger = get_logger('session')

_LINE_BREAKS = re.compile(r'\r\n|\r|\n')

# Sentinel for "use the configured timeout"
_DEFAULT = object()


class Phase(Enum):
    """Lifecycle and readiness state of a session"""
    NOT_STARTED = "not_started"
    STARTING = "starting"
    LOADING_PROMPT = "loading_prompt"
    READY_FOR_INPUT = "ready_for_input"
    PROCESSING = "processing"
    CLOSED = "closed"


# CLOSED is reachable from every phase and is absorbing
_TRANSITIONS = {
    Phase.NOT_STARTED: {Phase.STARTING},
    Phase.STARTING: {Phase.LOADING_PROMPT, Phase.READY_FOR_INPUT},
    Phase.LOADING_PROMPT: {Phase.READY_FOR_INPUT},
    Phase.READY_FOR_INPUT: {Phase.PROCESSING},
    Phase.PROCESSING: {Phase.LOADING_PROMPT, Phase.READY_FOR_INPUT},
    Phase.CLOSED: set(),
}


def generate_session_id() -> str:
    """Generate a 6-character session ID"""
    return ''.join(random.choices(string.ascii_uppercase + string.digits, k=6))


class Session:
    """An interactive gemma process and its request/response state.

    A session runs exactly one process. Once it is CLOSED it stays closed;
    build a new session to try again.

    Usage::

        async with Session(config) as session:
            chunks = await session.send_request_await_response("hello")
    """

    def __init__(self, config: Optional[Config] = None, session_id: Optional[str] = None):
        self.config = config or Config()
        self.id = session_id or generate_session_id()
        self.created_at = datetime.now()
        self.last_activity = self.created_at
        self.request_count = 0
        self.error_handler = ErrorHandler()

        self._phase = Phase.NOT_STARTED
        self._phase_changed = asyncio.Condition()
        self._classifier = OutputClassifier(self.config.markers)
        self._collector: Optional[ResponseCollector] = None
        self._exit_code: Optional[int] = None

        self._controller = ProcessController(
            command=self.config.session.command(),
            working_directory=self.config.session.working_directory
        )
        self._controller.set_output_callback(self._handle_stdout)
        self._controller.set_error_callback(self._handle_stderr)
        self._controller.set_exit_callback(self._handle_exit)

        transcript_file = self.config.exchange.transcript_file
        self._transcript = TranscriptWriter(transcript_file, self.id) if transcript_file else None

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def is_ready(self) -> bool:
        return self._phase == Phase.READY_FOR_INPUT

    @property
    def is_busy(self) -> bool:
        """True while an exchange is outstanding"""
        return self._collector is not None

    @property
    def is_closed(self) -> bool:
        return self._phase == Phase.CLOSED

    # Lifecycle

    async def start(self) -> 'Session':
        """Spawn gemma and begin monitoring its output.

        Returns once the process is running, in phase STARTING. Use
        ``wait_until_ready()`` to wait for the first input prompt.
        """
        if self._phase != Phase.NOT_STARTED:
            raise SpawnError(f"Session {self.id} has already been started")

        if self._transcript:
            self._transcript.open()
            self._transcript.write_start(self._controller.command)

        # STARTING before spawn so the first prompt is never missed
        await self._set_phase(Phase.STARTING)
        try:
            await self._controller.start_process(self.id)
        except SpawnError as e:
            self._record_error(e, {'command': self._controller.command})
            await self._set_phase(Phase.CLOSED)
            self._close_transcript()
            raise

        logger.info(f"Session {self.id} started")
        return self

    async def wait_until_ready(self, timeout=_DEFAULT):
        """Wait until gemma is ready for input.

        Raises SessionTimeoutError if the deadline passes first and
        SessionClosedError if the process exits first.
        """
        if timeout is _DEFAULT:
            timeout = self.config.exchange.ready_timeout

        def settled() -> bool:
            return self._phase in (Phase.READY_FOR_INPUT, Phase.CLOSED)

        try:
            async with self._phase_changed:
                await asyncio.wait_for(self._phase_changed.wait_for(settled), timeout=timeout)
        except asyncio.TimeoutError:
            error = SessionTimeoutError(
                f"Gemma did not become ready within {timeout}s (phase: {self._phase.value})"
            )
            self._record_error(error)
            raise error from None

        if self._phase == Phase.CLOSED:
            raise SessionClosedError(
                f"Session {self.id} closed before becoming ready",
                exit_code=self._exit_code
            )

    async def shutdown(self, timeout: Optional[float] = None):
        """Terminate gemma and close the session"""
        if self._phase == Phase.CLOSED:
            return

        if self._phase == Phase.NOT_STARTED:
            await self._set_phase(Phase.CLOSED)
            self._close_transcript()
            return

        if timeout is None:
            timeout = self.config.exchange.shutdown_timeout

        logger.info(f"Shutting down session {self.id}")
        if self._collector:
            await self._collector.release()
        if self._transcript:
            self._transcript.write_event("Shutdown requested")

        await self._controller.terminate_process(timeout=timeout)

    async def __aenter__(self) -> 'Session':
        await self.start()
        try:
            await self.wait_until_ready()
        except BaseException:
            await self.shutdown()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    # Exchanges

    async def send_request_await_response(self, text: str, timeout=_DEFAULT) -> List[str]:
        """Send one prompt and return the response chunks.

        Waits until gemma is ready for input again. On timeout the exchange
        keeps running in gemma; the session stays busy until it completes.
        """
        if timeout is _DEFAULT:
            timeout = self.config.exchange.response_timeout

        collector = ResponseCollector(text)
        await self._begin_exchange(collector)

        try:
            return await asyncio.wait_for(collector.result(), timeout=timeout)
        except asyncio.TimeoutError:
            await collector.abandon()
            error = SessionTimeoutError(f"No complete response within {timeout}s")
            self._record_error(error, {'request': text})
            raise error from None

    async def send_request_stream(self, text: str, timeout=_DEFAULT) -> ResponseStream:
        """Send one prompt and return an async iterator over response chunks.

        At most ``stream_buffer_limit`` unconsumed chunks are buffered; past
        that, reading gemma's output pauses until the consumer catches up.
        """
        if timeout is _DEFAULT:
            timeout = self.config.exchange.response_timeout

        collector = ResponseCollector(
            text,
            streaming=True,
            max_buffered=self.config.exchange.stream_buffer_limit
        )
        await self._begin_exchange(collector)
        return ResponseStream(collector, timeout=timeout)

    def _check_can_send(self):
        if self._phase == Phase.CLOSED:
            raise ClosedSessionError(
                f"Session {self.id} is closed", exit_code=self._exit_code, phase=self._phase
            )
        if self._collector is not None:
            raise BusyError(
                f"Session {self.id} is busy with another request", phase=self._phase
            )
        if self._phase != Phase.READY_FOR_INPUT:
            raise NotReadyError(
                f"Gemma is not ready for input (phase: {self._phase.value})", phase=self._phase
            )

    async def _begin_exchange(self, collector: ResponseCollector):
        """Install the collector and write the prompt line"""
        try:
            self._check_can_send()
        except (NotReadyError, SessionClosedError) as e:
            self._record_error(e, {'request': collector.request})
            raise

        # Installed before the first await so concurrent callers see busy
        self._collector = collector
        self.request_count += 1
        self.last_activity = datetime.now()
        await self._set_phase(Phase.PROCESSING)

        line = _LINE_BREAKS.sub(' ', collector.request)
        if self._transcript:
            self._transcript.write_event(f"Request: {line}")

        try:
            await self._controller.send_input(line)
        except SessionClosedError as e:
            if self._collector is collector:
                self._collector = None
            self._record_error(e, {'request': collector.request})
            raise

    # Output handling

    async def _handle_stdout(self, text: str):
        if self._transcript:
            self._transcript.write_output(text, 'stdout')
        await self._apply(self._classifier.feed(text))

    async def _handle_stderr(self, text: str):
        if self._transcript:
            self._transcript.write_output(text, 'stderr')

    async def _apply(self, chunks: List[ClassifiedChunk]):
        """Apply classified output to the phase and the active collector"""
        for chunk in chunks:
            if chunk.kind == ChunkKind.LOADING:
                await self._set_phase(Phase.LOADING_PROMPT)
            elif chunk.kind == ChunkKind.READY:
                await self._complete_exchange()
            elif chunk.kind == ChunkKind.CONTENT:
                if self._phase in (Phase.PROCESSING, Phase.LOADING_PROMPT) and self._collector:
                    await self._collector.put(chunk.text)
                else:
                    logger.debug(f"Session {self.id} ignoring output in {self._phase.value}: {chunk.text!r}")

    async def _complete_exchange(self):
        if self._phase not in (Phase.STARTING, Phase.LOADING_PROMPT, Phase.PROCESSING):
            return
        collector, self._collector = self._collector, None
        await self._set_phase(Phase.READY_FOR_INPUT)
        if collector:
            self.last_activity = datetime.now()
            await collector.finish()

    async def _handle_exit(self, exit_code: Optional[int]):
        """Close the session once gemma has exited and its output is drained"""
        await self._apply(self._classifier.flush())
        self._exit_code = exit_code

        if self._transcript:
            self._transcript.write_event(f"child process exited with code {exit_code}")

        collector, self._collector = self._collector, None
        await self._set_phase(Phase.CLOSED)

        if collector:
            error = SessionClosedError(
                f"Gemma exited with code {exit_code} during a request",
                exit_code=exit_code,
                partial_response=list(collector.chunks)
            )
            self._record_error(error, {'request': collector.request})
            await collector.fail(error)

        self._close_transcript()
        logger.info(f"Session {self.id} closed (exit code {exit_code})")

    async def _set_phase(self, phase: Phase) -> bool:
        """Move to ``phase`` if allowed and wake every waiter"""
        async with self._phase_changed:
            current = self._phase
            if phase == current:
                return False
            if current == Phase.CLOSED:
                return False
            if phase != Phase.CLOSED and phase not in _TRANSITIONS[current]:
                logger.debug(f"Session {self.id} ignoring transition {current.value} -> {phase.value}")
                return False
            self._phase = phase
            self._phase_changed.notify_all()
        logger.debug(f"Session {self.id} phase {current.value} -> {phase.value}")
        return True

    # Bookkeeping

    def _record_error(self, error: Exception, context: Dict = None):
        self.error_handler.handle_error(error, context, session_id=self.id)
        if self._transcript:
            self._transcript.write_event(f"Error: {type(error).__name__}: {error}")

    def _close_transcript(self):
        if self._transcript:
            self._transcript.close()

    def get_process_info(self) -> dict:
        """Get information about the gemma process"""
        return self._controller.get_process_info()

    def to_dict(self) -> dict:
        """Convert session to dictionary representation"""
        return {
            "id": self.id,
            "phase": self._phase.value,
            "busy": self.is_busy,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "request_count": self.request_count,
            "exit_code": self._exit_code,
            "command": self._controller.command,
            "error_count": self.error_handler.get_error_stats()['total_errors'],
        }


async def start(config: Optional[Config] = None, session_id: Optional[str] = None) -> Session:
    """Spawn gemma and return a session in phase STARTING"""
    session = Session(config, session_id=session_id)
    await session.start()
    return session
