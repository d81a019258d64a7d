"""
Gemma Process Controller

Manages the gemma process lifecycle, input/output handling, and monitoring.
"""

import asyncio
import codecs
import os
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from ..utils.error_handler import SessionClosedError, SpawnError
from ..utils.logging_setup import get_logger
from ..utils.process_monitor import collect_process_metrics

logger = get_logger('process_controller')

OutputCallback = Callable[[str], Awaitable[None]]
ExitCallback = Callable[[Optional[int]], Awaitable[None]]


class ProcessController:
    """Controls gemma process execution and I/O"""

    def __init__(self, command: List[str], working_directory: Optional[str] = None,
                 read_size: int = 4096, encoding: str = "utf-8"):
        self.command = list(command)
        self.working_directory = Path(working_directory) if working_directory else None
        self.read_size = read_size
        self.encoding = encoding
        self.process: Optional[asyncio.subprocess.Process] = None
        self.output_callback: Optional[OutputCallback] = None
        self.error_callback: Optional[OutputCallback] = None
        self.exit_callback: Optional[ExitCallback] = None
        self._output_task: Optional[asyncio.Task] = None
        self._error_task: Optional[asyncio.Task] = None
        self._exit_task: Optional[asyncio.Task] = None

    async def start_process(self, session_id: str):
        """Start the gemma process. Raises SpawnError if it cannot be started."""
        if self.process is not None:
            raise SpawnError(f"Process already started for session {session_id}")

        binary = Path(self.command[0])
        if not binary.is_file():
            raise SpawnError(f"Gemma binary not found: {binary}")

        logger.info(f"Starting gemma process for session {session_id}")
        logger.info(f"Command: {' '.join(self.command)}")
        if self.working_directory:
            logger.info(f"Working directory: {self.working_directory}")

        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_directory,
                env=dict(os.environ, PYTHONUNBUFFERED="1")
            )
        except OSError as e:
            raise SpawnError(f"Failed to start gemma process {binary}: {e}") from e

        self._start_output_monitoring()
        logger.info(f"Gemma process started with PID {self.process.pid}")

    def _start_output_monitoring(self):
        """Start tasks that monitor stdout, stderr and process exit"""
        self._output_task = asyncio.create_task(
            self._monitor_stream(self.process.stdout, 'stdout', lambda: self.output_callback)
        )
        self._error_task = asyncio.create_task(
            self._monitor_stream(self.process.stderr, 'stderr', lambda: self.error_callback)
        )
        self._exit_task = asyncio.create_task(self._monitor_exit())

    async def _monitor_stream(self, stream: asyncio.StreamReader, name: str,
                              get_callback: Callable[[], Optional[OutputCallback]]):
        """Read a stream in arbitrary chunks until EOF, decoding incrementally"""
        decoder = codecs.getincrementaldecoder(self.encoding)(errors='replace')
        try:
            while True:
                data = await stream.read(self.read_size)
                if not data:
                    break
                text = decoder.decode(data)
                callback = get_callback()
                if text and callback:
                    await callback(text)

            tail = decoder.decode(b'', final=True)
            callback = get_callback()
            if tail and callback:
                await callback(tail)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error monitoring {name}: {e}")
        logger.debug(f"Gemma {name} closed")

    async def _monitor_exit(self):
        """Wait until the process is gone and its output fully delivered"""
        return_code = await self.process.wait()
        await asyncio.gather(self._output_task, self._error_task, return_exceptions=True)
        if self.process.stdin and not self.process.stdin.is_closing():
            self.process.stdin.close()
        logger.info(f"Gemma process exited with code {return_code}")

        if self.exit_callback:
            try:
                await self.exit_callback(return_code)
            except Exception as e:
                logger.error(f"Error in exit callback: {e}")
        return return_code

    async def send_input(self, text: str):
        """Send a line of input to the gemma process"""
        if not self.is_running() or self.process.stdin is None:
            raise SessionClosedError("Cannot send input: process not running")

        if not text.endswith('\n'):
            text += '\n'

        logger.debug(f"Sending input to gemma: {text.rstrip()}")
        try:
            self.process.stdin.write(text.encode(self.encoding))
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise SessionClosedError("Cannot send input: process stdin is closed") from e

    def is_running(self) -> bool:
        """Check if the gemma process is running"""
        return self.process is not None and self.process.returncode is None

    def get_process_info(self) -> dict:
        """Get process information"""
        if not self.process:
            return {"status": "not_started", "pid": None}

        if self.process.returncode is None:
            info = {"status": "running", "pid": self.process.pid}
            metrics = collect_process_metrics(self.process.pid)
            if metrics:
                info["metrics"] = metrics.to_dict()
            return info
        return {"status": "terminated", "pid": self.process.pid, "exit_code": self.process.returncode}

    async def wait_for_exit(self) -> Optional[int]:
        """Wait until the process has exited and the exit callback has run"""
        if self._exit_task is None:
            return None
        return await asyncio.shield(self._exit_task)

    async def terminate_process(self, timeout: float = 5.0) -> Optional[int]:
        """Terminate the gemma process, escalating to kill after ``timeout``"""
        if not self.process:
            return None

        if self.process.returncode is None:
            logger.info(f"Terminating gemma process (PID: {self.process.pid})")
            try:
                self.process.terminate()
                try:
                    await asyncio.wait_for(self.process.wait(), timeout=timeout)
                    logger.info("Gemma process terminated gracefully")
                except asyncio.TimeoutError:
                    logger.warning("Gemma process did not terminate gracefully, forcing kill")
                    self.process.kill()
                    await self.process.wait()
                    logger.info("Gemma process killed")
            except ProcessLookupError:
                logger.debug("Gemma process already gone")

        return await self.wait_for_exit()

    def set_output_callback(self, callback: OutputCallback):
        """Set coroutine callback for stdout"""
        self.output_callback = callback

    def set_error_callback(self, callback: OutputCallback):
        """Set coroutine callback for stderr"""
        self.error_callback = callback

    def set_exit_callback(self, callback: ExitCallback):
        """Set coroutine callback invoked once with the exit code"""
        self.exit_callback = callback
