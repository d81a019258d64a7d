"""
Transcript Writer for Gemma Bridge

Append-only log of everything the child process printed plus lifecycle
events, written through a dedicated logger so records land in the order
they were observed.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..utils.logging_setup import get_logger

logger = get_logger('transcript')


class TranscriptWriter:
    """Scoped, ordered transcript sink for one session.

    Raw output chunks are written verbatim (no separators added), lifecycle
    events as one timestamped line each. Every record is flushed as it is
    written, so the file survives a crash of the child process.
    """

    def __init__(self, path: str, session_id: str):
        self.path = Path(path)
        self.session_id = session_id
        self._handler: Optional[logging.FileHandler] = None
        # Not registered with logging.getLogger: private to this writer and
        # freed with it, with no parent to propagate to
        self._logger = logging.Logger(f'gemma_bridge.transcript.{session_id}', logging.DEBUG)
        self._logger.propagate = False

    @property
    def is_open(self) -> bool:
        return self._handler is not None

    def open(self):
        """Open the transcript file for appending"""
        if self._handler:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.path, mode='a', encoding='utf-8')
        handler.terminator = ''
        handler.setFormatter(logging.Formatter('%(message)s'))
        self._logger.addHandler(handler)
        self._handler = handler
        logger.debug(f"Transcript for session {self.session_id} opened at {self.path}")

    def write_output(self, text: str, stream: str = "stdout"):
        """Append a raw chunk read from the child's stdout or stderr"""
        if not self._handler or not text:
            return
        self._logger.info(text, extra={'stream': stream})

    def write_event(self, message: str):
        """Append a lifecycle event line"""
        if not self._handler:
            return
        timestamp = datetime.now().isoformat(timespec='milliseconds')
        self._logger.info(f"\n[{timestamp}] [{self.session_id}] {message}\n")

    def write_start(self, command: List[str]):
        """Record the command line the child was started with"""
        self.write_event("Starting gemma process with the following arguments:")
        for argument in command:
            self.write_event(f"  {argument}")

    def close(self):
        """Flush and close the transcript file"""
        handler, self._handler = self._handler, None
        if handler is None:
            return
        self._logger.removeHandler(handler)
        handler.flush()
        handler.close()
        logger.debug(f"Transcript for session {self.session_id} closed")
