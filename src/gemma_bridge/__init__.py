"""
Gemma Bridge - Interactive session wrapper for the gemma CLI

Runs the gemma inference binary as a child process, feeds it prompts over
stdin and turns its stdout back into response text.
"""

__version__ = "1.0.0"

from .core.session import Session, Phase, start
from .core.collector import ResponseStream
from .process_control.process_controller import ProcessController
from .utils.config import Config, SessionConfig
from .utils.error_handler import (
    GemmaBridgeError,
    SpawnError,
    NotReadyError,
    BusyError,
    SessionTimeoutError,
    SessionClosedError,
    ClosedSessionError,
)

__all__ = [
    "Session",
    "Phase",
    "start",
    "ResponseStream",
    "ProcessController",
    "Config",
    "SessionConfig",
    "GemmaBridgeError",
    "SpawnError",
    "NotReadyError",
    "BusyError",
    "SessionTimeoutError",
    "SessionClosedError",
    "ClosedSessionError",
]
