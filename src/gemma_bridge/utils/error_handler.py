"""
Error taxonomy and error bookkeeping for Gemma Bridge

Defines the exceptions raised by a session and an ErrorHandler that
classifies, logs and records them. Recovery is always left to the caller.
"""

import subprocess
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .logging_setup import get_logger

logger = get_logger('error_handler')


class ErrorSeverity(Enum):
    """Error severity levels"""
    LOW = "low"           # Caller can simply retry later
    MEDIUM = "medium"     # Exchange lost, session still usable
    HIGH = "high"         # Session unusable, build a new one
    CRITICAL = "critical" # Gemma cannot be run at all


class ErrorCategory(Enum):
    """Categories of errors"""
    PROCESS = "process"         # Child process could not start or has exited
    STATE = "state"             # Request issued in the wrong phase
    TIMEOUT = "timeout"         # Deadline elapsed while waiting
    CONFIGURATION = "config"    # Configuration problems
    INTERNAL = "internal"       # Internal application errors


class GemmaBridgeError(Exception):
    """Base class for every error raised by a session"""

    category = ErrorCategory.INTERNAL
    severity = ErrorSeverity.MEDIUM
    recoverable = True


class SpawnError(GemmaBridgeError):
    """The gemma binary is missing or the OS refused to start it"""

    category = ErrorCategory.PROCESS
    severity = ErrorSeverity.CRITICAL
    recoverable = False


class NotReadyError(GemmaBridgeError):
    """A request was issued while the session was not ready for input"""

    category = ErrorCategory.STATE
    severity = ErrorSeverity.LOW

    def __init__(self, message: str, phase=None):
        super().__init__(message)
        self.phase = phase


class BusyError(NotReadyError):
    """A request was issued while another exchange is still outstanding"""


class SessionTimeoutError(GemmaBridgeError, TimeoutError):
    """Readiness or a response was not observed before the deadline"""

    category = ErrorCategory.TIMEOUT
    severity = ErrorSeverity.MEDIUM


class SessionClosedError(GemmaBridgeError):
    """The child process exited; the session accepts no further requests.

    ``partial_response`` holds whatever response content had been collected
    for the outstanding exchange before the exit.
    """

    category = ErrorCategory.PROCESS
    severity = ErrorSeverity.HIGH
    recoverable = False

    def __init__(self, message: str, exit_code: Optional[int] = None,
                 partial_response: Optional[List[str]] = None):
        super().__init__(message)
        self.exit_code = exit_code
        self.partial_response = partial_response or []


class ClosedSessionError(SessionClosedError, NotReadyError):
    """A request was issued after the session closed"""

    def __init__(self, message: str, exit_code: Optional[int] = None, phase=None):
        super().__init__(message, exit_code=exit_code)
        self.phase = phase


@dataclass
class ErrorInfo:
    """Information about an error"""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    recoverable: bool = True
    context: Dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    session_id: Optional[str] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging"""
        return {
            'error_type': type(self.error).__name__,
            'category': self.category.value,
            'severity': self.severity.value,
            'message': self.message,
            'recoverable': self.recoverable,
            'context': self.context,
            'timestamp': self.timestamp,
            'session_id': self.session_id,
            'traceback': ''.join(traceback.format_exception(
                type(self.error), self.error, self.error.__traceback__
            )) if self.error.__traceback__ else None
        }


class ErrorDetector:
    """Classifies exceptions into category and severity"""

    @classmethod
    def classify_error(cls, error: Exception, context: Dict = None) -> ErrorInfo:
        """Classify an error and determine its properties"""
        if isinstance(error, GemmaBridgeError):
            category = error.category
            severity = error.severity
            recoverable = error.recoverable
        elif isinstance(error, (subprocess.SubprocessError, BrokenPipeError,
                                ConnectionResetError, ProcessLookupError)):
            category = ErrorCategory.PROCESS
            severity = ErrorSeverity.HIGH
            recoverable = False
        elif isinstance(error, TimeoutError):
            category = ErrorCategory.TIMEOUT
            severity = ErrorSeverity.MEDIUM
            recoverable = True
        elif isinstance(error, (FileNotFoundError, PermissionError, KeyError, ValueError)):
            category = ErrorCategory.CONFIGURATION
            severity = ErrorSeverity.HIGH
            recoverable = False
        elif isinstance(error, MemoryError):
            category = ErrorCategory.INTERNAL
            severity = ErrorSeverity.CRITICAL
            recoverable = False
        else:
            category = ErrorCategory.INTERNAL
            severity = ErrorSeverity.MEDIUM
            recoverable = False

        return ErrorInfo(
            error=error,
            category=category,
            severity=severity,
            message=str(error) or type(error).__name__,
            recoverable=recoverable,
            context=context or {},
        )


class ErrorHandler:
    """Records and logs errors raised by sessions"""

    MAX_HISTORY = 1000

    def __init__(self):
        self.detector = ErrorDetector()
        self.error_history: List[ErrorInfo] = []
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict:
        return {
            'total_errors': 0,
            'errors_by_category': {cat.value: 0 for cat in ErrorCategory},
            'errors_by_severity': {sev.value: 0 for sev in ErrorSeverity},
        }

    def handle_error(self, error: Exception, context: Dict = None,
                     session_id: str = None) -> ErrorInfo:
        """Classify, log and record an error. Returns the recorded ErrorInfo."""
        error_info = self.detector.classify_error(error, context)
        error_info.session_id = session_id

        self._update_stats(error_info)

        self.error_history.append(error_info)
        if len(self.error_history) > self.MAX_HISTORY:
            self.error_history = self.error_history[-self.MAX_HISTORY:]

        prefix = f"[{session_id}] " if session_id else ""
        if error_info.severity == ErrorSeverity.CRITICAL:
            logger.critical(f"{prefix}Critical error: {error_info.message}")
        elif error_info.severity == ErrorSeverity.HIGH:
            logger.error(f"{prefix}High severity error: {error_info.message}")
        elif error_info.severity == ErrorSeverity.MEDIUM:
            logger.warning(f"{prefix}Medium severity error: {error_info.message}")
        else:
            logger.info(f"{prefix}Low severity error: {error_info.message}")

        return error_info

    def _update_stats(self, error_info: ErrorInfo):
        """Update error statistics"""
        self.stats['total_errors'] += 1
        self.stats['errors_by_category'][error_info.category.value] += 1
        self.stats['errors_by_severity'][error_info.severity.value] += 1

    def get_recent_errors(self, count: int = 10) -> List[ErrorInfo]:
        """Get recent errors"""
        return self.error_history[-count:] if self.error_history else []

    def get_error_stats(self) -> Dict:
        """Get error statistics"""
        return {
            'total_errors': self.stats['total_errors'],
            'errors_by_category': dict(self.stats['errors_by_category']),
            'errors_by_severity': dict(self.stats['errors_by_severity']),
        }

    def get_session_errors(self, session_id: str) -> List[ErrorInfo]:
        """Get errors for a specific session"""
        return [error for error in self.error_history if error.session_id == session_id]

    def clear_error_history(self):
        """Clear error history"""
        self.error_history.clear()
        self.stats = self._empty_stats()
