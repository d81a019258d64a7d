"""
Utility modules for Gemma Bridge

Contains configuration management, logging setup, error types and process metrics.
"""

from .config import Config, SessionConfig, ExchangeConfig, MarkerConfig, LoggingConfig
from .logging_setup import setup_logging, get_logger
from .error_handler import (
    ErrorHandler,
    ErrorInfo,
    ErrorSeverity,
    ErrorCategory,
    GemmaBridgeError,
    SpawnError,
    NotReadyError,
    BusyError,
    SessionTimeoutError,
    SessionClosedError,
    ClosedSessionError,
)
from .process_monitor import ProcessMetrics, collect_process_metrics

__all__ = [
    "Config",
    "SessionConfig",
    "ExchangeConfig",
    "MarkerConfig",
    "LoggingConfig",
    "setup_logging",
    "get_logger",
    "ErrorHandler",
    "ErrorInfo",
    "ErrorSeverity",
    "ErrorCategory",
    "GemmaBridgeError",
    "SpawnError",
    "NotReadyError",
    "BusyError",
    "SessionTimeoutError",
    "SessionClosedError",
    "ClosedSessionError",
    "ProcessMetrics",
    "collect_process_metrics",
]
