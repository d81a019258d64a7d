"""
Core components for Gemma Bridge

Contains the session state machine and response collection.
"""

from .session import Session, Phase, start
from .collector import ResponseCollector, ResponseStream

__all__ = ["Session", "Phase", "start", "ResponseCollector", "ResponseStream"]
