"""
Process control components for Gemma Bridge

Contains gemma process management, I/O handling, and monitoring.
"""

from .process_controller import ProcessController

__all__ = ["ProcessController"]
