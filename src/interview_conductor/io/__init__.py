"""
IO module for interview transports.

The console runner lives in ``interview_conductor.io.text_interface``.
"""

from interview_conductor.io.transport import CompletionTransport, TransportBridge

__all__ = ["CompletionTransport", "TransportBridge"]
