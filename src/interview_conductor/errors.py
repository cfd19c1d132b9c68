"""
Error taxonomy for the interview conductor.

Fatal errors abort the current operation and end the session. Recoverable
errors are contained by the component that detects them and never change
the interview stage.
"""

from typing import Any


class InterviewError(Exception):
    """
    Base class for all interview conductor errors.

    Attributes:
        code: Short machine-readable error code.
        message: Human-readable description.
        details: Extra debugging context.
    """

    code = "INTERVIEW_ERROR"
    fatal = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(f"[{self.code}] {message}")


class FatalInterviewError(InterviewError):
    """An error that corrupts orchestration and must end the session."""

    code = "FATAL"
    fatal = True


class ProtocolDesyncError(FatalInterviewError):
    """An event arrived that nothing was expecting."""

    code = "PROTOCOL_DESYNC"


class PendingReplyConflictError(ProtocolDesyncError):
    """A reply was requested while another one is still in flight."""

    code = "PENDING_REPLY_CONFLICT"


class ConfigurationMissingError(FatalInterviewError):
    """Required session configuration (company, role, script fields) is absent."""

    code = "CONFIGURATION_MISSING"


class RecoverableInterviewError(InterviewError):
    """An error the detecting component can contain."""

    code = "RECOVERABLE"


class EvaluatorMalformedError(RecoverableInterviewError):
    """Scorer output failed schema validation."""

    code = "EVALUATOR_MALFORMED"


class TransientNetworkError(RecoverableInterviewError):
    """A model or evaluator call failed."""

    code = "TRANSIENT_NETWORK"


class EvaluatorTimeoutError(TransientNetworkError):
    """The evaluator did not answer within its time bound."""

    code = "EVALUATOR_TIMEOUT"


class ModelOutputError(RecoverableInterviewError):
    """The model returned empty or unparseable output."""

    code = "MODEL_OUTPUT"


class PolicyViolationError(RecoverableInterviewError):
    """Model output broke a behavioural contract and was withheld."""

    code = "POLICY_VIOLATION"
