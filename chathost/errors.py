"""
Error taxonomy for chathost.

Permission, cooldown and gate refusals are results (see
``chathost.security.policy.ReasonCode``), not exceptions. Everything
below is raised.
"""

from typing import Any


class ChatHostError(Exception):
    """Base error carrying a stable error code."""

    code = "CHATHOST_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidIdentityError(ChatHostError):
    """A JID could not be normalized."""

    code = "INVALID_IDENTITY"


class RegistrationError(ChatHostError):
    """A command spec was malformed or collided with a registered name."""

    code = "REGISTRATION_ERROR"


class CommandExecutionError(ChatHostError):
    """A command handler raised. The original exception is ``__cause__``."""

    code = "HANDLER_FAILURE"

    def __init__(self, command: str, cause: BaseException):
        super().__init__(
            f"Command '{command}' failed: {cause}",
            {"command": command, "cause": type(cause).__name__},
        )
        self.command = command
        self.cause = cause


class StageError(ChatHostError):
    """A pipeline stage raised."""

    code = "STAGE_FAILURE"

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(
            f"Stage '{stage}' failed: {cause}",
            {"stage": stage, "cause": type(cause).__name__},
        )
        self.stage = stage
        self.cause = cause


class RecoveryError(ChatHostError):
    """The error-recovery stage itself failed. Aborts the pipeline run."""

    code = "RECOVERY_FAILURE"

    def __init__(self, cause: BaseException, failed_stage: str | None = None):
        super().__init__(
            f"Error recovery failed: {cause}",
            {"failed_stage": failed_stage, "cause": type(cause).__name__},
        )
        self.cause = cause
        self.failed_stage = failed_stage


class PluginError(ChatHostError):
    """A plugin file could not be imported or its commands registered."""

    code = "PLUGIN_ERROR"
