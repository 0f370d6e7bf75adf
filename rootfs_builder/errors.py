"""Error types for rootfs_builder.

Every error carries a stable ``code`` string for programmatic handling,
alongside the human-readable message.
"""

NOT_FOUND = "not_found"
CONFIG_ERROR = "config_error"
RESOURCE_ERROR = "resource_error"
EXECUTION_ERROR = "execution_error"
COMMAND_TIMEOUT = "command_timeout"


class RootfsBuilderError(Exception):
    """Base error for rootfs_builder operations."""

    def __init__(self, message: str, code: str = "rootfs_builder_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class NotFoundError(RootfsBuilderError):
    """A platform, project, recipe or rootfs does not exist (or is empty)."""

    def __init__(self, message: str, code: str = NOT_FOUND) -> None:
        super().__init__(message, code=code)


class ConfigError(RootfsBuilderError):
    """A definition is invalid or lacks a required field."""

    def __init__(self, message: str, code: str = CONFIG_ERROR) -> None:
        super().__init__(message, code=code)


class ResourceError(RootfsBuilderError):
    """A required filesystem resource could not be created."""

    def __init__(self, message: str, code: str = RESOURCE_ERROR) -> None:
        super().__init__(message, code=code)


class ExecutionError(RootfsBuilderError):
    """An external command failed to start or exited non-zero."""

    def __init__(
        self,
        message: str,
        command: str,
        exit_code: int | None = None,
        code: str = EXECUTION_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.command = command
        self.exit_code = exit_code


__all__ = [
    "COMMAND_TIMEOUT",
    "CONFIG_ERROR",
    "EXECUTION_ERROR",
    "NOT_FOUND",
    "RESOURCE_ERROR",
    "ConfigError",
    "ExecutionError",
    "NotFoundError",
    "ResourceError",
    "RootfsBuilderError",
]
