"""Core exceptions for database transfer operations."""


class TransferEngineError(Exception):
    """Base exception for database transfer operations."""


class RemoteCommandError(TransferEngineError):
    """Remote command execution failed or timed out."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class UnsafeIdentifierError(TransferEngineError):
    """A table, collection or key pattern failed shell/query safety validation."""


class InvalidTransitionError(TransferEngineError):
    """Transfer record status change not allowed by the state machine."""


class TransferStoreError(TransferEngineError):
    """Persisting or loading a transfer record failed."""


class RelocationError(TransferEngineError):
    """Copying a dump artifact between servers failed."""


class TransferAlreadyInProgressError(TransferStoreError):
    """A non-terminal transfer already exists for the same source database."""


class DumpFormatError(TransferEngineError):
    """A dump artifact does not follow its declared format."""
