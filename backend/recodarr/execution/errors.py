"""
Execution-specific errors.

All errors are non-fatal to the application.
They indicate failure for a specific job; the queue keeps running.
"""


class ExecutionError(Exception):
    """
    Base exception for execution failures.

    All execution errors inherit from this.
    """

    pass


class PreFlightCheckError(ExecutionError):
    """
    Pre-flight validation failed.

    Raised before any encoder process is spawned:
    - Input path missing
    - Input file unreadable
    - Encoder binary not available
    """

    pass


class EncodeError(ExecutionError):
    """
    Encoder run failed.

    Raised when the encoder cannot produce the temporary output:
    - Non-zero exit code
    - Process could not be spawned
    - I/O error while reading its output
    """

    def __init__(self, message: str, exit_code=None):
        self.exit_code = exit_code
        super().__init__(message)


class FinalizeError(ExecutionError):
    """
    Committing the temporary output failed.

    Raised when the encode succeeded but the output could not be moved
    into its final location (backup, rename or verification failure).
    """

    pass


class RetryExhaustedError(ExecutionError):
    """Raised when a retried operation failed on every attempt."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
