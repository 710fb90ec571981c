"""Error taxonomy for review and generation runs.

``recoverable`` marks failures that stop the current run but leave already
computed work worth persisting as a partial result. Cancellation is not an
error and has no exception type.
"""


class WafrError(Exception):
    """Base class for expected failures of the engine."""

    def __init__(self, message: str, recoverable: bool = False, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable
        self.cause = cause


class InputValidationError(WafrError):
    """Missing caller identity, missing document, wrong modality or empty selection."""


class WorkItemNotFoundError(InputValidationError):
    """No work item exists for the given user and file."""


class TaxonomyUnavailableError(WafrError):
    """The best-practice taxonomy or the workload answer listing could not be loaded."""


class RetrievalFailure(WafrError):
    """The knowledge-retrieval provider failed for a question."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message, recoverable=True, cause=cause)


class InferenceFailure(WafrError):
    """The inference call failed in transport or returned an unusable envelope."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message, recoverable=True, cause=cause)


class ResponseMalformed(WafrError):
    """Model output could not be parsed into the expected structure."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message, recoverable=True, cause=cause)


class StorageFailure(WafrError):
    """The document store could not be read or written."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message, recoverable=False, cause=cause)


def is_recoverable(error: BaseException) -> bool:
    """Whether a failure inside a run ends it with a partial result instead of propagating."""
    return not isinstance(error, WafrError) or error.recoverable
