"""
Error types raised by the generation pipeline.

Each class maps to a distinct failure cause so the API layer can show a
specific reason (timeout, cancellation, clip too short, upload failure).
Plain validation problems use ValueError like the rest of the codebase.
"""


class GenerationError(Exception):
    """Base class for failures inside a generation job."""
    pass


class AssetNotFoundError(GenerationError):
    """The source media reference does not resolve to an uploaded file."""
    pass


class MediaPreparationError(GenerationError):
    """Trimming, scaling or frame extraction failed."""
    pass


class TranscodeError(MediaPreparationError):
    """The transcoder process exited non-zero or timed out."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class ProviderSubmissionError(GenerationError):
    """The provider rejected the generation request or the upload."""
    pass


class StaleUploadError(ProviderSubmissionError):
    """The upload handle was still rejected after a forced re-upload."""
    pass


class ProviderExecutionError(GenerationError):
    """The provider accepted the task but reported failure."""
    pass


class ProviderTimeoutError(ProviderExecutionError):
    """The provider did not finish within the polling window."""
    pass


class ProviderCancelledError(ProviderExecutionError):
    """The provider reported the task as cancelled."""
    pass


class DownloadError(GenerationError):
    """The finished artifact could not be retrieved."""
    pass


class InsufficientCreditsError(Exception):
    """
    Raised by the orchestrator when a submission cannot be paid for.

    Not a GenerationError: no job exists yet when this is raised.
    """

    def __init__(self, credits_needed: int, credits_available: int):
        super().__init__(
            f"Insufficient credits: need {credits_needed}, have {credits_available}"
        )
        self.credits_needed = credits_needed
        self.credits_available = credits_available


class AccountConflictError(Exception):
    """
    Raised by an account repository when the stored row changed after it was read.

    The caller re-reads the account and recomputes the change.
    """

    def __init__(self, account_id: str):
        super().__init__(f"Credit account {account_id} was modified concurrently")
        self.account_id = account_id


class EnhancementError(Exception):
    """The language model call failed or returned no text."""
    pass
