"""Error types raised across the summary pipeline."""
from typing import List, Optional


class DigestError(Exception):
    """Base class for all summary pipeline failures."""


class ConfigurationError(DigestError):
    """Raised at startup when required settings are missing or invalid."""

    def __init__(self, keys: List[str], detail: Optional[str] = None):
        self.keys = list(keys)
        self.detail = detail
        message = "Missing/invalid: " + ", ".join(self.keys)
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class PartialQueryError(DigestError):
    """A single windowed-aggregate query failed."""


class GenerationServiceError(DigestError):
    """The text-generation service call failed or returned an unusable body."""


class WriteError(DigestError):
    """Writing the summary point back to the store failed."""


class StageError(DigestError):
    """Wraps a failure with the pipeline stage it happened in."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {cause}")
