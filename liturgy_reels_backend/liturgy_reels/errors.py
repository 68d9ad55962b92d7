"""
Failure taxonomy for a production session.

Soft failures (AssetGenerationError) are collected and reported after a media
run; everything else stops forward progress and moves the session to Error.
"""
from typing import Optional


class StudioError(Exception):
    """Base class for every failure surfaced by the studio."""


class StateTransitionError(StudioError):
    """Raised when an operation would make an illegal state transition."""


class PrerequisiteError(StudioError):
    """Raised when an operation is started before its input exists."""


class SourceFetchError(StudioError):
    """Source text could not be fetched. Recoverable while a fallback remains."""


class ScriptGenerationError(StudioError):
    pass


class QuotaExceededError(StudioError):
    """A generative backend's usage allowance is exhausted."""

    remediation = "Re-authorize or select different API credentials, then retry."

    def __init__(self, backend: str, detail: str = ""):
        self.backend = backend
        self.detail = detail
        super().__init__(f"{backend} quota exceeded: {detail}" if detail else f"{backend} quota exceeded")


class AssetGenerationError(StudioError):
    """One synthesis unit failed. The batch continues."""

    def __init__(self, detail: str, block_id: Optional[str] = None, kind: Optional[str] = None):
        self.detail = detail
        self.block_id = block_id
        self.kind = kind
        super().__init__(detail)

    def summary(self) -> str:
        if self.block_id and self.kind:
            return f"Failed {self.kind} for {self.block_id}: {self.detail}"
        return self.detail


class TimelineGenerationError(StudioError):
    pass


class TransportError(StudioError):
    """Storage call failed. Detail is kept raw since it usually points at configuration."""

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        self.status_code = status_code
        msg = f"Transport failed ({status_code}): {detail}" if status_code else f"Transport failed: {detail}"
        super().__init__(msg)
