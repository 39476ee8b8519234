"""Error types shared across the release pipeline.

Every failure the pipeline can report derives from :class:`RidpackError` and
carries the process exit code the command line should terminate with. Only
:class:`ToolFailure` relays a code other than ``1``: it forwards the exit
status of the external tool verbatim.
"""

from __future__ import annotations

__all__ = [
    "ArchiveError",
    "ConfigurationError",
    "DownloadError",
    "IntegrityError",
    "PipelineCancelled",
    "RidpackError",
    "StaleCacheError",
    "ToolFailure",
]


class RidpackError(RuntimeError):
    """Raised when the pipeline cannot continue."""

    exit_code: int = 1

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(RidpackError):
    """Raised for missing or invalid inputs and conflicting options."""


class ArchiveError(RidpackError):
    """Raised when deleting, extracting or writing files fails."""


class DownloadError(RidpackError):
    """Raised when a download cannot be completed."""


class IntegrityError(RidpackError):
    """Raised when a produced package cannot be located or identified."""


class StaleCacheError(RidpackError):
    """Raised when the build cache is stale and may not be rebuilt."""


class PipelineCancelled(RidpackError):
    """Raised when the run observes a cancellation request."""

    exit_code = 130

    def __init__(self, message: str = "Operation cancelled.") -> None:
        super().__init__(message)


class ToolFailure(RidpackError):
    """Raised when an external tool exits with a non-zero status."""

    def __init__(self, tool: str, exit_code: int) -> None:
        super().__init__(
            f"'{tool}' finished with exit code {exit_code}.", exit_code=exit_code
        )
        self.tool = tool
