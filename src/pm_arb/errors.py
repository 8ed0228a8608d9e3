"""Typed errors raised by the detection core."""
from __future__ import annotations


class PmArbError(Exception):
    """Base class for detection-core errors."""


class FeeConfigUnavailableError(PmArbError):
    """No fee schedule is configured for a platform, so spreads on it cannot be netted."""

    def __init__(self, platform: str):
        super().__init__(f"no fee schedule configured for platform {platform!r}")
        self.platform = platform


class RunAlreadyActiveError(PmArbError):
    """Another detection run is in flight; the caller must not start a new one."""

    def __init__(self, run_type: str, active_run_id: int | None = None):
        msg = f"a {run_type!r} run is already active"
        if active_run_id is not None:
            msg += f" (run id {active_run_id})"
        super().__init__(msg)
        self.run_type = run_type
        self.active_run_id = active_run_id


class ReadPathError(PmArbError):
    """A stored-result read failed; surfaced as an indicator on an empty or partial result."""

    def __init__(self, query: str, reason: str):
        super().__init__(f"{query}: {reason}")
        self.query = query
        self.reason = reason
