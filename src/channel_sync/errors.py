"""Error kinds surfaced by channel sync components."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ChannelSyncError(Exception):
    """Base channel sync error."""

    message: str
    code: str = "channel_sync_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class NotFoundError(ChannelSyncError):
    """Referenced channel, group or item does not exist. Never retried."""

    code: str = "not_found"


@dataclass(slots=True)
class PolicyRejectedError(ChannelSyncError):
    """Operation refused by configured policy, for example a deny-listed channel."""

    code: str = "policy_rejected"


@dataclass(slots=True)
class TransientContentionError(ChannelSyncError):
    """Lock contention or timeout that is safe to retry."""

    code: str = "transient_contention"
    attempt: int = 0


@dataclass(slots=True)
class FatalIngestionError(ChannelSyncError):
    """Ingestion transaction still failed after the retry ceiling."""

    code: str = "fatal"
    attempts: int = 0


@dataclass(slots=True)
class IntegrityViolationError(ChannelSyncError):
    """Constraint failure outside the retry-eligible set."""

    code: str = "integrity_violation"
