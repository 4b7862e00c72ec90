"""
Data models for storage layer.

Defines redeem requests, the used-key ledger and submitter cooldowns.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class RequestStatus(Enum):
    """Lifecycle states of a redeem request."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        """APPROVED and REJECTED can never be left."""
        return self is not RequestStatus.PENDING


class ThrottleScope(Enum):
    """Which throttle policy guards a submission."""
    SUBMITTER = "submitter"  # command path, keyed by user identity
    ORIGIN = "origin"        # form path, keyed by client address


@dataclass(frozen=True)
class RedeemDraft:
    """User input for a new redeem request, before validation.

    `identity` is the throttle key: a Discord user id for SUBMITTER scope,
    a client address for ORIGIN scope.
    """
    name: str
    redeem_key: str
    invite_link: str
    identity: str
    scope: ThrottleScope = ThrottleScope.ORIGIN
    order_id: Optional[str] = None
    submitter_address: Optional[str] = None
    submitter_agent: Optional[str] = None


@dataclass(frozen=True)
class RedeemRequest:
    """Persisted redeem request.

    Every field except `status` is fixed at creation.
    """
    id: int
    name: str
    redeem_key: str
    invite_link: str
    contact_email: str
    status: RequestStatus
    submitted_at: datetime
    submitter_address: Optional[str] = None
    submitter_agent: Optional[str] = None
    order_id: Optional[str] = None
    submitter_identity: Optional[str] = None


@dataclass(frozen=True)
class UsedKey:
    """Append-only ledger entry marking a redeem key as consumed."""
    redeem_key: str
    used_at: datetime


@dataclass(frozen=True)
class Cooldown:
    """Last accepted submission time for one submitter identity."""
    identity: str
    last_request_at: datetime
