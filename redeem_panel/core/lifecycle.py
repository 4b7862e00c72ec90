"""
Redeem request lifecycle.

States: PENDING (initial) -> APPROVED | REJECTED (both terminal).

Intake order:
1. Shape validation - every violated rule is reported at once
2. Used-key check - a consumed key is rejected permanently
3. Throttle policy - submitter cooldown or origin rate cap
4. Persist PENDING request, then burn the key
5. Notify the reviewer surface

All failures come back as typed outcomes; nothing is raised to the caller.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import List, Optional, Protocol

from redeem_panel.config.loader import PanelConfig
from redeem_panel.logger import get_logger
from redeem_panel.storage.models import (
    RedeemDraft,
    RedeemRequest,
    RequestStatus,
    ThrottleScope,
)
from redeem_panel.storage.repository import (
    CooldownTracker,
    DuplicateKeyError,
    KeyRegistry,
    RequestStore,
    TransitionResult,
    initialize_schema,
)

from .throttle import OriginRatePolicy, SubmitterCooldownPolicy, ThrottleDecision
from .validation import validate_submission

logger = get_logger(__name__)


class SubmitFailure(Enum):
    """Why a submission was refused."""
    VALIDATION_FAILED = "validation_failed"  # caller can correct the input
    DUPLICATE_KEY = "duplicate_key"          # permanent for that key
    RATE_LIMITED = "rate_limited"            # retry after the window


class DecisionFailure(Enum):
    """Why a reviewer decision was not applied."""
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"  # already decided, informational


@dataclass(frozen=True)
class SubmitOutcome:
    """Result of `RedeemService.submit`."""
    request: Optional[RedeemRequest] = None
    failure: Optional[SubmitFailure] = None
    errors: List[str] = field(default_factory=list)
    throttle: Optional[ThrottleDecision] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def request_id(self) -> Optional[int]:
        return self.request.id if self.request else None


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of `RedeemService.decide`.

    On INVALID_TRANSITION `request` holds the already-decided record so the
    caller can report its current status.
    """
    request: Optional[RedeemRequest] = None
    failure: Optional[DecisionFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class Notifier(Protocol):
    """Reviewer surface told about new and updated requests."""

    def on_created(self, request: RedeemRequest) -> None:
        ...

    def on_status_changed(self, request: RedeemRequest) -> None:
        ...


class RedeemService:
    """Single entrypoint for both intake paths and for reviewer decisions."""

    def __init__(
        self,
        store: RequestStore,
        keys: KeyRegistry,
        cooldowns: CooldownTracker,
        contact_email: str,
        notifier: Optional[Notifier] = None,
        submitter_cooldown: Optional[SubmitterCooldownPolicy] = None,
        origin_rate: Optional[OriginRatePolicy] = None,
    ):
        self.store = store
        self.keys = keys
        self.cooldowns = cooldowns
        self.contact_email = contact_email
        self.notifier = notifier
        self.submitter_cooldown = submitter_cooldown or SubmitterCooldownPolicy()
        self.origin_rate = origin_rate or OriginRatePolicy()

    def check_throttle(self, scope: ThrottleScope, identity: str) -> ThrottleDecision:
        """Apply the policy matching the intake path.

        Exposed so the command surface can refuse before showing its form.
        """
        if scope is ThrottleScope.SUBMITTER:
            return self.submitter_cooldown.check(identity, self.cooldowns)
        return self.origin_rate.check(identity, self.store)

    def submit(self, draft: RedeemDraft) -> SubmitOutcome:
        """Run the intake algorithm for one submission.

        Args:
            draft: Stripped user input plus throttle scope and identity

        Returns:
            SubmitOutcome carrying the new PENDING request or the failure
        """
        errors = validate_submission(draft.name, draft.redeem_key, draft.invite_link)
        if errors:
            logger.info("Rejected submission: validation failed (%s)", "; ".join(errors))
            return SubmitOutcome(failure=SubmitFailure.VALIDATION_FAILED, errors=errors)

        if self.keys.is_used(draft.redeem_key):
            logger.info("Rejected submission: key %s already used", draft.redeem_key)
            return _duplicate_key()

        decision = self.check_throttle(draft.scope, draft.identity)
        if not decision.allowed:
            logger.info(
                "Rejected submission: %s %s throttled for %s",
                draft.scope.value, draft.identity, decision.retry_after,
            )
            return SubmitOutcome(
                failure=SubmitFailure.RATE_LIMITED,
                errors=[decision.message],
                throttle=decision,
            )

        try:
            request_id = self.store.create(draft, self.contact_email)
        except DuplicateKeyError:
            logger.info("Rejected submission: key %s claimed concurrently", draft.redeem_key)
            return _duplicate_key()

        if not self.keys.mark_used(draft.redeem_key):
            logger.warning("Key %s was already in the ledger for request #%s",
                           draft.redeem_key, request_id)

        if draft.scope is ThrottleScope.SUBMITTER:
            self.cooldowns.record_attempt(draft.identity)

        request = self.store.get(request_id)
        logger.info("Created redeem request #%s for key %s", request_id, draft.redeem_key)
        self._notify("on_created", request)
        return SubmitOutcome(request=request)

    def decide(self, request_id: int, decision: RequestStatus) -> DecisionOutcome:
        """Apply a reviewer decision to a PENDING request.

        Args:
            request_id: Request being reviewed
            decision: APPROVED or REJECTED

        Returns:
            DecisionOutcome with the updated request, or NOT_FOUND /
            INVALID_TRANSITION
        """
        result = self.store.set_status(request_id, decision)

        if result is TransitionResult.NOT_FOUND:
            logger.info("Decision on unknown request #%s", request_id)
            return DecisionOutcome(failure=DecisionFailure.NOT_FOUND)

        request = self.store.get(request_id)
        if result is TransitionResult.INVALID_TRANSITION:
            logger.info(
                "Request #%s already %s; ignoring %s",
                request_id, request.status.value, decision.value,
            )
            return DecisionOutcome(request=request, failure=DecisionFailure.INVALID_TRANSITION)

        logger.info("Request #%s %s", request_id, decision.value)
        self._notify("on_status_changed", request)
        return DecisionOutcome(request=request)

    def get(self, request_id: int) -> Optional[RedeemRequest]:
        return self.store.get(request_id)

    def list_requests(self, status: Optional[RequestStatus] = None) -> List[RedeemRequest]:
        return self.store.list_requests(status)

    def list_pending(self) -> List[RedeemRequest]:
        """Pending requests, newest first; used by polling notifiers."""
        return self.store.list_requests(RequestStatus.PENDING)

    def _notify(self, event: str, request: RedeemRequest) -> None:
        if self.notifier is None:
            return
        try:
            getattr(self.notifier, event)(request)
        except Exception:
            # A broken reviewer surface must not fail the submission or decision
            logger.exception("Notifier %s failed for request #%s", event, request.id)


def _duplicate_key() -> SubmitOutcome:
    return SubmitOutcome(
        failure=SubmitFailure.DUPLICATE_KEY,
        errors=["This redeem key has already been used."],
    )


def build_service(config: PanelConfig, notifier: Optional[Notifier] = None) -> RedeemService:
    """Wire repositories and throttle policies from configuration.

    The schema is created if the database is new.
    """
    initialize_schema(config.database_path)
    throttle = config.throttle
    return RedeemService(
        store=RequestStore(config.database_path),
        keys=KeyRegistry(config.database_path),
        cooldowns=CooldownTracker(config.database_path),
        contact_email=config.contact_email,
        notifier=notifier,
        submitter_cooldown=SubmitterCooldownPolicy(
            window=timedelta(minutes=throttle.submitter_cooldown_minutes)
        ),
        origin_rate=OriginRatePolicy(
            max_requests=throttle.origin_max_requests,
            lookback=timedelta(minutes=throttle.origin_lookback_minutes),
        ),
    )
