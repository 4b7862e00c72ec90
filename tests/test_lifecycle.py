"""
Tests for the redeem request lifecycle.

Covers the intake algorithm, reviewer decisions and notifier callbacks.
"""

from unittest.mock import MagicMock

from redeem_panel.core.lifecycle import DecisionFailure, SubmitFailure
from redeem_panel.storage.models import RedeemDraft, RequestStatus, ThrottleScope


def form_draft(key, origin="10.0.0.1", invite="https://discord.gg/xyz", name="Alice", **kwargs):
    return RedeemDraft(
        name=name,
        redeem_key=key,
        invite_link=invite,
        identity=origin,
        scope=ThrottleScope.ORIGIN,
        **kwargs
    )


def command_draft(key, user="4242", invite="https://discord.gg/xyz"):
    return RedeemDraft(
        name="alice#0001",
        redeem_key=key,
        invite_link=invite,
        identity=user,
        scope=ThrottleScope.SUBMITTER,
    )


class TestSubmitAndDecide:
    """End-to-end request lifecycle."""

    def test_full_scenario(self, service):
        """Submit, reject duplicate, approve, then refuse a second decision."""
        outcome = service.submit(form_draft("AAA-111"))
        assert outcome.ok
        assert outcome.request_id == 1
        assert service.get(1).status == RequestStatus.PENDING

        duplicate = service.submit(form_draft("AAA-111", origin="10.0.0.9"))
        assert duplicate.failure == SubmitFailure.DUPLICATE_KEY

        decided = service.decide(1, RequestStatus.APPROVED)
        assert decided.ok
        assert service.get(1).status == RequestStatus.APPROVED

        again = service.decide(1, RequestStatus.REJECTED)
        assert again.failure == DecisionFailure.INVALID_TRANSITION
        assert again.request.status == RequestStatus.APPROVED
        assert service.get(1).status == RequestStatus.APPROVED

    def test_created_request_fields(self, service):
        outcome = service.submit(form_draft("AAA-111", order_id="ord-1", submitter_agent="ua"))

        request = outcome.request
        assert request.contact_email == "orders@example.com"
        assert request.order_id == "ord-1"
        assert request.submitter_address == "10.0.0.1"
        assert request.submitter_agent == "ua"

    def test_submit_burns_key(self, service):
        service.submit(form_draft("AAA-111"))
        assert service.keys.is_used("AAA-111")

    def test_key_stays_burned_after_rejection(self, service):
        """A rejected submitter cannot retry with the same key."""
        first = service.submit(form_draft("AAA-111", invite="https://discord.gg/wrong"))
        service.decide(first.request_id, RequestStatus.REJECTED)

        retry = service.submit(form_draft("AAA-111", invite="https://discord.gg/right",
                                          origin="10.0.0.2"))

        assert retry.failure == SubmitFailure.DUPLICATE_KEY
        assert retry.errors == ["This redeem key has already been used."]

    def test_ledger_entry_blocks_without_request(self, service):
        """The used-key ledger is authoritative even with no matching request."""
        service.keys.mark_used("BURNED")
        outcome = service.submit(form_draft("BURNED"))
        assert outcome.failure == SubmitFailure.DUPLICATE_KEY
        assert service.list_requests() == []

    def test_concurrent_duplicate_maps_to_duplicate_key(self, service):
        """A stored request whose key never reached the ledger still blocks the key."""
        service.store.create(form_draft("RACE-1"), "orders@example.com")
        assert not service.keys.is_used("RACE-1")

        outcome = service.submit(form_draft("RACE-1", origin="10.0.0.5"))

        assert outcome.failure == SubmitFailure.DUPLICATE_KEY
        assert len(service.list_requests()) == 1

    def test_validation_failure_lists_every_rule(self, service):
        outcome = service.submit(form_draft("bad key", invite="http://discord.gg/abc", name=""))

        assert outcome.failure == SubmitFailure.VALIDATION_FAILED
        assert len(outcome.errors) == 4
        assert not service.keys.is_used("bad key")

    def test_invite_link_shapes(self, service):
        ok = service.submit(form_draft("K1", invite="https://discord.gg/abc123"))
        http = service.submit(form_draft("K2", invite="http://discord.gg/abc123"))
        legacy = service.submit(form_draft("K3", invite="https://discordapp.com/invite/abc123"))

        assert ok.ok
        assert http.failure == SubmitFailure.VALIDATION_FAILED
        assert legacy.failure == SubmitFailure.VALIDATION_FAILED

    def test_decide_unknown_request(self, service):
        outcome = service.decide(404, RequestStatus.APPROVED)
        assert outcome.failure == DecisionFailure.NOT_FOUND
        assert outcome.request is None

    def test_decide_pending_is_invalid(self, service):
        service.submit(form_draft("AAA-111"))
        outcome = service.decide(1, RequestStatus.PENDING)
        assert outcome.failure == DecisionFailure.INVALID_TRANSITION

    def test_list_pending_excludes_decided(self, service, clock):
        for key in ["K1", "K2", "K3"]:
            service.submit(form_draft(key, origin=f"origin-{key}"))
            clock.advance(seconds=1)
        service.decide(1, RequestStatus.APPROVED)
        service.decide(3, RequestStatus.REJECTED)

        pending = service.list_pending()
        assert [r.id for r in pending] == [2]
        assert all(r.status == RequestStatus.PENDING for r in pending)


class TestThrottling:
    """Both intake policies through the lifecycle."""

    def test_origin_cap_blocks_fourth_request(self, service, clock):
        for key in ["K1", "K2", "K3"]:
            assert service.submit(form_draft(key)).ok
            clock.advance(minutes=2)

        fourth = service.submit(form_draft("K4"))

        assert fourth.failure == SubmitFailure.RATE_LIMITED
        assert fourth.throttle is not None
        assert not service.keys.is_used("K4")

    def test_origin_cap_lifts_after_lookback(self, service, clock):
        for key in ["K1", "K2", "K3"]:
            service.submit(form_draft(key))
        clock.advance(minutes=16)
        assert service.submit(form_draft("K4")).ok

    def test_submitter_cooldown(self, service, clock):
        """T=0 accepted, T=5 refused, T=11 accepted."""
        assert service.submit(command_draft("K1")).ok

        clock.advance(minutes=5)
        second = service.submit(command_draft("K2"))
        assert second.failure == SubmitFailure.RATE_LIMITED
        assert "wait 10 minutes" in second.errors[0]

        clock.advance(minutes=6)
        assert service.submit(command_draft("K3")).ok

    def test_cooldown_not_recorded_on_failure(self, service):
        service.keys.mark_used("USED")
        service.submit(command_draft("USED"))
        assert service.cooldowns.get("4242") is None

    def test_policies_do_not_share_identities(self, service, clock):
        """A throttled origin does not throttle a Discord user, and vice versa."""
        for key in ["K1", "K2", "K3"]:
            service.submit(form_draft(key, origin="shared"))
        assert service.submit(command_draft("K4", user="shared")).ok

        # Command submissions never count toward an origin cap
        assert service.submit(form_draft("K5", origin="4243")).ok

    def test_check_throttle_before_form(self, service):
        service.submit(command_draft("K1"))
        decision = service.check_throttle(ThrottleScope.SUBMITTER, "4242")
        assert not decision.allowed


class TestNotifier:
    """Notifier callbacks fire once per successful operation."""

    def test_on_created_called_once(self, service):
        notifier = MagicMock()
        service.notifier = notifier

        outcome = service.submit(form_draft("AAA-111"))
        service.submit(form_draft("AAA-111"))

        notifier.on_created.assert_called_once_with(outcome.request)
        notifier.on_status_changed.assert_not_called()

    def test_on_status_changed_called_once(self, service):
        notifier = MagicMock()
        service.notifier = notifier
        service.submit(form_draft("AAA-111"))

        service.decide(1, RequestStatus.REJECTED)
        service.decide(1, RequestStatus.APPROVED)

        notifier.on_status_changed.assert_called_once()
        changed = notifier.on_status_changed.call_args[0][0]
        assert changed.status == RequestStatus.REJECTED

    def test_notifier_failure_does_not_fail_operation(self, service):
        notifier = MagicMock()
        notifier.on_created.side_effect = RuntimeError("discord down")
        notifier.on_status_changed.side_effect = RuntimeError("discord down")
        service.notifier = notifier

        outcome = service.submit(form_draft("AAA-111"))
        decided = service.decide(outcome.request_id, RequestStatus.APPROVED)

        assert outcome.ok
        assert decided.ok
        assert service.get(1).status == RequestStatus.APPROVED
