"""
tests/test_state_machine.py
Transition table and actor guards, exercised without a database.
"""

import uuid
from types import SimpleNamespace

import pytest

from services.booking import state_machine
from shared.models.models import BookingStatus, SubscriptionTier, UserRole
from shared.utils.exceptions import InvalidTransition, SubscriptionRequired


def _user(role=UserRole.ENGINEER, tier=SubscriptionTier.ENGINEER_PLUS):
    return SimpleNamespace(id=uuid.uuid4(), role=role, subscription_tier=tier)


def _booking(status, **kwargs):
    defaults = dict(
        booked_by_id=uuid.uuid4(),
        engineer_id=None,
        requested_engineer_id=None,
        tip=None,
    )
    defaults.update(kwargs)
    return SimpleNamespace(status=status, **defaults)


def test_terminal_states():
    assert state_machine.TERMINAL == {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
    for action in ("accept", "deny", "complete"):
        allowed, _ = state_machine.TRANSITIONS[action]
        assert not allowed & state_machine.TERMINAL


def test_target_status():
    assert state_machine.target_status("accept") == BookingStatus.CONFIRMED
    assert state_machine.target_status("deny") == BookingStatus.PENDING
    assert state_machine.target_status("cancel") == BookingStatus.CANCELLED
    assert state_machine.target_status("complete") == BookingStatus.COMPLETED


# ── accept ─────────────────────────────────────────────────────────────────────

def test_any_engineer_may_accept_open_job():
    state_machine.check_accept(_booking(BookingStatus.PENDING), _user())


def test_only_requested_engineer_may_accept_approval_request():
    requested = _user()
    booking = _booking(BookingStatus.PENDING_APPROVAL, requested_engineer_id=requested.id)
    state_machine.check_accept(booking, requested)

    with pytest.raises(InvalidTransition) as exc:
        state_machine.check_accept(booking, _user())
    assert exc.value.attempted == "accept"
    assert exc.value.from_status == "PENDING_APPROVAL"


def test_non_engineer_cannot_accept():
    with pytest.raises(InvalidTransition):
        state_machine.check_accept(_booking(BookingStatus.PENDING), _user(role=UserRole.ARTIST))


def test_accept_from_confirmed_rejected():
    with pytest.raises(InvalidTransition) as exc:
        state_machine.check_accept(_booking(BookingStatus.CONFIRMED), _user())
    assert exc.value.status_code == 409
    assert exc.value.to_dict()["code"] == "INVALID_TRANSITION"


def test_engineer_cannot_accept_own_booking():
    engineer = _user()
    with pytest.raises(InvalidTransition) as exc:
        state_machine.check_accept(_booking(BookingStatus.PENDING, booked_by_id=engineer.id), engineer)
    assert exc.value.reason == "cannot accept your own booking"


def test_free_tier_engineer_needs_subscription():
    with pytest.raises(SubscriptionRequired) as exc:
        state_machine.check_accept(_booking(BookingStatus.PENDING), _user(tier=SubscriptionTier.FREE))
    assert exc.value.status_code == 402
    assert exc.value.extra["redirect"] == "SUBSCRIPTION_PLANS"


# ── deny / cancel / complete / tip ─────────────────────────────────────────────

def test_deny_requires_matching_requester():
    requested = _user()
    booking = _booking(BookingStatus.PENDING_APPROVAL, requested_engineer_id=requested.id)
    state_machine.check_deny(booking, requested)
    with pytest.raises(InvalidTransition):
        state_machine.check_deny(booking, _user())


def test_deny_open_job_rejected():
    engineer = _user()
    with pytest.raises(InvalidTransition):
        state_machine.check_deny(_booking(BookingStatus.PENDING, requested_engineer_id=engineer.id), engineer)


@pytest.mark.parametrize(
    "status",
    [BookingStatus.PENDING, BookingStatus.PENDING_APPROVAL, BookingStatus.CONFIRMED],
)
def test_payer_can_cancel_non_terminal(status):
    payer = _user(role=UserRole.ARTIST)
    state_machine.check_cancel(_booking(status, booked_by_id=payer.id), payer)


@pytest.mark.parametrize("status", [BookingStatus.COMPLETED, BookingStatus.CANCELLED])
def test_cannot_cancel_terminal(status):
    payer = _user(role=UserRole.ARTIST)
    with pytest.raises(InvalidTransition):
        state_machine.check_cancel(_booking(status, booked_by_id=payer.id), payer)


def test_only_payer_can_cancel():
    with pytest.raises(InvalidTransition) as exc:
        state_machine.check_cancel(_booking(BookingStatus.CONFIRMED), _user(role=UserRole.ARTIST))
    assert "payer" in exc.value.reason


def test_only_bound_engineer_completes():
    engineer = _user()
    booking = _booking(BookingStatus.CONFIRMED, engineer_id=engineer.id)
    state_machine.check_complete(booking, engineer)
    with pytest.raises(InvalidTransition):
        state_machine.check_complete(booking, _user())


def test_stoodio_owner_completes_bring_your_own_session():
    owner = _user(role=UserRole.STOODIO, tier=SubscriptionTier.STOODIO_PRO)
    booking = _booking(BookingStatus.CONFIRMED)
    state_machine.check_complete(booking, owner, owner.id)

    for outsider in (_user(), _user(role=UserRole.ARTIST)):
        with pytest.raises(InvalidTransition) as exc:
            state_machine.check_complete(booking, outsider, owner.id)
        assert "stoodio owner" in exc.value.reason

    # An engineered session still belongs to its engineer
    engineer = _user()
    with pytest.raises(InvalidTransition):
        state_machine.check_complete(_booking(BookingStatus.CONFIRMED, engineer_id=engineer.id), owner, owner.id)


def test_tip_rules():
    payer = _user(role=UserRole.ARTIST)
    engineer = _user()
    booking = _booking(BookingStatus.COMPLETED, booked_by_id=payer.id, engineer_id=engineer.id)
    state_machine.check_tip(booking, payer)

    with pytest.raises(InvalidTransition):
        state_machine.check_tip(booking, engineer)
    with pytest.raises(InvalidTransition):
        state_machine.check_tip(_booking(BookingStatus.CONFIRMED, booked_by_id=payer.id, engineer_id=engineer.id), payer)

    booking.tip = 10
    with pytest.raises(InvalidTransition):
        state_machine.check_tip(booking, payer)
