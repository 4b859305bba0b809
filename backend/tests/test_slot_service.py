"""
backend/tests/test_slot_service.py

Purpose:
    Slot availability precedence, viewer-dependent channels and promotion
    pricing of the pure resolver, plus the day listing over stored records.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from builders import as_user, seed_match, seed_pitch, seed_reservation
from pitchside.models.match import MatchInDB
from pitchside.models.payment import ReservationInDB
from pitchside.models.pitch import PitchInDB, PromotionInDB, SlotStatus
from pitchside.services.slot_service import best_promotion, list_day_slots, resolve_slot

# Monday 2026-03-09, 18:00 UTC
SLOT = datetime(2026, 3, 9, 18, tzinfo=timezone.utc)
BEFORE = SLOT - timedelta(days=1)

PITCH = PitchInDB(id="pitch-1", name="Riverside", owner_id="owner-1", sport="fut5", base_price=100.0)
MANAGER = as_user("manager-other", role="MANAGER")
PLAYER = as_user("player-x", role="PLAYER")


def _reservation(**overrides) -> ReservationInDB:
    data = {
        "id": "res-1",
        "pitch_id": "pitch-1",
        "date": SLOT,
        "total_amount": 120.0,
        "actor_id": "manager-1",
        "actor_role": "MANAGER",
        "status": "Confirmed",
        "payment_status": "Pending",
    }
    data.update(overrides)
    return ReservationInDB(**data)


def _match(**overrides) -> MatchInDB:
    data = {
        "id": "match-1",
        "date": SLOT,
        "pitch_id": "pitch-1",
        "reservation_id": "res-1",
        "manager_id": "manager-1",
        "team_a_id": "team-1",
        "team_a_players": ["a1", "a2", "a3"],
        "allow_external_players": True,
        "allow_challenges": True,
    }
    data.update(overrides)
    return MatchInDB(**data)


def _promo(promo_id: str, discount: float, **overrides) -> PromotionInDB:
    data = {
        "id": promo_id,
        "name": promo_id,
        "discount_percent": discount,
        "valid_from": SLOT - timedelta(days=10),
        "valid_to": SLOT + timedelta(days=10),
        "applicable_days": [1],
        "applicable_hours": [18],
        "pitch_ids": [],
    }
    data.update(overrides)
    return PromotionInDB(**data)


def test_past_slot_wins_over_everything():
    info = resolve_slot(SLOT, PITCH, PLAYER, [_reservation(status="Pending")], [], [], now=SLOT + timedelta(minutes=1))
    assert info.status == SlotStatus.past
    assert info.price == 100.0


def test_pending_reservation_shows_pending_with_reservation_amount():
    info = resolve_slot(SLOT, PITCH, PLAYER, [_reservation(status="Pending")], [], [], now=BEFORE)
    assert info.status == SlotStatus.pending
    assert info.price == 120.0
    assert info.reservation_id == "res-1"


def test_running_match_is_live():
    info = resolve_slot(SLOT, PITCH, PLAYER, [_reservation()], [_match(status="InProgress")], [], now=BEFORE)
    assert info.status == SlotStatus.live
    assert info.match_id == "match-1"


def test_challenge_channel_is_free_for_other_managers():
    info = resolve_slot(SLOT, PITCH, MANAGER, [_reservation()], [_match()], [], now=BEFORE)
    assert info.status == SlotStatus.open_for_team
    assert info.price == 0.0


def test_owning_manager_does_not_see_own_challenge_slot():
    owner = as_user("manager-1", role="MANAGER")
    info = resolve_slot(SLOT, PITCH, owner, [_reservation()], [_match()], [], now=BEFORE)
    assert info.status == SlotStatus.booked


def test_player_channel_prices_one_share():
    info = resolve_slot(SLOT, PITCH, PLAYER, [_reservation()], [_match()], [], now=BEFORE)
    assert info.status == SlotStatus.open_for_players
    assert info.price == 12.0  # 120 / capacity 10


def test_full_roster_closes_player_channel():
    full = _match(team_a_players=[f"a{i}" for i in range(10)])
    info = resolve_slot(SLOT, PITCH, PLAYER, [_reservation()], [full], [], now=BEFORE)
    assert info.status == SlotStatus.booked


@pytest.mark.parametrize(
    "reservation_overrides, match_overrides",
    [
        ({"payment_status": "Paid"}, {}),
        ({}, {"team_b_id": "team-2"}),
        ({}, {"status": "Finished"}),
    ],
)
def test_closed_channels_show_booked(reservation_overrides, match_overrides):
    info = resolve_slot(
        SLOT, PITCH, MANAGER, [_reservation(**reservation_overrides)], [_match(**match_overrides)], [], now=BEFORE
    )
    assert info.status == SlotStatus.booked
    assert info.price == 120.0


def test_cancelled_reservations_are_ignored():
    info = resolve_slot(SLOT, PITCH, PLAYER, [_reservation(status="Canceled")], [], [], now=BEFORE)
    assert info.status == SlotStatus.available


def test_available_uses_highest_discount():
    promos = [_promo("ten", 10), _promo("quarter", 25), _promo("wrong-day", 50, applicable_days=[5])]
    info = resolve_slot(SLOT, PITCH, PLAYER, [], [], promos, now=BEFORE)
    assert info.status == SlotStatus.available
    assert info.promotion_id == "quarter"
    assert info.price == 75.0


def test_promotion_days_count_from_sunday():
    sunday = datetime(2026, 3, 8, 18, tzinfo=timezone.utc)
    promo = _promo("weekend", 15, applicable_days=[0, 6])
    assert promo.covers_day(sunday)
    assert promo.covers_day(sunday - timedelta(days=1))
    assert not promo.covers_day(SLOT)
    assert best_promotion([promo], "pitch-1", sunday).id == "weekend"
    assert best_promotion([promo], "pitch-1", SLOT) is None


def test_promotion_ties_go_to_first_and_range_is_inclusive_by_day():
    first = _promo("first", 20, valid_to=SLOT.replace(hour=0))
    second = _promo("second", 20)
    assert best_promotion([first, second], "pitch-1", SLOT).id == "first"


def test_promotion_limited_to_other_pitch_does_not_apply():
    promo = _promo("elsewhere", 30, pitch_ids=["pitch-9"])
    info = resolve_slot(SLOT, PITCH, PLAYER, [], [], [promo], now=BEFORE)
    assert info.promotion_id is None
    assert info.price == 100.0


@pytest.mark.asyncio
async def test_list_day_slots_resolves_each_opening_hour(fake_db):
    day = date(2030, 5, 6)
    pitch_id = seed_pitch(fake_db, opening_hour=17, closing_hour=20)
    seed_reservation(
        fake_db,
        pitch_id,
        actor_id="manager-1",
        status="Pending",
        date=datetime(2030, 5, 6, 18, tzinfo=timezone.utc),
    )
    reservation_id = seed_reservation(
        fake_db,
        pitch_id,
        actor_id="manager-2",
        date=datetime(2030, 5, 6, 19, tzinfo=timezone.utc),
    )
    seed_match(fake_db, pitch_id=pitch_id, manager_id="manager-2", reservation_id=reservation_id, status="InProgress")

    slots = await list_day_slots(pitch_id, day, as_user("viewer", role="PLAYER"))

    assert [s.start.hour for s in slots] == [17, 18, 19]
    assert [s.status for s in slots] == [SlotStatus.available, SlotStatus.pending, SlotStatus.live]
