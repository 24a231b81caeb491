"""Tests for trip aggregate operations — progress, places, activities, cards, chat."""

from __future__ import annotations

import random
from datetime import timedelta

import pytest

from tripsync.db.codec import utcnow
from tripsync.errors import TripValidationError
from tripsync.state import ApprovalPolicy, CardKind, CardStatus
from tripsync.tools import trip_ops


def _with_places(trip, count):
    for n in range(count):
        trip = trip_ops.add_place(trip, f"Place {n + 1}")
    return trip


# ─── Progress ───────────────────────────────────────────


class TestProgress:
    @pytest.mark.parametrize("filled", range(6))
    def test_twenty_points_per_non_empty_category(self, trip, filled):
        categories = ["places", "activities", "accommodations", "transports", "expenses"]
        for key in categories[:filled]:
            trip[key] = [{"id": f"{key}-1"}, {"id": f"{key}-2"}]
        assert trip_ops.calculate_progress(trip) == 20 * filled

    def test_status_does_not_matter(self, trip):
        trip = trip_ops.add_place(trip, "Belém Tower", status="rejected")
        assert trip_ops.calculate_progress(trip) == 20

    def test_mutations_recompute_progress(self, trip):
        trip = trip_ops.add_place(trip, "Alfama")
        trip = trip_ops.add_expense(trip, "Tram tickets", 12.0, paid_by="alice")
        assert trip["progress"] == 40
        trip = trip_ops.remove_place(trip, trip["places"][0]["id"])
        assert trip["progress"] == 20


class TestTouch:
    def test_updated_at_never_moves_backwards(self, trip):
        future = utcnow() + timedelta(hours=1)
        trip["updated_at"] = future
        renamed = trip_ops.rename_trip(trip, "Porto instead")
        assert renamed["updated_at"] == future

    def test_input_trip_is_not_modified(self, trip):
        before = list(trip["places"])
        trip_ops.add_place(trip, "Sintra")
        assert trip["places"] == before


# ─── Trip-level fields ──────────────────────────────────


class TestTripFields:
    def test_new_trip_has_creator_as_member(self):
        trip = trip_ops.new_trip("alice", currency="USD")
        assert trip["users"] == ["alice"]
        assert trip["created_by"] == "alice"
        assert trip["progress"] == 0
        assert trip["currency"] == "USD"
        assert trip["created_at"] == trip["updated_at"]

    def test_new_trip_id_fits_a_bigint(self):
        trip_id = trip_ops.new_trip("alice")["id"]
        assert isinstance(trip_id, int)
        assert 0 < trip_id < 2**63

    def test_rename_requires_name(self, trip):
        with pytest.raises(TripValidationError) as exc:
            trip_ops.rename_trip(trip, "   ")
        assert exc.value.errors == {"name": "field_required"}

    def test_cover_image_size_limit(self, trip):
        with pytest.raises(TripValidationError) as exc:
            trip_ops.set_cover_image(trip, "data:image/png;base64,AAA", size_bytes=6 * 1024 * 1024)
        assert exc.value.errors == {"cover_image": "file_too_large"}
        updated = trip_ops.set_cover_image(trip, "https://img.example.com/a.png", size_bytes=1024)
        assert updated["cover_image"] == "https://img.example.com/a.png"

    def test_is_trip_past(self, trip):
        assert trip_ops.is_trip_past(trip) is False
        past = trip_ops.set_dates(trip, "2020-01-01", "2020-01-05")
        assert trip_ops.is_trip_past(past) is True
        future = trip_ops.set_dates(trip, "2099-01-01", "2099-01-05")
        assert trip_ops.is_trip_past(future) is False


class TestMembersAndChat:
    def test_add_member_is_idempotent(self, trip):
        joined = trip_ops.add_member(trip, "carol")
        assert joined["users"] == ["alice", "bob", "carol"]
        assert trip_ops.add_member(joined, "carol") is joined

    def test_invite_errors(self, trip, alice):
        with pytest.raises(TripValidationError) as exc:
            trip_ops.invite_user(trip, None)
        assert exc.value.errors == {"invite": "user_email_not_found"}
        with pytest.raises(TripValidationError) as exc:
            trip_ops.invite_user(trip, alice)
        assert exc.value.errors == {"invite": "user_already_added"}

    def test_chat_is_append_only(self, trip):
        trip = trip_ops.add_chat_message(trip, "Alice", "  Who books the hotel? ")
        trip = trip_ops.add_chat_message(trip, "Bob", "On it")
        assert [(m["user"], m["text"]) for m in trip["chat"]] == [
            ("Alice", "Who books the hotel?"),
            ("Bob", "On it"),
        ]
        assert trip["chat"][0]["time"] <= trip["chat"][1]["time"]

    def test_blank_chat_message_rejected(self, trip):
        with pytest.raises(TripValidationError):
            trip_ops.add_chat_message(trip, "Alice", "   ")


# ─── Places ─────────────────────────────────────────────


class TestPlaces:
    def test_orders_are_appended(self, trip):
        trip = _with_places(trip, 3)
        assert [p["order"] for p in trip["places"]] == [1, 2, 3]
        assert all(p["status"] == "new" for p in trip["places"])

    def test_move_up_swaps_with_neighbour(self, trip):
        trip = _with_places(trip, 3)
        third = trip["places"][2]["id"]
        moved = trip_ops.move_place_up(trip, third)
        assert [p["name"] for p in trip_ops.ordered_places(moved)] == ["Place 1", "Place 3", "Place 2"]

    def test_move_past_the_ends_is_a_no_op(self, trip):
        trip = _with_places(trip, 2)
        assert trip_ops.move_place_up(trip, trip["places"][0]["id"]) is trip
        assert trip_ops.move_place_down(trip, trip["places"][1]["id"]) is trip

    def test_order_stays_a_permutation_after_random_moves(self, trip):
        trip = _with_places(trip, 7)
        rng = random.Random(7)
        for _ in range(300):
            place = rng.choice(trip["places"])
            trip = trip_ops.move_place(trip, place["id"], rng.choice((-1, 1)))
            assert sorted(p["order"] for p in trip["places"]) == list(range(1, 8))

    def test_remove_closes_the_gap(self, trip):
        trip = _with_places(trip, 4)
        trip = trip_ops.remove_place(trip, trip["places"][1]["id"])
        assert sorted(p["order"] for p in trip["places"]) == [1, 2, 3]
        assert [p["name"] for p in trip_ops.ordered_places(trip)] == ["Place 1", "Place 3", "Place 4"]

    def test_update_cannot_change_order(self, trip):
        trip = _with_places(trip, 2)
        first = trip["places"][0]["id"]
        updated = trip_ops.update_place(trip, first, name="Miradouro", order=9)
        assert updated["places"][0]["name"] == "Miradouro"
        assert updated["places"][0]["order"] == 1

    def test_unknown_place_raises(self, trip):
        with pytest.raises(ValueError):
            trip_ops.move_place_up(trip, "missing")

    def test_invalid_status_rejected(self, trip):
        with pytest.raises(TripValidationError) as exc:
            trip_ops.add_place(trip, "Alfama", status="maybe")
        assert exc.value.errors == {"status": "invalid_status"}

    def test_update_validates_like_add(self, trip):
        trip = _with_places(trip, 1)
        place_id = trip["places"][0]["id"]
        with pytest.raises(TripValidationError) as exc:
            trip_ops.update_place(trip, place_id, status="bogus", name="  ")
        assert exc.value.errors == {"status": "invalid_status", "name": "field_required"}
        assert trip_ops.update_place(trip, place_id, status=CardStatus.POSSIBLE)["places"][0]["status"] == "possible"


# ─── Activities ─────────────────────────────────────────


@pytest.fixture
def with_activities(trip):
    trip = trip_ops.propose_activity(trip, "bob", "Fado night", day=1, time="21:00")
    trip = trip_ops.propose_activity(trip, "alice", "Surf lesson", day=2, time="09:00")
    return trip


class TestActivityWorkflow:
    def test_proposed_state(self, with_activities):
        activity = with_activities["activities"][0]
        assert activity["approved"] is False
        assert activity["votes"] == []
        assert activity["created_by"] == "bob"

    def test_day_must_be_positive(self, trip):
        with pytest.raises(TripValidationError) as exc:
            trip_ops.propose_activity(trip, "bob", "Boat trip", day=0)
        assert exc.value.errors == {"day": "invalid_day"}

    def test_vote_and_unvote(self, with_activities):
        activity_id = with_activities["activities"][0]["id"]
        trip = trip_ops.vote_activity(with_activities, activity_id, "alice")
        trip = trip_ops.vote_activity(trip, activity_id, "alice")
        assert trip["activities"][0]["votes"] == ["alice"]
        trip = trip_ops.toggle_vote(trip, activity_id, "alice")
        assert trip["activities"][0]["votes"] == []

    def test_only_creator_approves(self, with_activities):
        activity_id = with_activities["activities"][0]["id"]
        with pytest.raises(TripValidationError) as exc:
            trip_ops.approve_activity(with_activities, activity_id, "bob")
        assert exc.value.errors == {"activity": "not_trip_creator"}

    def test_voting_closed_after_approval(self, with_activities):
        activity_id = with_activities["activities"][0]["id"]
        trip = trip_ops.approve_activity(with_activities, activity_id, "alice")
        with pytest.raises(TripValidationError) as exc:
            trip_ops.vote_activity(trip, activity_id, "bob")
        assert exc.value.errors == {"activity": "activity_already_approved"}

    def test_independent_approval_keeps_siblings(self, with_activities):
        first, second = (a["id"] for a in with_activities["activities"])
        trip = trip_ops.approve_activity(with_activities, first, "alice")
        trip = trip_ops.approve_activity(trip, second, "alice")
        assert [a["approved"] for a in trip["activities"]] == [True, True]

    def test_exclusive_approval_unapproves_siblings(self, with_activities):
        first, second = (a["id"] for a in with_activities["activities"])
        trip = trip_ops.approve_activity(with_activities, first, "alice", ApprovalPolicy.EXCLUSIVE)
        trip = trip_ops.approve_activity(trip, second, "alice", ApprovalPolicy.EXCLUSIVE)
        assert [a["approved"] for a in trip["activities"]] == [False, True]

    def test_update_cannot_approve(self, with_activities):
        activity_id = with_activities["activities"][0]["id"]
        trip = trip_ops.update_activity(
            with_activities, activity_id, name="Sunset sail", status="approved", approved=True
        )
        activity = trip["activities"][0]
        assert activity["name"] == "Sunset sail"
        assert activity["approved"] is False
        assert activity["status"] == "new"
        assert trip_ops.itinerary_by_day(trip) == {}

    def test_reject_removes_activity(self, with_activities):
        activity_id = with_activities["activities"][0]["id"]
        trip = trip_ops.remove_activity(with_activities, activity_id)
        assert [a["name"] for a in trip["activities"]] == ["Surf lesson"]

    def test_itinerary_groups_approved_by_day(self, trip):
        trip = trip_ops.propose_activity(trip, "bob", "Dinner", day=1, time="20:00")
        trip = trip_ops.propose_activity(trip, "bob", "Museum", day=1, time="10:00")
        trip = trip_ops.propose_activity(trip, "bob", "Beach", day=2, time="11:00")
        for activity in trip["activities"][:2]:
            trip = trip_ops.approve_activity(trip, activity["id"], "alice")
        assert {day: [a["name"] for a in acts] for day, acts in trip_ops.itinerary_by_day(trip).items()} == {
            1: ["Museum", "Dinner"],
        }


# ─── Card status ────────────────────────────────────────


class TestCardStatus:
    def test_any_status_transition_allowed(self, trip):
        trip = trip_ops.add_accommodation(trip, "Casa do Bairro", check_in="2026-05-01", check_out="2026-05-04")
        acc_id = trip["accommodations"][0]["id"]
        for status in ("approved", "rejected", "new", "possible"):
            trip = trip_ops.set_card_status(trip, CardKind.ACCOMMODATION, acc_id, status)
            assert trip["accommodations"][0]["status"] == status

    def test_rejected_card_is_retained(self, trip):
        trip = trip_ops.add_transport(trip, "train", "Lisbon", "Porto")
        tr_id = trip["transports"][0]["id"]
        trip = trip_ops.set_card_status(trip, "transport", tr_id, CardStatus.REJECTED)
        assert trip["transports"][0]["status"] == "rejected"
        assert trip["progress"] == 20

    def test_activity_status_mirrors_approved(self, trip):
        trip = trip_ops.propose_activity(trip, "bob", "Tile workshop")
        activity_id = trip["activities"][0]["id"]
        trip = trip_ops.set_card_status(trip, "activity", activity_id, "approved", user_id="alice")
        assert trip["activities"][0]["approved"] is True
        trip = trip_ops.set_card_status(trip, "activity", activity_id, "possible", user_id="alice")
        assert trip["activities"][0]["approved"] is False

    def test_member_cannot_approve_activity_through_status(self, trip):
        trip = trip_ops.propose_activity(trip, "bob", "Tile workshop")
        activity_id = trip["activities"][0]["id"]
        with pytest.raises(TripValidationError) as exc:
            trip_ops.set_card_status(trip, "activity", activity_id, "approved", user_id="bob")
        assert exc.value.errors == {"activity": "not_trip_creator"}
        with pytest.raises(TripValidationError):
            trip_ops.set_card_status(trip, "activity", activity_id, "approved")

        trip = trip_ops.set_card_status(trip, "activity", activity_id, "possible", user_id="bob")
        assert trip["activities"][0]["status"] == "possible"

    def test_member_cannot_unapprove_activity(self, trip):
        trip = trip_ops.propose_activity(trip, "bob", "Tile workshop")
        activity_id = trip["activities"][0]["id"]
        trip = trip_ops.approve_activity(trip, activity_id, "alice")
        with pytest.raises(TripValidationError) as exc:
            trip_ops.set_card_status(trip, "activity", activity_id, "rejected", user_id="bob")
        assert exc.value.errors == {"activity": "not_trip_creator"}

    def test_status_approval_follows_policy(self, trip):
        trip = trip_ops.propose_activity(trip, "bob", "Tile workshop")
        trip = trip_ops.propose_activity(trip, "bob", "Cooking class")
        first, second = (a["id"] for a in trip["activities"])
        trip = trip_ops.set_card_status(trip, "activity", first, "approved", "alice", ApprovalPolicy.EXCLUSIVE)
        trip = trip_ops.set_card_status(trip, "activity", second, "approved", "alice", ApprovalPolicy.EXCLUSIVE)
        assert [a["approved"] for a in trip["activities"]] == [False, True]
        assert [a["status"] for a in trip["activities"]] == ["possible", "approved"]

    def test_transport_type_validated(self, trip):
        with pytest.raises(TripValidationError) as exc:
            trip_ops.add_transport(trip, "rocket", "Lisbon", "")
        assert exc.value.errors == {"type": "invalid_transport_type", "to": "field_required"}

    def test_approved_items(self, trip):
        trip = trip_ops.add_place(trip, "Alfama", status="approved")
        trip = trip_ops.add_place(trip, "Belém", status="possible")
        trip = trip_ops.add_transport(trip, "plane", "Berlin", "Lisbon", status="approved")
        approved = trip_ops.approved_items(trip)
        assert [p["name"] for p in approved["places"]] == ["Alfama"]
        assert approved["transports"][0]["from"] == "Berlin"
        assert approved["accommodations"] == []


class TestCardUpdates:
    def test_accommodation_update_validated(self, trip):
        trip = trip_ops.add_accommodation(trip, "Casa do Bairro")
        acc_id = trip["accommodations"][0]["id"]
        with pytest.raises(TripValidationError) as exc:
            trip_ops.update_accommodation(trip, acc_id, name="", status="maybe")
        assert exc.value.errors == {"name": "field_required", "status": "invalid_status"}

        trip = trip_ops.update_accommodation(trip, acc_id, guests=3)
        assert trip["accommodations"][0]["guests"] == 3

    def test_transport_update_validated(self, trip):
        trip = trip_ops.add_transport(trip, "train", "Lisbon", "Porto")
        tr_id = trip["transports"][0]["id"]
        with pytest.raises(TripValidationError) as exc:
            trip_ops.update_transport(trip, tr_id, type="rocket")
        assert exc.value.errors == {"type": "invalid_transport_type"}
        with pytest.raises(TripValidationError) as exc:
            trip_ops.update_transport(trip, tr_id, **{"to": " ", "status": "soon"})
        assert exc.value.errors == {"to": "field_required", "status": "invalid_status"}

        trip = trip_ops.update_transport(trip, tr_id, type="bus", **{"to": "Coimbra"})
        assert trip["transports"][0]["type"] == "bus"
        assert trip["transports"][0]["to"] == "Coimbra"
