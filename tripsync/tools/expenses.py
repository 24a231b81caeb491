"""Expense splitting — totals, per-user shares and balances against the group pool.

Amounts in different currencies are summed nominally; there is no
conversion. ``total_expenses_by_currency`` exists for callers that want to
show the split per currency instead.
"""

from __future__ import annotations

from tripsync.state import Expense, Trip


def split(expense: Expense) -> dict[str, float]:
    """Each sharer's part of one expense: ``amount / len(shared_by)``."""
    sharers = expense.get("shared_by") or []
    if not sharers:
        return {}
    part = expense["amount"] / len(sharers)
    return {user_id: part for user_id in sharers}


def total_expenses(trip: Trip) -> float:
    return sum(e["amount"] for e in trip.get("expenses", []))


def total_expenses_by_currency(trip: Trip) -> dict[str, float]:
    totals: dict[str, float] = {}
    for expense in trip.get("expenses", []):
        code = expense.get("currency") or trip.get("currency") or ""
        totals[code] = totals.get(code, 0.0) + expense["amount"]
    return totals


def user_share(trip: Trip, user_id: str) -> float:
    """What the user owes in total: their part of every expense they share."""
    return sum(split(e).get(user_id, 0.0) for e in trip.get("expenses", []))


def user_paid(trip: Trip, user_id: str) -> float:
    return sum(e["amount"] for e in trip.get("expenses", []) if e.get("paid_by") == user_id)


def user_debt(trip: Trip, user_id: str) -> float:
    """Share minus paid. Positive: owes the group. Negative: the group owes them."""
    return user_share(trip, user_id) - user_paid(trip, user_id)


def balances(trip: Trip) -> dict[str, float]:
    """Debt for every member, payer and sharer. Sums to zero up to float error."""
    people: list[str] = list(trip.get("users", []))
    for expense in trip.get("expenses", []):
        for user_id in [expense.get("paid_by"), *(expense.get("shared_by") or [])]:
            if user_id and user_id not in people:
                people.append(user_id)
    return {user_id: user_debt(trip, user_id) for user_id in people}
