"""Error types surfaced to the UI layer."""

from __future__ import annotations


class TripValidationError(ValueError):
    """Invalid user input. Raised before any store is touched.

    ``errors`` maps a field name to a message key the UI translates,
    e.g. ``{"email": "user_exists"}``.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        detail = ", ".join(f"{field}={key}" for field, key in self.errors.items())
        super().__init__(f"Validation failed: {detail}")
