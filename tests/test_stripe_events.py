"""Tests for webhook event parsing."""

import pytest
from pydantic import ValidationError

from schemas.stripe_events import (
    CheckoutSessionCompleted,
    UnhandledEvent,
    parse_event,
)

from conftest import make_event


class TestParseEvent:

    def test_completed_event_is_typed(self):
        event = parse_event(make_event(user_id="u1", username="alice"))

        assert isinstance(event, CheckoutSessionCompleted)
        assert event.session.id == "cs_test_1"
        assert event.session.metadata.user_id == "u1"
        assert event.session.metadata.username == "alice"
        assert event.session.amount_total == 499

    def test_completed_event_without_metadata(self):
        raw = make_event()
        del raw["data"]["object"]["metadata"]

        event = parse_event(raw)

        assert isinstance(event, CheckoutSessionCompleted)
        assert event.session.metadata.user_id is None

    @pytest.mark.parametrize("event_type", [
        "payment_intent.succeeded",
        "checkout.session.expired",
        "charge.refunded",
    ])
    def test_other_kinds_are_unhandled(self, event_type):
        event = parse_event(make_event(event_type=event_type))

        assert isinstance(event, UnhandledEvent)
        assert event.type == event_type
        assert event.id == "evt_test_1"

    def test_completed_event_missing_session_is_invalid(self):
        raw = make_event()
        raw["data"] = {}

        with pytest.raises(ValidationError):
            parse_event(raw)

    def test_missing_type_is_invalid(self):
        with pytest.raises(ValidationError):
            parse_event({"id": "evt_1"})

    def test_non_object_body_is_invalid(self):
        with pytest.raises(ValidationError):
            parse_event(["not", "an", "event"])
