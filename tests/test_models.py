"""Tests for core data models and the error taxonomy."""

from datetime import datetime

import pytest
from pydantic import ValidationError as PydanticValidationError

from edusync.errors import (
    ConfigurationError,
    NotFoundError,
    PaymentRequiredError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from edusync.models import (
    BoardCleared,
    BroadcastKind,
    ChatMessage,
    NotificationRecord,
    NotificationType,
    PresenceRecord,
    RowChange,
    UserIdentity,
)
from edusync.models.broadcast import EVENT_MODELS, BroadcastEnvelope, kind_of


class TestUserIdentity:
    def test_full_name_wins(self):
        identity = UserIdentity(id="u1", email="ada@example.com", full_name="Ada Lovelace")
        assert identity.display_name == "Ada Lovelace"

    def test_email_local_part(self):
        assert UserIdentity(id="u1", email="ada@example.com").display_name == "ada"

    def test_anonymous(self):
        assert UserIdentity(id="u1").display_name == "Anonymous"


class TestBroadcastModels:
    def test_every_kind_has_a_model(self):
        assert set(EVENT_MODELS) == set(BroadcastKind)

    def test_envelope_discriminates_on_type(self):
        envelope = BroadcastEnvelope.model_validate({"event": {
            "type": "chat_message",
            "message_id": "m1",
            "user_id": "u1",
            "username": "Ada",
            "content": "hello",
            "sent_at": "2024-05-01T12:00:00",
        }})
        assert isinstance(envelope.event, ChatMessage)
        assert kind_of(envelope.event) == BroadcastKind.CHAT_MESSAGE

    def test_envelope_rejects_unknown_tag(self):
        with pytest.raises(PydanticValidationError):
            BroadcastEnvelope.model_validate({"event": {"type": "confetti"}})

    def test_shape_is_closed(self):
        with pytest.raises(PydanticValidationError):
            BroadcastEnvelope.model_validate(
                {"event": {"type": "shape_added", "shape": "triangle", "data": {}}}
            )

    def test_cleared_has_no_payload(self):
        assert kind_of(BoardCleared()) == BroadcastKind.CLEARED


class TestRecords:
    def test_presence_defaults(self):
        record = PresenceRecord(user_id="u1", color="#3b82f6")
        assert record.display_name == "Anonymous"
        assert record.typing is False
        assert record.cursor is None
        assert record.mentor_id is None

    def test_notification_type_is_closed(self):
        with pytest.raises(PydanticValidationError):
            NotificationRecord(
                id="n1", user_id="u1", title="t", message="m", type="spam",
                created_at=datetime(2024, 1, 1),
            )

    def test_notification_defaults(self):
        record = NotificationRecord(
            id="n1", user_id="u1", title="t", message="m", type="deadline",
            created_at=datetime(2024, 1, 1),
        )
        assert record.type == NotificationType.DEADLINE
        assert record.read is False
        assert record.link is None

    def test_row_change_event_is_closed(self):
        with pytest.raises(PydanticValidationError):
            RowChange(table="notifications", event="TRUNCATE")


class TestErrors:
    @pytest.mark.parametrize("error, status", [
        (UnauthorizedError("x"), 401),
        (ValidationError("x"), 400),
        (NotFoundError("x"), 404),
        (ConfigurationError("x"), 500),
        (UpstreamError("x"), 500),
        (RateLimitedError("x"), 429),
        (PaymentRequiredError("x"), 402),
    ])
    def test_status_codes(self, error, status):
        assert error.status_code == status
        assert error.message == "x"

    def test_gateway_errors_are_upstream_errors(self):
        error = RateLimitedError("slow down", upstream_status=429)
        assert isinstance(error, UpstreamError)
        assert error.upstream_status == 429
