import itertools
import uuid

import pytest

from omnigate.models import Message
from omnigate.services.channels import SendResult, StatusUpdate
from omnigate.services.conversation_service import append_message, upsert_conversation
from omnigate.services.delivery_service import (
    STATUS_RANK,
    apply_status_updates,
    record_send_result,
    upgrade_delivery_status,
)


@pytest.fixture
def outbound_message(db, workspace):
    upsert = upsert_conversation(
        db, bot_id=workspace.bot.id, channel_type="whatsapp", external_thread_id="77010000000"
    )
    message = append_message(
        db,
        conversation_id=upsert.conversation_id,
        role="agent",
        content="Your order is ready",
        status="sent",
        provider_message_id="wamid.1",
    )
    db.commit()
    return message


def _status(db, message_id):
    return db.get(Message, message_id, populate_existing=True).status


class TestUpgradeDeliveryStatus:
    def test_moves_forward(self, db, outbound_message):
        upgrade = upgrade_delivery_status(db, "wamid.1", "delivered")
        db.commit()

        assert upgrade.status == "delivered"
        assert upgrade.message_id == outbound_message.id
        assert _status(db, outbound_message.id) == "delivered"

    def test_delivered_after_read_is_noop(self, db, outbound_message):
        upgrade_delivery_status(db, "wamid.1", "read")
        upgrade = upgrade_delivery_status(db, "wamid.1", "delivered")
        db.commit()

        assert upgrade is None
        assert _status(db, outbound_message.id) == "read"

    def test_same_status_is_noop(self, db, outbound_message):
        assert upgrade_delivery_status(db, "wamid.1", "sent") is None

    def test_unknown_status_ignored(self, db, outbound_message):
        assert upgrade_delivery_status(db, "wamid.1", "deleted") is None
        assert _status(db, outbound_message.id) == "sent"

    def test_unknown_provider_id(self, db, outbound_message):
        assert upgrade_delivery_status(db, "wamid.unknown", "read") is None

    @pytest.mark.parametrize("order", list(itertools.permutations(["failed", "sent", "delivered", "read"])))
    def test_rank_never_decreases(self, db, outbound_message, order):
        observed = []
        for status in order:
            upgrade_delivery_status(db, "wamid.1", status)
            observed.append(STATUS_RANK[_status(db, outbound_message.id)])

        assert observed == sorted(observed)
        assert _status(db, outbound_message.id) == "read"


class TestApplyStatusUpdates:
    def test_returns_only_upgrades(self, db, outbound_message):
        updates = [
            StatusUpdate(provider_message_id="wamid.1", status="delivered"),
            StatusUpdate(provider_message_id="wamid.1", status="delivered"),
            StatusUpdate(provider_message_id="wamid.404", status="read"),
        ]

        applied = apply_status_updates(db, updates)

        assert [u.status for u in applied] == ["delivered"]


class TestRecordSendResult:
    def _pending(self, db, workspace):
        upsert = upsert_conversation(db, bot_id=workspace.bot.id, channel_type="telegram", external_thread_id="1")
        message = append_message(db, conversation_id=upsert.conversation_id, role="agent", content="hi")
        db.commit()
        return message

    def test_success_marks_sent_with_provider_id(self, db, workspace):
        message = self._pending(db, workspace)

        status = record_send_result(db, message.id, SendResult.sent("555"))
        db.commit()

        stored = db.get(Message, message.id, populate_existing=True)
        assert status == "sent"
        assert stored.status == "sent"
        assert stored.provider_message_id == "555"

    def test_failure_marks_failed(self, db, workspace):
        message = self._pending(db, workspace)

        status = record_send_result(db, message.id, SendResult.failed("Bad Request: chat not found", "provider_rejected"))

        assert status == "failed"

    def test_does_not_downgrade_receipt_that_arrived_first(self, db, outbound_message):
        upgrade_delivery_status(db, "wamid.1", "delivered")

        status = record_send_result(db, outbound_message.id, SendResult.sent("wamid.1"))

        assert status == "delivered"

    def test_missing_message(self, db, workspace):
        assert record_send_result(db, uuid.uuid4(), SendResult.sent("1")) is None
