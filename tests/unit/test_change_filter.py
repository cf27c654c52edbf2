from __future__ import annotations

import uuid

import pytest

from challenge_messaging.application.dto.events import ChangeEvent
from challenge_messaging.application.dto.feed import ChangeFilter, FeedTarget
from challenge_messaging.domain.value_objects.enums import ChangeType
from tests.conftest import insert_event, make_message


def test_eq_filter_compares_as_strings():
    cid = uuid.uuid4()
    flt = ChangeFilter.eq("messages", conversation_id=cid)

    assert flt.matches(ChangeEvent("messages", ChangeType.INSERT, {"conversation_id": str(cid)}))
    assert flt.matches(ChangeEvent("messages", ChangeType.INSERT, {"conversation_id": cid}))
    assert not flt.matches(ChangeEvent("messages", ChangeType.INSERT, {"conversation_id": str(uuid.uuid4())}))


def test_filter_checks_table_type_and_missing_columns():
    flt = ChangeFilter.eq("messages", sender_id="a")

    assert not flt.matches(ChangeEvent("messages", ChangeType.UPDATE, {"sender_id": "a"}))
    assert not flt.matches(ChangeEvent("members", ChangeType.INSERT, {"sender_id": "a"}))
    assert not flt.matches(ChangeEvent("messages", ChangeType.INSERT, {}))


def test_inbox_target_matches_any_tracked_conversation(me):
    first, second = uuid.uuid4(), uuid.uuid4()
    target = FeedTarget.for_inbox(me, [first, second])

    assert target.matches(insert_event(make_message(conversation_id=first, sender_id=uuid.uuid4())))
    assert target.matches(insert_event(make_message(conversation_id=second, sender_id=uuid.uuid4())))
    assert not target.matches(insert_event(make_message(conversation_id=uuid.uuid4(), sender_id=uuid.uuid4())))


def test_inbox_target_equality_ignores_order(me):
    first, second = uuid.uuid4(), uuid.uuid4()

    assert FeedTarget.for_inbox(me, [first, second]) == FeedTarget.for_inbox(me, [second, first])
    assert FeedTarget.for_inbox(me, [first]) != FeedTarget.for_inbox(me, [first, second])


def test_message_survives_the_feed_record():
    msg = make_message(conversation_id=uuid.uuid4(), sender_id=uuid.uuid4(), receiver_id=uuid.uuid4())
    event = insert_event(msg)

    rebuilt = ChangeEvent.from_envelope("INSERT", event.to_envelope_data())

    assert rebuilt.to_message() == msg
    assert rebuilt.commit_timestamp == msg.created_at


def test_from_envelope_rejects_unknown_change_type():
    with pytest.raises(ValueError):
        ChangeEvent.from_envelope("TRUNCATE", {"table": "messages", "record": {}})


def test_to_message_rejects_other_tables():
    with pytest.raises(ValueError):
        ChangeEvent("members", ChangeType.INSERT, {}).to_message()
