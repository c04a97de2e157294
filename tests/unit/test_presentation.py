from __future__ import annotations

from datetime import date, timedelta

from task_chat.domain.entities.participant import Participant
from task_chat.domain.value_objects.enums import MessageStatus
from task_chat.services.presentation import (
    asset_url,
    group_by_date,
    initial_of,
    sender_of,
    unread_count,
)
from tests.conftest import T0, USER_A, USER_B, make_conversation, make_message


def test_group_by_date_splits_runs_by_day():
    messages = [
        make_message("m1", timestamp=T0),
        make_message("m2", timestamp=T0 + timedelta(hours=1)),
        make_message("m3", timestamp=T0 + timedelta(days=1)),
    ]

    groups = group_by_date(messages)

    assert [g.day for g in groups] == [date(2024, 5, 1), date(2024, 5, 2)]
    assert [[m.id for m in g.messages] for g in groups] == [["m1", "m2"], ["m3"]]


def test_group_by_date_keeps_arrival_order():
    messages = [
        make_message("m1", timestamp=T0 + timedelta(days=1)),
        make_message("m2", timestamp=T0),
    ]

    groups = group_by_date(messages)

    assert [g.day for g in groups] == [date(2024, 5, 2), date(2024, 5, 1)]


def test_group_by_date_empty():
    assert group_by_date([]) == []


def test_asset_url():
    base = "http://backend.test/"
    assert asset_url("/uploads/a.png", base) == "http://backend.test/uploads/a.png"
    assert asset_url("uploads/a.png", base) == "http://backend.test/uploads/a.png"
    assert asset_url("https://cdn.test/a.png", base) == "https://cdn.test/a.png"
    assert asset_url("", base) == ""


def test_initial_of():
    assert initial_of(USER_B) == "B"
    assert initial_of(Participant(id="x", name="eve")) == "E"
    assert initial_of(Participant(id="x", name="")) == "U"
    assert initial_of(None) == "U"


def test_sender_of_falls_back_to_unknown_participant():
    conversation = make_conversation()

    assert sender_of(conversation, make_message(sender_id="userA")) == USER_A
    stranger = sender_of(conversation, make_message(sender_id="ghost"))
    assert stranger.id == "ghost"
    assert stranger.name == "User"


def test_unread_count_ignores_own_and_read_messages():
    conversation = make_conversation(messages=[
        make_message("m1", sender_id="userB", status=MessageStatus.SENT),
        make_message("m2", sender_id="userB", status=MessageStatus.DELIVERED),
        make_message("m3", sender_id="userB", status=MessageStatus.READ),
        make_message("m4", sender_id="userA", status=MessageStatus.SENT),
    ])

    assert unread_count(conversation, "userA") == 2
    assert unread_count(conversation, "userB") == 1
