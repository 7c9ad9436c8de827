"""Tests for the notification channel."""

from __future__ import annotations

from ragchat import notify
from ragchat.models import DegradedModeNotice
from ragchat.notify import Notifier


def test_notify_records_history_and_fans_out():
    seen = []
    notifier = Notifier()
    notifier.add_sink(seen.append)

    notifier.success("saved")
    notifier.error("broken")

    assert [n.message for n in seen] == ["saved", "broken"]
    assert notifier.levels() == ["success", "error"]


def test_history_is_bounded():
    notifier = Notifier(history_size=2)
    for i in range(5):
        notifier.info(str(i))
    assert [n.message for n in notifier.history] == ["3", "4"]


def test_degraded_write_message_names_entity_and_reason():
    notice = DegradedModeNotice(
        step="PERSIST_USER_MESSAGE", entity="message", item_id="local-1", reason="offline"
    )
    text = notify.degraded_write(notice)
    assert "message" in text
    assert "offline" in text
    assert "local-1 kept locally only" in str(notice)


def test_model_call_failed_suggests_next_step():
    assert "send again" in notify.model_call_failed("timeout")
