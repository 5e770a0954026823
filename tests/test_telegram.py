import json
from unittest.mock import MagicMock

import pytest
import requests

from notifications.telegram import TelegramNotifier
from signal_relay.core.events import LimitHit, Notification, TrailingStarted


def response(status_code=200, payload=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {"ok": True}
    resp.text = json.dumps(payload)
    return resp


@pytest.fixture
def session():
    session = MagicMock()
    session.get.return_value = response(200, {"ok": True, "result": {"first_name": "RelayBot"}})
    session.post.return_value = response(200, {"ok": True})
    return session


@pytest.fixture
def notifier(session, tmp_path):
    return TelegramNotifier("123:abc", "42", log_dir=str(tmp_path), session=session)


def sent_text(session):
    return session.post.call_args[1]["json"]["text"]


def test_connection(notifier, session):
    assert notifier.test_connection()
    assert notifier.is_connected
    session.get.assert_called_once_with("https://api.telegram.org/bot123:abc/getMe", timeout=10)


def test_send_reconnects_and_logs(notifier, session, tmp_path):
    assert notifier.send_message("hello")

    session.post.assert_called_once_with(
        "https://api.telegram.org/bot123:abc/sendMessage",
        json={"chat_id": "42", "text": "hello", "parse_mode": "HTML"},
        timeout=10,
    )
    logged = (tmp_path / "telegram_messages.jsonl").read_text(encoding="utf-8").splitlines()
    assert json.loads(logged[0])["message"] == "hello"


def test_send_fails_without_connection(notifier, session):
    session.get.return_value = response(401, {"ok": False})
    assert not notifier.send_message("hello")
    session.post.assert_not_called()


def test_send_timeout(notifier, session):
    session.post.side_effect = requests.exceptions.Timeout()
    assert not notifier.send_message("hello")


def test_limit_hit_message(notifier, session):
    event = LimitHit(account="5001", platform="MT5", kind="loss", action="close_all", message="Daily loss -210.00")

    assert notifier.on_limit_hit(event)
    text = sent_text(session)
    assert "DAILY LOSS LIMIT HIT" in text
    assert "close all" in text


def test_limit_hit_respects_notify_flag(notifier, session):
    event = LimitHit(account="5001", platform="MT5", kind="profit", action="notify_only", message="", notify=False)

    assert notifier.on_limit_hit(event) is False
    session.post.assert_not_called()


def test_trailing_and_notification(notifier, session):
    notifier.on_trailing_started(TrailingStarted(group_id="grp_1", tp_level=2, distance_pips=20.0))
    assert "Distance: 20 pips" in sent_text(session)

    notifier.on_notification(Notification(title="Signal blocked", message="max trades", level="warning"))
    assert sent_text(session).startswith("⚠️ <b>Signal blocked</b>")
