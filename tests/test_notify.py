"""Tests for Gotify notifications."""

from unittest import mock

import pytest
import requests

from zfs_backup_ng.config import NotificationConfig, NotificationMode
from zfs_backup_ng.notify import Notifier


def make_notifier(mode=NotificationMode.ALL, **kwargs):
    config = NotificationConfig(
        mode=mode,
        gotify_url=kwargs.pop("url", "https://gotify.example.com"),
        gotify_token=kwargs.pop("token", "secret"),
    )
    session = mock.Mock(spec=requests.Session)
    return Notifier(config, "ZFS Snapshot & Replication", session=session), session


class TestModes:
    @pytest.mark.parametrize(
        "mode,level,expected",
        [
            (NotificationMode.ALL, "success", True),
            (NotificationMode.ALL, "error", True),
            (NotificationMode.ERROR, "success", False),
            (NotificationMode.ERROR, "info", False),
            (NotificationMode.ERROR, "error", True),
            (NotificationMode.NONE, "error", False),
        ],
    )
    def test_should_send(self, mode, level, expected):
        notifier, _ = make_notifier(mode)
        assert notifier.should_send(level) is expected

    def test_suppressed_not_posted(self):
        notifier, session = make_notifier(NotificationMode.ERROR)
        result = notifier.success("done")
        assert not result.delivered
        session.post.assert_not_called()


class TestDelivery:
    def test_payload_and_priority(self):
        notifier, session = make_notifier()

        result = notifier.error("replication failed")

        assert result.delivered
        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args[0] == "https://gotify.example.com/message"
        assert kwargs["json"] == {
            "title": "ZFS Snapshot & Replication",
            "message": "replication failed",
            "priority": 8,
        }
        assert kwargs["headers"] == {"X-Gotify-Key": "secret"}

    @pytest.mark.parametrize("method,priority", [("success", 1), ("info", 5), ("error", 8)])
    def test_priorities(self, method, priority):
        notifier, session = make_notifier()
        getattr(notifier, method)("msg")
        assert session.post.call_args.kwargs["json"]["priority"] == priority

    def test_transport_failure_never_raises(self):
        notifier, session = make_notifier()
        session.post.side_effect = requests.ConnectionError("refused")

        result = notifier.error("boom")

        assert not result.delivered
        assert "refused" in result.reason

    def test_http_error_reported(self):
        notifier, session = make_notifier()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("401")
        assert not notifier.info("hello").delivered

    def test_missing_token_skips(self):
        notifier, session = make_notifier(token="")
        result = notifier.error("boom")
        assert result.reason == "not configured"
        session.post.assert_not_called()
