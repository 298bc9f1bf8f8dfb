"""Tests for best-effort event dispatch."""

import logging

from movieswipe.notifications import (
    SESSION_STARTED, LoggingNotifier, dispatch_group_event, dispatch_user_event,
)

from fakes import FailingNotifier, RecordingNotifier


class TestDispatch:

    def test_delivers_to_group(self):
        notifier = RecordingNotifier()

        assert dispatch_group_event(notifier, 4, SESSION_STARTED, {"session_id": 9}) is True
        assert notifier.group_events == [(4, SESSION_STARTED, {"session_id": 9})]

    def test_failure_is_logged_not_raised(self, caplog):
        with caplog.at_level(logging.ERROR):
            delivered = dispatch_group_event(FailingNotifier(), 4, SESSION_STARTED, {})

        assert delivered is False
        assert "session-started" in caplog.text

    def test_user_failure_is_logged_not_raised(self):
        assert dispatch_user_event(FailingNotifier(), 7, "group-deleted", {"group_id": 1}) is False

    def test_logging_notifier(self, caplog):
        with caplog.at_level(logging.INFO):
            LoggingNotifier().notify_user(7, "group-deleted", {"group_id": 1})

        assert "Notify user 7" in caplog.text
