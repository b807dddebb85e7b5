"""Unit tests for call session state and the call timer."""
from companion.client.session import CallSession, CallState, ProcessingState
from companion.client.timer import CallTimer


class TestCallSession:
    def test_processing_only_while_connected(self):
        session = CallSession(persona_id="preethi")

        session.set_processing(ProcessingState.LISTENING)
        assert session.processing_state == ProcessingState.IDLE

        session.set_state(CallState.CONNECTED)
        session.set_processing(ProcessingState.THINKING)
        assert session.processing_state == ProcessingState.THINKING

        session.set_state(CallState.ENDING)
        assert session.processing_state == ProcessingState.IDLE

    def test_history_is_bounded(self):
        session = CallSession(persona_id="ira", history_limit=4)
        for i in range(6):
            session.add_message("user", f"m{i}")

        assert [m["content"] for m in session.history_payload()] == ["m2", "m3", "m4", "m5"]
        assert [m["content"] for m in session.history_payload(limit=2)] == ["m4", "m5"]

    def test_formatted_duration(self):
        session = CallSession(persona_id="riya")
        session.elapsed_seconds = 125
        assert session.formatted_duration == "2:05"


class TestCallTimer:
    def test_minutes_counted(self):
        timer = CallTimer(1800, 60)

        assert timer.update(59).minute_used is None
        assert timer.update(60).minute_used == 1
        assert timer.update(61).minute_used is None
        assert timer.update(120).minute_used == 2

    def test_warning_once(self):
        timer = CallTimer(1800, 60)

        assert timer.update(1739).warning_remaining is None
        assert timer.update(1740).warning_remaining == 60
        assert timer.update(1741).warning_remaining is None

    def test_warning_skipped_tick(self):
        timer = CallTimer(1800, 60)
        assert timer.update(1750).warning_remaining == 50

    def test_limit_once(self):
        timer = CallTimer(1800, 60)

        assert timer.update(1800).limit_reached is True
        assert timer.update(1801).limit_reached is False

    def test_premium_never_limited(self):
        timer = CallTimer(1800, 60, is_premium=True)

        events = timer.update(1800)

        assert events.limit_reached is False
        assert events.warning_remaining is None
        assert events.minute_used == 30

    def test_reset(self):
        timer = CallTimer(1800, 60)
        timer.update(1800)
        timer.reset()

        assert timer.update(1800).limit_reached is True
