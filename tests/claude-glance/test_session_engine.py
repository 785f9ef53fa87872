"""
Unit tests for the session lifecycle engine.

Covers the per-event state machine, the post-Stop silent period, expiry,
the active list, alerts and manual operations. The engine is driven
synchronously with a fake clock; only the timer tests run a loop.
"""

import pytest

from claude_glance.models import AlertKind, EngineUpdate, SessionStatus, TOOL_HISTORY_LIMIT


KEY = "abcd1234"


class TestPreToolUse:
    """PreToolUse maps the tool to a status and labels the action."""

    def test_bash_sets_thinking_with_command_preview(self, engine, hook_message):
        engine.handle_message(
            hook_message("PreToolUse", tool_name="Bash", tool_input={"command": "npm test"})
        )
        session = engine.get_session(KEY)

        assert session.status == SessionStatus.THINKING
        assert session.current_action == "Running command"
        assert session.metadata == "npm test"

    def test_read_sets_reading_with_file_name(self, engine, hook_message):
        engine.handle_message(
            hook_message("PreToolUse", tool_name="Read", tool_input={"file_path": "/src/app.py"})
        )
        session = engine.get_session(KEY)

        assert session.status == SessionStatus.READING
        assert session.current_action == "Reading file"
        assert session.metadata == "app.py"

    def test_edit_sets_writing(self, engine, hook_message):
        engine.handle_message(
            hook_message("PreToolUse", tool_name="Edit", tool_input={"file_path": "a/b.nix"})
        )
        assert engine.get_session(KEY).status == SessionStatus.WRITING

    def test_consecutive_events_both_apply(self, engine, clock, hook_message):
        """Two PreToolUse 2s apart with no Stop are both applied."""
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        clock.advance(2)
        engine.handle_message(hook_message("PreToolUse", tool_name="Write"))

        assert engine.get_session(KEY).status == SessionStatus.WRITING
        assert engine.stats_snapshot.tool_calls == 2

    def test_session_fields_follow_latest_message(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Read", project="one"))
        clock.advance(1)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read", project="two"))

        session = engine.get_session(KEY)
        assert session.project == "two"
        assert session.last_update == clock()


class TestPostToolUse:
    """PostToolUse returns to thinking and records the finished tool."""

    def test_appends_history(self, engine, clock, hook_message):
        engine.handle_message(
            hook_message("PreToolUse", tool_name="Grep", tool_input={"pattern": "TODO"})
        )
        clock.advance(1)
        engine.handle_message(
            hook_message("PostToolUse", tool_name="Grep", tool_input={"pattern": "TODO"})
        )

        session = engine.get_session(KEY)
        assert session.status == SessionStatus.THINKING
        assert session.current_action == "Processing..."
        assert len(session.tool_history) == 1
        assert session.tool_history[0].tool == "Grep"
        assert session.tool_history[0].target == "TODO"
        assert session.tool_history[0].timestamp == clock()

    def test_history_is_bounded(self, engine, clock, hook_message):
        """Oldest entries are evicted once the history is full."""
        for i in range(TOOL_HISTORY_LIMIT + 2):
            clock.advance(1)
            engine.handle_message(
                hook_message(
                    "PostToolUse", tool_name="Read", tool_input={"file_path": f"file{i}.py"}
                )
            )

        history = engine.get_session(KEY).tool_history
        assert len(history) == TOOL_HISTORY_LIMIT
        assert history[0].target == "file2.py"
        assert history[-1].target == f"file{TOOL_HISTORY_LIMIT + 1}.py"

    def test_post_tool_use_does_not_count_tool_calls(self, engine, hook_message):
        engine.handle_message(hook_message("PostToolUse", tool_name="Read"))
        assert engine.stats_snapshot.tool_calls == 0


class TestNotificationAndStop:
    """Notification and Stop transitions, including error detection."""

    def test_notification_sets_waiting(self, engine, hook_message):
        engine.handle_message(
            hook_message(
                "Notification",
                message="Claude needs your permission",
                notification_type="permission_prompt",
            )
        )
        session = engine.get_session(KEY)
        assert session.status == SessionStatus.WAITING
        assert session.current_action == "Claude needs your permission"
        assert session.metadata == "permission_prompt"

    def test_notification_without_message_uses_default(self, engine, hook_message):
        engine.handle_message(hook_message("Notification"))
        assert engine.get_session(KEY).current_action == "Waiting for input"

    def test_error_notification_sets_error(self, engine, hook_message):
        engine.handle_message(hook_message("Notification", message="API Error: overloaded"))
        session = engine.get_session(KEY)
        assert session.status == SessionStatus.ERROR
        assert session.metadata == "Error"

    def test_stop_sets_completed(self, engine, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Bash"))
        engine.handle_message(hook_message("Stop"))

        session = engine.get_session(KEY)
        assert session.status == SessionStatus.COMPLETED
        assert session.current_action == "Task completed"
        assert session.metadata == ""

    def test_stop_with_error_message_sets_error(self, engine, hook_message):
        engine.handle_message(hook_message("Stop", message="Request aborted"))
        session = engine.get_session(KEY)
        assert session.status == SessionStatus.ERROR
        assert session.current_action == "Request aborted"
        assert session.metadata == "Error"

    def test_unknown_event_is_ignored(self, engine, hook_message):
        engine.handle_message(hook_message("SubagentStop"))

        assert engine.session_keys == frozenset()
        assert engine.stats_snapshot.sessions_count == 0


class TestSilentPeriod:
    """PreToolUse after Stop is debounced for the silent period."""

    def test_pre_tool_use_within_silent_period_is_dropped(self, engine, clock, hook_message):
        engine.handle_message(hook_message("Stop"))
        clock.advance(5)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))

        session = engine.get_session(KEY)
        assert session.status == SessionStatus.COMPLETED
        assert engine.stats_snapshot.tool_calls == 0

    def test_pre_tool_use_after_silent_period_deletes_completed_session(
        self, engine, clock, hook_message
    ):
        engine.handle_message(hook_message("Stop"))
        clock.advance(10.1)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))

        assert KEY not in engine.session_keys
        assert engine.stats_snapshot.tool_calls == 0

        # The next event starts a fresh session
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        session = engine.get_session(KEY)
        assert session.status == SessionStatus.READING
        assert session.tool_history == ()

    def test_waiting_session_reopens_after_silent_period(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PostToolUse", tool_name="Read"))
        engine.handle_message(hook_message("Stop"))
        clock.advance(1)
        engine.handle_message(hook_message("Notification", message="Waiting for input"))
        clock.advance(9.1)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))

        session = engine.get_session(KEY)
        assert session.status == SessionStatus.READING
        assert session.tool_history == ()

    def test_silent_period_survives_expiry(self, engine, clock, hook_message):
        """A swept completed session still debounces until its window ends."""
        engine.handle_message(hook_message("Stop"))
        clock.advance(6)
        engine.sweep_expired()
        assert KEY not in engine.session_keys

        clock.advance(1)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        assert KEY not in engine.session_keys

        clock.advance(3.5)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        assert engine.get_session(KEY).status == SessionStatus.READING

    def test_speculative_pre_tool_use_after_waiting_is_dropped(
        self, engine, clock, hook_message
    ):
        engine.handle_message(hook_message("Notification"))
        clock.advance(0.5)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        assert engine.get_session(KEY).status == SessionStatus.WAITING

        clock.advance(1)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        assert engine.get_session(KEY).status == SessionStatus.READING

    def test_new_interaction_after_waiting_clears_history(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PostToolUse", tool_name="Read"))
        engine.handle_message(hook_message("Notification"))
        clock.advance(2)
        engine.handle_message(hook_message("PreToolUse", tool_name="Bash"))

        assert engine.get_session(KEY).tool_history == ()


class TestExpiry:
    """sweep_expired removes or force-completes stale sessions."""

    def test_completed_removed_after_five_seconds(self, engine, clock, hook_message):
        engine.handle_message(hook_message("Stop"))
        clock.advance(4)
        engine.sweep_expired()
        assert KEY in engine.session_keys

        clock.advance(2)
        engine.sweep_expired()
        assert KEY not in engine.session_keys

    def test_error_removed_after_five_seconds(self, engine, clock, hook_message):
        engine.handle_message(hook_message("Stop", message="Task failed"))
        clock.advance(5.5)
        engine.sweep_expired()
        assert KEY not in engine.session_keys

    def test_stale_working_session_forced_to_completed(
        self, engine, clock, alerts, hook_message
    ):
        engine.handle_message(hook_message("PreToolUse", tool_name="Bash"))
        clock.advance(61)
        engine.sweep_expired()

        session = engine.get_session(KEY)
        assert session.status == SessionStatus.COMPLETED
        assert session.last_update == clock()
        assert alerts[-1][0] == AlertKind.COMPLETION

        clock.advance(6)
        engine.sweep_expired()
        assert KEY not in engine.session_keys

    def test_working_session_kept_within_window(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Bash"))
        clock.advance(59)
        engine.sweep_expired()
        assert engine.get_session(KEY).status == SessionStatus.THINKING

    def test_waiting_removed_after_ninety_seconds(self, engine, clock, hook_message):
        engine.handle_message(hook_message("Notification"))
        clock.advance(89)
        engine.sweep_expired()
        assert KEY in engine.session_keys

        clock.advance(2)
        engine.sweep_expired()
        assert KEY not in engine.session_keys


class TestActiveList:
    """The published list honors display delay, fade and ordering."""

    def test_new_session_hidden_until_display_delay(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        assert engine.active_sessions == ()

        clock.advance(0.6)
        engine.refresh()
        assert [s.key for s in engine.active_sessions] == [KEY]

    def test_sorted_by_most_recent_update(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PreToolUse", session_id="aaaa0000", tool_name="Read"))
        clock.advance(1)
        engine.handle_message(hook_message("PreToolUse", session_id="bbbb0000", tool_name="Read"))
        clock.advance(1)
        engine.refresh()

        assert [s.key for s in engine.active_sessions] == ["bbbb0000", "aaaa0000"]
        assert engine.active_sessions[0].short_id == "#bbbb"

    def test_completed_session_fades(self, engine, clock, hook_message):
        engine.handle_message(hook_message("Stop"))
        clock.advance(2)
        engine.refresh()
        assert engine.active_sessions[0].opacity == 1.0

        clock.advance(2)
        engine.refresh()
        assert engine.active_sessions[0].opacity == 0.5

    def test_faded_out_session_not_listed(self, engine, clock, hook_message):
        engine.handle_message(hook_message("Stop"))
        clock.advance(5)
        engine.refresh()
        assert engine.active_sessions == ()

    def test_long_operation_flags(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Bash"))
        clock.advance(31)
        engine.refresh()

        snapshot = engine.active_sessions[0]
        assert snapshot.is_still_thinking is True
        assert snapshot.is_still_waiting is False

    def test_waiting_countdown(self, engine, clock, hook_message):
        engine.handle_message(hook_message("Notification"))
        clock.advance(40)
        engine.refresh()

        snapshot = engine.active_sessions[0]
        assert snapshot.is_still_waiting is True
        assert snapshot.waiting_seconds_remaining == 50

    def test_observers_receive_updates(self, engine, hook_message):
        updates = []
        engine.add_observer(updates.append)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))

        assert len(updates) == 1
        assert isinstance(updates[0], EngineUpdate)
        assert updates[0].type == "session_list"
        assert updates[0].stats.tool_calls == 1

    def test_failing_observer_does_not_break_engine(self, engine, hook_message):
        def broken(update):
            raise RuntimeError("renderer crashed")

        updates = []
        engine.add_observer(broken)
        engine.add_observer(updates.append)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))

        assert len(updates) == 1
        assert KEY in engine.session_keys


class TestAlerts:
    """Alerts fire once on state entry and respect the sound toggle."""

    def test_notification_alerts_once(self, engine, clock, alerts, hook_message):
        engine.handle_message(hook_message("Notification"))
        clock.advance(1)
        engine.handle_message(hook_message("Notification"))

        assert [kind for kind, _ in alerts] == [AlertKind.ATTENTION]
        assert alerts[0][1].status == SessionStatus.WAITING

    def test_stop_alerts_completion(self, engine, alerts, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Bash"))
        engine.handle_message(hook_message("Stop"))
        assert [kind for kind, _ in alerts] == [AlertKind.COMPLETION]

    def test_error_stop_alerts_attention(self, engine, alerts, hook_message):
        engine.handle_message(hook_message("Stop", message="Something failed"))
        assert [kind for kind, _ in alerts] == [AlertKind.ATTENTION]

    def test_no_alerts_when_sound_disabled(self, engine, alerts, hook_message):
        assert engine.toggle_sound() is False
        engine.handle_message(hook_message("Notification"))
        engine.handle_message(hook_message("Stop"))
        assert alerts == []

    def test_working_transitions_do_not_alert(self, engine, alerts, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        engine.handle_message(hook_message("PostToolUse", tool_name="Read"))
        assert alerts == []


class TestManualOperations:
    def test_toggle_expand(self, engine, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))

        assert engine.toggle_expand(KEY) is True
        assert engine.get_session(KEY).is_expanded is True
        assert engine.toggle_expand(KEY) is True
        assert engine.get_session(KEY).is_expanded is False

    def test_toggle_expand_unknown_session(self, engine):
        assert engine.toggle_expand("missing") is False

    def test_dismiss(self, engine, hook_message):
        engine.handle_message(hook_message("Notification"))

        assert engine.dismiss_session(KEY) is True
        assert KEY not in engine.session_keys
        assert engine.dismiss_session(KEY) is False


class TestStats:
    def test_unique_sessions_counted_once(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        clock.advance(1)
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        engine.handle_message(hook_message("PreToolUse", session_id="ffff0000", tool_name="Read"))

        assert engine.stats_snapshot.sessions_count == 2
        assert engine.stats_snapshot.tool_calls == 3


class TestSingleCommandScenario:
    """One Bash command from start to expiry."""

    def test_full_lifecycle(self, engine, clock, alerts, hook_message):
        engine.handle_message(
            hook_message("PreToolUse", tool_name="Bash", tool_input={"command": "npm test"})
        )
        clock.advance(0.6)
        engine.refresh()
        assert engine.active_sessions[0].status == SessionStatus.THINKING

        clock.advance(1)
        engine.handle_message(
            hook_message("PostToolUse", tool_name="Bash", tool_input={"command": "npm test"})
        )
        snapshot = engine.active_sessions[0]
        assert snapshot.status == SessionStatus.THINKING
        assert [event.target for event in snapshot.tool_history] == ["npm test"]

        clock.advance(1)
        engine.handle_message(hook_message("Stop"))
        assert engine.active_sessions[0].status == SessionStatus.COMPLETED
        assert [kind for kind, _ in alerts] == [AlertKind.COMPLETION]

        clock.advance(6)
        engine.sweep_expired()
        assert engine.active_sessions == ()
        assert engine.session_keys == frozenset()
        assert engine.stats_snapshot.tool_calls == 1
        assert engine.stats_snapshot.sessions_count == 1


class TestTimers:
    """Fade timer runs only while some record needs it."""

    @pytest.mark.asyncio
    async def test_fade_timer_follows_need(self, engine, hook_message):
        await engine.start()
        try:
            assert engine.fade_timer_running is False

            engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
            assert engine.fade_timer_running is True

            engine.dismiss_session(KEY)
            assert engine.fade_timer_running is False
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_timers(self, engine, hook_message):
        await engine.start()
        engine.handle_message(hook_message("Stop"))
        await engine.stop()

        assert engine.fade_timer_running is False

    def test_needs_fade_timer_for_finished_sessions(self, engine, clock, hook_message):
        engine.handle_message(hook_message("Stop"))
        clock.advance(1)
        assert engine.needs_fade_timer() is True

    def test_no_fade_timer_for_fresh_working_session(self, engine, clock, hook_message):
        engine.handle_message(hook_message("PreToolUse", tool_name="Read"))
        clock.advance(1)
        assert engine.needs_fade_timer() is False
