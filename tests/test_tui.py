"""
Tests for TUI replay functionality.
"""

import io
import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console
from rich.panel import Panel

from src.tui.replay import (
    SessionReplayTUI, classify, describe_interaction, is_failure, main,
    print_session_list, print_summary, truncate,
)


def create_test_session_file(temp_dir, session_data):
    """Helper to create test session file."""
    session_file = Path(temp_dir) / "test_session.json"
    with open(session_file, 'w') as f:
        json.dump(session_data, f)
    return str(session_file)


SAMPLE_SESSION = {
    "session_id": "test_session",
    "start_time": 1234567890,
    "duration": 10.5,
    "total_interactions": 7,
    "metadata": {"protocol_version": "Event Socket (plain)"},
    "interactions": [
        {
            "timestamp": 1234567890,
            "relative_time": 0.0,
            "type": "event",
            "event_type": "connection",
            "description": "Connected to 127.0.0.1:8021",
            "details": {"address": "127.0.0.1:8021"}
        },
        {
            "timestamp": 1234567891,
            "relative_time": 1.0,
            "type": "request",
            "command": "api",
            "line": "api status",
            "payload": "",
            "payload_length": 0,
            "raw_frame_length": 12
        },
        {
            "timestamp": 1234567892,
            "relative_time": 2.0,
            "type": "response",
            "content_type": "api/response",
            "event_type": "API_RESPONSE",
            "event_name": "",
            "unique_id": "",
            "reply_text": None,
            "headers": {"Content-Type": "api/response", "Content-Length": "19"},
            "payload": "UP 0 years, 0 days\n",
            "payload_length": 19
        },
        {
            "timestamp": 1234567893,
            "relative_time": 3.0,
            "type": "response",
            "content_type": "command/reply",
            "event_type": "COMMAND_REPLY",
            "event_name": "",
            "unique_id": "",
            "reply_text": "-ERR invalid",
            "headers": {"Content-Type": "command/reply", "Reply-Text": "-ERR invalid"},
            "payload": "",
            "payload_length": 0
        },
        {
            "timestamp": 1234567894,
            "relative_time": 4.0,
            "type": "response",
            "content_type": "text/event-plain",
            "event_type": "GENERIC",
            "event_name": "CHANNEL_ANSWER",
            "unique_id": "abc-123",
            "reply_text": None,
            "headers": {"Content-Type": "text/event-plain", "Content-Length": "60"},
            "payload": "Event-Name: CHANNEL_ANSWER\nUnique-ID: abc-123\n",
            "payload_length": 60
        },
        {
            "timestamp": 1234567895,
            "relative_time": 5.0,
            "type": "response",
            "content_type": "api/response",
            "event_type": "API_RESPONSE",
            "event_name": "",
            "unique_id": "",
            "reply_text": None,
            "headers": {"Content-Type": "api/response", "Content-Length": "21"},
            "payload": "-ERR no such command\n",
            "payload_length": 21
        },
        {
            "timestamp": 1234567896,
            "relative_time": 6.0,
            "type": "event",
            "event_type": "error",
            "description": "Event read loop: connection reset",
            "details": {"error_type": "receive_failed"}
        }
    ]
}


class TestInteractionHelpers:
    """Test the labelling and failure helpers."""

    def setup_method(self):
        self.interactions = SAMPLE_SESSION["interactions"]

    def test_describe_interaction(self):
        """Test the short labels shown in the timeline."""
        assert describe_interaction(self.interactions[0]) == "connection"
        assert describe_interaction(self.interactions[1]) == "api status"
        assert describe_interaction(self.interactions[2]) == "api/response"
        assert describe_interaction(self.interactions[3]) == "command/reply -ERR invalid"
        assert describe_interaction(self.interactions[4]) == "CHANNEL_ANSWER abc-123"

    def test_is_failure(self):
        """Test which frames count as failures."""
        assert [is_failure(i) for i in self.interactions] == [
            False, False, False, True, False, True, True
        ]

    def test_classify(self):
        """Test the buckets used for frame counts."""
        assert [classify(i) for i in self.interactions] == [
            "client connection", "sent api", "API_RESPONSE", "COMMAND_REPLY",
            "CHANNEL_ANSWER", "API_RESPONSE", "client error"
        ]

    def test_truncate(self):
        """Test that long values are truncated."""
        assert truncate("A" * 150) == "A" * 97 + "..."
        assert truncate("short") == "short"


class TestSessionReplayTUI:
    """Test cases for SessionReplayTUI."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.session_file = create_test_session_file(self.temp_dir.name, SAMPLE_SESSION)

    def teardown_method(self):
        self.temp_dir.cleanup()

    def test_app_initialization_with_file(self):
        """Test app initialization with session file."""
        app = SessionReplayTUI(self.session_file)

        assert app.session_data == SAMPLE_SESSION
        assert app.current_step == 0
        assert len(app.interactions) == 7
        assert app.all_interactions == app.interactions

    @pytest.mark.parametrize("kind,expected", [
        ("requests", ["api status"]),
        ("replies", ["api/response", "command/reply -ERR invalid", "api/response"]),
        ("notifications", ["CHANNEL_ANSWER abc-123"]),
        ("lifecycle", ["connection", "error"]),
    ])
    def test_kind_filter(self, kind, expected):
        """Test narrowing the replay to one kind of frame."""
        app = SessionReplayTUI(self.session_file, kind=kind)

        assert [describe_interaction(i) for i in app.interactions] == expected
        assert len(app.all_interactions) == 7

    def test_content_type_filter(self):
        """Test narrowing the replay to one Content-Type."""
        app = SessionReplayTUI(self.session_file, content_type="api/response")

        assert [i["payload"] for i in app.interactions] == ["UP 0 years, 0 days\n", "-ERR no such command\n"]
        assert "2 of 7 frames (all, api/response)" in app.create_header_panel().renderable.plain

    def test_filter_matching_nothing_exits(self):
        """Test that a filter leaving no frames ends the viewer."""
        with pytest.raises(SystemExit):
            SessionReplayTUI(self.session_file, kind="requests", content_type="api/response")

    def test_navigation_next(self):
        """Test navigation to next step."""
        app = SessionReplayTUI(self.session_file)

        assert app.next_step() is True
        assert app.current_step == 1

        app.current_step = 6
        # Should not go beyond last step
        assert app.next_step() is False
        assert app.current_step == 6

    def test_navigation_previous(self):
        """Test navigation to previous step."""
        app = SessionReplayTUI(self.session_file)
        app.current_step = 1

        assert app.previous_step() is True
        assert app.current_step == 0

        # Should not go before first step
        assert app.previous_step() is False
        assert app.current_step == 0

    def test_first_and_last_step(self):
        """Test jumping to either end of the recording."""
        app = SessionReplayTUI(self.session_file)

        assert app.last_step() is True
        assert app.current_step == 6
        assert app.last_step() is False
        assert app.first_step() is True
        assert app.current_step == 0

    def test_next_failure(self):
        """Test jumping from one failure to the next."""
        app = SessionReplayTUI(self.session_file)

        assert app.next_failure() is True
        assert app.current_step == 3
        assert app.next_failure() is True
        assert app.current_step == 5
        assert app.next_failure() is True
        assert app.current_step == 6
        assert app.next_failure() is False
        assert app.current_step == 6

    def test_handle_key(self):
        """Test the key bindings."""
        app = SessionReplayTUI(self.session_file)

        assert app.handle_key("n") is True
        assert app.current_step == 1
        assert app.handle_key("e") is True
        assert app.current_step == 3
        assert app.handle_key("G") is True
        assert app.current_step == 6
        assert app.handle_key("p") is True
        assert app.current_step == 5
        assert app.handle_key("g") is True
        assert app.current_step == 0
        assert app.handle_key("x") is True
        assert app.current_step == 0
        assert app.handle_key("q") is False

    def test_create_panels_for_every_step(self):
        """Test creating UI panels at every step."""
        app = SessionReplayTUI(self.session_file)

        for step in range(len(app.interactions)):
            app.current_step = step
            assert isinstance(app.create_header_panel(), Panel)
            assert isinstance(app.create_counts_panel(), Panel)
            assert isinstance(app.create_interaction_panel(), Panel)
            assert isinstance(app.create_body_panel(), Panel)
            assert isinstance(app.create_timeline_panel(), Panel)

    def test_failed_frames_panel_is_red(self):
        """Test that failed replies and errors are highlighted."""
        app = SessionReplayTUI(self.session_file)

        expected = ["yellow", "blue", "green", "red", "green", "red", "red"]
        for step, border_style in enumerate(expected):
            app.current_step = step
            assert app.create_interaction_panel().border_style == border_style

    def test_notification_panel_shows_event_name_and_uid(self):
        """Test that notifications are titled with their Event-Name and Unique-ID."""
        app = SessionReplayTUI(self.session_file, kind="notifications")

        assert app.create_interaction_panel().title == "CHANNEL_ANSWER abc-123"
        assert "abc-123" in app.create_timeline_panel().renderable.plain

    def test_body_panel(self):
        """Test the body panel for api output and empty frames."""
        app = SessionReplayTUI(self.session_file)

        app.current_step = 2
        panel = app.create_body_panel()
        assert panel.title == "Body (19 bytes)"
        assert panel.renderable.plain == "UP 0 years, 0 days"

        app.current_step = 0
        assert app.create_body_panel().renderable.plain == "(no body)"

    def test_body_panel_cuts_long_output(self):
        """Test that long api output is cut to a fixed number of lines."""
        session = dict(SAMPLE_SESSION)
        session["interactions"] = [dict(SAMPLE_SESSION["interactions"][2],
                                        payload="\n".join(f"line {n}" for n in range(30)))]
        app = SessionReplayTUI(create_test_session_file(self.temp_dir.name, session))

        lines = app.create_body_panel().renderable.plain.splitlines()
        assert len(lines) == 21
        assert lines[-1] == "... 10 more lines"

    def test_interaction_panel_out_of_range(self):
        """Test interaction panel when the step is past the end."""
        app = SessionReplayTUI(self.session_file)
        app.current_step = 999

        assert app.create_interaction_panel().title == "Interaction"

    def test_create_layout(self):
        """Test creating the main layout."""
        app = SessionReplayTUI(self.session_file)
        layout = app.create_layout()

        assert layout["body"] is not None
        assert layout["counts"] is not None

    def test_run_with_line_input(self):
        """Test the viewer loop when stdin is not a terminal."""
        app = SessionReplayTUI(self.session_file)

        with patch('src.tui.replay.termios', None), \
                patch.object(app.console, "clear"), \
                patch.object(app.console, "print"), \
                patch.object(app.console, "input", side_effect=["n", "e", "q"]):
            app.run()

        assert app.current_step == 3

    def test_load_session_file_not_found(self):
        """Test loading non-existent session file."""
        with pytest.raises(SystemExit):
            SessionReplayTUI("non_existent_file.json")

    def test_load_session_invalid_json(self):
        """Test loading invalid JSON file."""
        invalid_file = Path(self.temp_dir.name) / "invalid.json"
        invalid_file.write_text("invalid json content")

        with pytest.raises(SystemExit):
            SessionReplayTUI(str(invalid_file))

    def test_load_session_no_interactions(self):
        """Test loading session with no interactions."""
        session_file = create_test_session_file(self.temp_dir.name, {"session_id": "empty", "interactions": []})

        with pytest.raises(SystemExit):
            SessionReplayTUI(session_file)


class TestSummaryAndListing:
    """Test the non-interactive output."""

    def test_print_summary(self):
        """Test that the summary lists counts and every failure."""
        with tempfile.TemporaryDirectory() as temp_dir:
            app = SessionReplayTUI(create_test_session_file(temp_dir, SAMPLE_SESSION))
        output = io.StringIO()

        print_summary(Console(file=output, width=120), app)

        text = output.getvalue()
        assert "CHANNEL_ANSWER" in text
        assert "command/reply -ERR invalid" in text
        assert "api/response" in text
        assert "error" in text

    @patch('src.tui.replay.SessionLoader.list_sessions')
    def test_list_sessions_with_data(self, mock_list_sessions):
        """Test listing sessions with data."""
        mock_list_sessions.return_value = [
            {
                "session_id": "test1",
                "recorded_at": "2023-01-01T12:00:00",
                "duration": 10.5,
                "total_interactions": 5,
                "protocol_version": "Event Socket (plain)",
                "filename": "test1.json"
            },
            {
                "session_id": "test2",
                "recorded_at": "not a date",
                "duration": None,
                "total_interactions": 3,
                "filename": "test2.json"
            }
        ]
        output = io.StringIO()

        print_session_list(Console(file=output, width=160), "test_dir")

        mock_list_sessions.assert_called_once_with("test_dir")
        text = output.getvalue()
        assert "2023-01-01 12:00:00" in text
        assert "Event Socket (plain)" in text
        assert "not a date" in text

    @patch('src.tui.replay.SessionLoader.list_sessions')
    def test_list_sessions_empty(self, mock_list_sessions):
        """Test listing sessions with no data."""
        mock_list_sessions.return_value = []
        output = io.StringIO()

        print_session_list(Console(file=output, width=120), "empty_dir")

        mock_list_sessions.assert_called_once_with("empty_dir")
        assert "No session files found in empty_dir" in output.getvalue()


class TestReplayMain:
    """Test the replay entry point."""

    @patch('src.tui.replay.print_session_list')
    def test_main_list(self, mock_list):
        """Test that --list lists sessions."""
        assert main(["--list", "--sessions-dir", "recordings"]) == 0
        assert mock_list.call_args[0][1] == "recordings"

    @patch('rich.console.Console.print')
    def test_main_without_session(self, mock_print):
        """Test that a missing --session is an error."""
        assert main([]) == 1

    @patch('src.tui.replay.SessionReplayTUI')
    def test_main_runs_replay(self, mock_tui):
        """Test that --session starts the replay."""
        assert main(["--session", "session.json"]) == 0
        mock_tui.assert_called_once_with("session.json", kind="all", content_type=None)
        mock_tui.return_value.run.assert_called_once()

    @patch('src.tui.replay.SessionReplayTUI')
    def test_main_passes_filters(self, mock_tui):
        """Test that --only and --content-type reach the viewer."""
        main(["--session", "session.json", "--only", "replies", "--content-type", "api/response"])
        mock_tui.assert_called_once_with("session.json", kind="replies", content_type="api/response")

    @patch('src.tui.replay.SessionReplayTUI')
    def test_main_keyboard_interrupt(self, mock_tui):
        """Test that an interrupt ends the replay with an error code."""
        mock_tui.return_value.run.side_effect = KeyboardInterrupt()
        assert main(["--session", "session.json"]) == 1

    @patch('rich.console.Console.print')
    def test_main_summary_exit_code(self, mock_print):
        """Test that --summary fails only when the shown frames contain a failure."""
        with tempfile.TemporaryDirectory() as temp_dir:
            session_file = create_test_session_file(temp_dir, SAMPLE_SESSION)

            assert main(["--session", session_file, "--summary"]) == 1
            assert main(["--session", session_file, "--summary", "--only", "notifications"]) == 0
