"""
Tests for the command line client.
"""

import io
import argparse
import pytest
from unittest.mock import Mock, patch
from rich.console import Console
from src.esl.client import LoggingHandler, build_parser, main, run
from src.esl.event import Event
from src.esl.exceptions import AuthenticationError


def make_args(**overrides):
    """Parsed arguments with defaults for every option."""
    args = build_parser().parse_args([])
    for name, value in overrides.items():
        setattr(args, name, value)
    return args


class TestArgumentParser:
    """Test command line parsing."""

    @patch.dict('os.environ', {}, clear=True)
    def test_defaults(self):
        """Test the defaults without any environment."""
        args = build_parser().parse_args([])

        assert args.host == "127.0.0.1"
        assert args.port == 8021
        assert args.password == "ClueCon"
        assert args.api == []
        assert args.events is None
        assert args.record is False

    @patch.dict('os.environ', {"ESL_HOST": "pbx.local", "ESL_PORT": "8022"}, clear=True)
    def test_defaults_from_environment(self):
        """Test that the environment provides the defaults."""
        args = build_parser().parse_args([])

        assert args.host == "pbx.local"
        assert args.port == 8022

    def test_repeatable_api(self):
        """Test that --api may be given several times."""
        args = build_parser().parse_args(["--api", "status", "--api", "show channels", "-v"])

        assert args.api == ["status", "show channels"]
        assert args.verbose is True


class TestLoggingHandler:
    """Test the handler used by the command line client."""

    def test_counts_events(self):
        """Test that notifications are counted."""
        handler = LoggingHandler(Mock())
        body = b"Event-Name: CHANNEL_ANSWER\nUnique-ID: abc-123\n\n"
        event = Event.read(io.BytesIO(
            f"Content-Length: {len(body)}\nContent-Type: text/event-plain\n\n".encode("utf-8") + body
        ))

        handler.on_event(Mock(), event)
        handler.on_event(Mock(), event)

        assert handler.events_received == 2

    def test_close_sets_flag(self):
        """Test that on_close signals the main thread."""
        handler = LoggingHandler(Mock())
        assert not handler.closed.is_set()

        handler.on_close(Mock())

        assert handler.closed.is_set()


class TestRun:
    """Test the client workflow with a mocked connection."""

    @patch('src.esl.client.Connection')
    def test_run_api_queries(self, mock_connection_class):
        """Test that api queries are run and printed."""
        conn = mock_connection_class.from_config.return_value
        conn.api.return_value = "UP 0 years\n"
        conn.session_recorder = None
        console = Console(file=io.StringIO())

        result = run(make_args(api=["status", "show channels"]), console)

        assert result == 0
        conn.connect.assert_called_once()
        conn.start.assert_called_once()
        conn.api.assert_any_call("status")
        conn.api.assert_any_call("show", "channels")
        conn.close.assert_called_once()
        assert "UP 0 years" in console.file.getvalue()

    @patch('src.esl.client.Connection')
    def test_run_subscribes_to_events(self, mock_connection_class):
        """Test that --events subscribes and waits for the connection to end."""
        conn = mock_connection_class.from_config.return_value
        conn.session_recorder = None

        def fake_from_config(config, handler=None, record_session=False):
            handler.closed.set()
            return conn
        mock_connection_class.from_config.side_effect = fake_from_config

        result = run(make_args(events="CHANNEL_ANSWER CHANNEL_HANGUP"), Console(file=io.StringIO()))

        assert result == 0
        conn.send_recv.assert_called_once_with("event", "plain", "CHANNEL_ANSWER", "CHANNEL_HANGUP")
        conn.join.assert_called_once()

    @patch('src.esl.client.Connection')
    def test_run_saves_recording(self, mock_connection_class):
        """Test that the recording is saved after the connection closes."""
        conn = mock_connection_class.from_config.return_value
        conn.session_recorder.save_session.return_value = "sessions/x.json"

        run(make_args(record=True, sessions_dir="out"), Console(file=io.StringIO()))

        conn.session_recorder.save_session.assert_called_once_with("out")

    @patch('src.esl.client.Connection')
    def test_run_closes_on_failure(self, mock_connection_class):
        """Test that the connection is closed when connect fails."""
        conn = mock_connection_class.from_config.return_value
        conn.session_recorder = None
        conn.connect.side_effect = AuthenticationError("auth rejected")

        with pytest.raises(AuthenticationError):
            run(make_args(), Console(file=io.StringIO()))

        conn.close.assert_called_once()


class TestMain:
    """Test the client entry point."""

    @patch('src.esl.client.run')
    @patch('src.esl.client.configure_cli_logging')
    def test_main_success(self, mock_logging, mock_run):
        """Test a successful run."""
        mock_run.return_value = 0
        assert main(["--api", "status"]) == 0
        assert isinstance(mock_run.call_args[0][0], argparse.Namespace)

    @patch('src.esl.client.run')
    @patch('src.esl.client.configure_cli_logging')
    def test_main_error(self, mock_logging, mock_run):
        """Test that client errors become a failing exit code."""
        mock_run.side_effect = AuthenticationError("auth rejected")
        assert main([]) == 1

    @patch('src.esl.client.run')
    @patch('src.esl.client.configure_cli_logging')
    def test_main_keyboard_interrupt(self, mock_logging, mock_run):
        """Test keyboard interrupt handling."""
        mock_run.side_effect = KeyboardInterrupt()
        assert main([]) == 1

    @patch.dict('os.environ', {"ESL_PORT": "not-a-port"}, clear=True)
    def test_main_invalid_environment(self):
        """Test that a bad environment is reported without connecting."""
        assert main([]) == 1
