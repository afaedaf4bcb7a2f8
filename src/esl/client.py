"""
Event Socket command line client.

Connects to a switch, runs API queries, and optionally subscribes to
notifications and logs them until interrupted.
"""

import argparse
import logging
import sys
import threading
from typing import List, Optional

from rich.console import Console

from .config import ConnectionConfig
from .connection import Connection, ConnectionHandler
from .event import Event
from .exceptions import ConfigurationError, ESLError
from ..utils.logging import configure_cli_logging


class LoggingHandler(ConnectionHandler):
    """
    Handler that logs every notification and signals when the connection ends.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.closed = threading.Event()
        self.events_received = 0

    def on_connect(self, connection: Connection) -> None:
        self.logger.info(f"Connected to {connection.address}")

    def on_event(self, connection: Connection, event: Event) -> None:
        self.events_received += 1
        name = event.name.name if event.name is not None else "?"
        if event.app:
            self.logger.info(f"{name} uuid={event.uid} app={event.app} data={event.app_data!r}")
        else:
            self.logger.info(f"{name} uuid={event.uid}")
        self.logger.debug(str(event))

    def on_disconnect(self, connection: Connection, event: Event) -> None:
        self.logger.warning(f"Disconnect notice: {event.get('Content-Disposition') or event.content_type}")

    def on_close(self, connection: Connection) -> None:
        self.logger.info("Connection closed")
        self.closed.set()


def build_parser() -> argparse.ArgumentParser:
    env = ConnectionConfig.from_env()
    parser = argparse.ArgumentParser(description="Event Socket command line client")
    parser.add_argument("--host", default=env.host, help="Switch hostname or IP address")
    parser.add_argument("--port", type=int, default=env.port, help="Event Socket port")
    parser.add_argument("--password", default=env.password, help="Event Socket password")
    parser.add_argument("--timeout", type=float, default=env.timeout, help="Dial timeout in seconds")
    parser.add_argument("--retries", type=int, default=env.max_retries, help="Number of dial attempts")
    parser.add_argument("--api", action="append", default=[], metavar="CMD",
                        help="API query to run after connecting (repeatable)")
    parser.add_argument("--events", metavar="NAMES",
                        help="Subscribe to these notifications (e.g. 'CHANNEL_ANSWER CHANNEL_HANGUP' or ALL)")
    parser.add_argument("--record", action="store_true", help="Enable session recording")
    parser.add_argument("--sessions-dir", default="sessions", help="Directory for recorded sessions")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    return parser


def run(args: argparse.Namespace, console: Console) -> int:
    logger = logging.getLogger("src.esl")
    config = ConnectionConfig(
        host=args.host,
        port=args.port,
        password=args.password,
        timeout=args.timeout,
        max_retries=args.retries,
    )
    handler = LoggingHandler(logger)
    conn = Connection.from_config(config, handler=handler, record_session=args.record)

    try:
        conn.connect()
        conn.start()

        for query in args.api:
            if not query.strip():
                continue
            cmd, *rest = query.split()
            console.print(f"[bold cyan]api {query}[/bold cyan]")
            console.print(conn.api(cmd, *rest).rstrip("\n"))

        if args.events:
            conn.send_recv("event", "plain", *args.events.split())
            console.print(f"[green]Subscribed to {args.events}, press Ctrl+C to stop[/green]")
            handler.closed.wait()
            conn.join()
        return 0
    finally:
        conn.close()
        if conn.session_recorder:
            session_file = conn.session_recorder.save_session(args.sessions_dir)
            logger.info(f"Session saved to: {session_file}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the Event Socket client."""
    console = Console()
    try:
        args = build_parser().parse_args(argv)
    except ConfigurationError as e:
        console.print(f"[red]Invalid environment: {e}[/red]")
        return 1

    configure_cli_logging(verbose=args.verbose, use_rich=console.is_terminal)

    try:
        return run(args, console)
    except KeyboardInterrupt:
        console.print("\nInterrupted by user")
        return 1
    except ESLError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
