"""
Terminal replay of recorded Event Socket sessions.

Steps through a recording one frame at a time. The frames shown can be
narrowed to one kind (requests, replies, notifications, lifecycle events)
or to a single Content-Type, and failed replies can be jumped to directly.

Keys:
    n / p   next / previous frame
    e       next failure (-ERR reply, -ERR api output, error event)
    g / G   first / last frame
    q       quit
"""

import argparse
import json
import sys
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from rich import box
from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..esl.session import SessionLoader

try:
    import termios
    import tty
except ImportError:  # Windows
    termios = None


Interaction = Dict[str, Any]

FILTERS: Dict[str, Callable[[Interaction], bool]] = {
    "all": lambda i: True,
    "requests": lambda i: i.get("type") == "request",
    "replies": lambda i: i.get("event_type") in ("COMMAND_REPLY", "API_RESPONSE"),
    "notifications": lambda i: i.get("event_type") in ("GENERIC", "DISCONNECT"),
    "lifecycle": lambda i: i.get("type") == "event",
}

BODY_LINES = 20


def is_failure(interaction: Interaction) -> bool:
    """Whether an interaction records a failed reply or a client side error."""
    if interaction.get("type") == "event":
        return interaction.get("event_type") == "error"
    if (interaction.get("reply_text") or "").startswith("-ERR"):
        return True
    return (interaction.get("event_type") == "API_RESPONSE"
            and (interaction.get("payload") or "").lstrip().startswith("-ERR"))


def classify(interaction: Interaction) -> str:
    """Bucket used for the per-session counts."""
    interaction_type = interaction.get("type")
    if interaction_type == "request":
        return f"sent {interaction.get('command') or '?'}"
    if interaction_type == "response":
        return interaction.get("event_name") or interaction.get("event_type") or "UNKNOWN"
    return f"client {interaction.get('event_type', 'event')}"


def describe_interaction(interaction: Interaction) -> str:
    """Short label for an interaction: the command sent or the frame received."""
    interaction_type = interaction.get("type", "unknown")
    if interaction_type == "request":
        return interaction.get("line") or interaction.get("command") or "UNKNOWN"
    if interaction_type == "response":
        if interaction.get("event_name"):
            uid = interaction.get("unique_id")
            return f"{interaction['event_name']} {uid}" if uid else interaction["event_name"]
        label = interaction.get("content_type") or "UNKNOWN"
        reply_text = interaction.get("reply_text")
        return f"{label} {reply_text}" if reply_text else label
    return interaction.get("event_type", "event")


def truncate(value: str, limit: int = 100) -> str:
    return value if len(value) <= limit else value[:limit - 3] + "..."


class SessionReplayTUI:
    """
    Interactive viewer for one recorded session.

    Only the interactions selected by ``kind`` and ``content_type`` are
    stepped through; the header shows how much of the recording that is.
    """

    def __init__(self, session_file: str, kind: str = "all", content_type: Optional[str] = None):
        self.session_file = session_file
        self.kind = kind
        self.content_type = content_type
        self.console = Console()
        self.session_data: Dict[str, Any] = {}
        self.all_interactions: List[Interaction] = []
        self.interactions: List[Interaction] = []
        self.current_step = 0
        self.load_session()

    def _fail(self, message: str) -> None:
        self.console.print(f"[red]{message}[/red]")
        sys.exit(1)

    def load_session(self) -> None:
        """Load the recording and apply the frame filter; exits when nothing is left to show."""
        try:
            self.session_data = SessionLoader.load_session(self.session_file)
        except FileNotFoundError:
            self._fail(f"Session file not found: {self.session_file}")
        except json.JSONDecodeError:
            self._fail(f"Invalid JSON in session file: {self.session_file}")

        self.all_interactions = self.session_data.get("interactions", [])
        if not self.all_interactions:
            self._fail("No interactions found in session file")

        selected = FILTERS[self.kind]
        self.interactions = [
            i for i in self.all_interactions
            if selected(i) and (self.content_type is None or i.get("content_type") == self.content_type)
        ]
        if not self.interactions:
            if self.content_type:
                self._fail(f"No {self.kind} frames with Content-Type {self.content_type}")
            self._fail(f"No {self.kind} frames in session")

    @property
    def current(self) -> Interaction:
        return self.interactions[self.current_step]

    def classification_counts(self) -> Counter:
        return Counter(classify(i) for i in self.interactions)

    # Navigation

    def next_step(self) -> bool:
        """Move to the next frame. Returns False at the end."""
        if self.current_step < len(self.interactions) - 1:
            self.current_step += 1
            return True
        return False

    def previous_step(self) -> bool:
        """Move to the previous frame. Returns False at the beginning."""
        if self.current_step > 0:
            self.current_step -= 1
            return True
        return False

    def first_step(self) -> bool:
        moved = self.current_step != 0
        self.current_step = 0
        return moved

    def last_step(self) -> bool:
        last = len(self.interactions) - 1
        moved = self.current_step != last
        self.current_step = last
        return moved

    def next_failure(self) -> bool:
        """Jump forward to the next failed frame. Returns False if there is none."""
        for index in range(self.current_step + 1, len(self.interactions)):
            if is_failure(self.interactions[index]):
                self.current_step = index
                return True
        return False

    def handle_key(self, key: str) -> bool:
        """Apply one keypress. Returns False when the viewer should exit."""
        if key in ("q", "Q", "\x03"):
            return False
        action = {
            "n": self.next_step,
            "p": self.previous_step,
            "e": self.next_failure,
            "g": self.first_step,
            "G": self.last_step,
        }.get(key)
        if action is not None:
            action()
        return True

    # Rendering

    def create_header_panel(self) -> Panel:
        start_time = self.session_data.get("start_time", 0)
        metadata = self.session_data.get("metadata", {})

        header_text = Text()
        header_text.append(f"{self.session_data.get('session_id', 'Unknown')}\n", style="bold cyan")
        header_text.append(f"{metadata.get('protocol_version', 'Event Socket')}  ", style="white")
        header_text.append(datetime.fromtimestamp(start_time).strftime("%Y-%m-%d %H:%M:%S"), style="white")
        header_text.append(f"  {self.session_data.get('duration', 0):.2f}s\n", style="white")
        shown = f"{len(self.interactions)} of {len(self.all_interactions)} frames"
        if self.content_type:
            shown += f" ({self.kind}, {self.content_type})"
        elif self.kind != "all":
            shown += f" ({self.kind})"
        header_text.append(shown, style="yellow")
        return Panel(header_text, title="Event Socket Session", border_style="blue")

    def create_counts_panel(self) -> Panel:
        """Frame position, counts per classification and failures."""
        table = Table(box=None, show_header=False, padding=(0, 1))
        table.add_column("Frame", style="cyan")
        table.add_column("Count", justify="right")
        for label, count in sorted(self.classification_counts().items()):
            table.add_row(label, str(count))
        failures = sum(1 for i in self.interactions if is_failure(i))
        if failures:
            table.add_row("[red]failures[/red]", f"[red]{failures}[/red]")

        position = Text(f"Frame {self.current_step + 1} of {len(self.interactions)}\n", style="bold yellow")
        return Panel(Group(position, table), title="Frames", border_style="green")

    def create_interaction_panel(self) -> Panel:
        """Properties of the current frame."""
        if not self.interactions or self.current_step >= len(self.interactions):
            return Panel("No interaction to display", title="Interaction", border_style="red")

        interaction = self.current
        interaction_type = interaction.get("type", "unknown")

        table = Table(show_header=True, header_style="bold magenta", box=box.ROUNDED)
        table.add_column("Property", style="cyan", width=20)
        table.add_column("Value", style="white")

        timestamp = datetime.fromtimestamp(interaction.get("timestamp", 0)).strftime("%H:%M:%S.%f")[:-3]
        table.add_row("Time", f"{timestamp} (+{interaction.get('relative_time', 0):.3f}s)")

        if interaction_type == "request":
            table.add_row("Sent", interaction.get("line") or interaction.get("command", ""))
            table.add_row("Frame Length", str(interaction.get("raw_frame_length", 0)))
        elif interaction_type == "response":
            table.add_row("Content-Type", interaction.get("content_type", ""))
            table.add_row("Classification", interaction.get("event_type", ""))
            if interaction.get("event_name"):
                table.add_row("Event-Name", interaction["event_name"])
            if interaction.get("unique_id"):
                table.add_row("Unique-ID", interaction["unique_id"])
            if interaction.get("reply_text"):
                table.add_row("Reply-Text", interaction["reply_text"])
            for name, value in interaction.get("headers", {}).items():
                if name not in ("Content-Type", "Reply-Text"):
                    table.add_row(name, truncate(str(value)))
        else:
            table.add_row("Client Event", interaction.get("event_type", ""))
            for name, value in interaction.get("details", {}).items():
                table.add_row(name, truncate(str(value)))

        if interaction.get("description"):
            table.add_row("Description", interaction["description"])

        if is_failure(interaction):
            border_color = "red"
        elif interaction_type == "request":
            border_color = "blue"
        elif interaction_type == "response":
            border_color = "green"
        else:
            border_color = "yellow"
        return Panel(table, title=describe_interaction(interaction), border_style=border_color)

    def create_body_panel(self) -> Panel:
        """Body of the current frame: api output, notification headers or request lines."""
        payload = self.current.get("payload") or ""
        length = self.current.get("payload_length", len(payload))
        lines = payload.splitlines()
        if len(lines) > BODY_LINES:
            lines = lines[:BODY_LINES] + [f"... {len(lines) - BODY_LINES} more lines"]
        body = Text("\n".join(lines)) if lines else Text("(no body)", style="dim")
        return Panel(body, title=f"Body ({length} bytes)", border_style="white")

    def create_timeline_panel(self) -> Panel:
        """Frames around the current one."""
        timeline_text = Text()
        window_size = 12
        start_idx = max(0, self.current_step - window_size // 2)
        end_idx = min(len(self.interactions), start_idx + window_size)

        for i in range(start_idx, end_idx):
            interaction = self.interactions[i]
            marker = {"request": "→", "response": "←"}.get(interaction.get("type"), "•")
            entry = (f"{interaction.get('relative_time', 0):7.3f}s {marker} "
                     f"{truncate(describe_interaction(interaction), 40)}")
            if i == self.current_step:
                timeline_text.append(f"► {entry}\n", style="bold yellow on blue")
            elif is_failure(interaction):
                timeline_text.append(f"  {entry}\n", style="red")
            else:
                style = {"request": "blue", "response": "green"}.get(interaction.get("type"), "white")
                timeline_text.append(f"  {entry}\n", style=style)

        return Panel(timeline_text, title="Timeline", border_style="magenta")

    def create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(self.create_header_panel(), name="header", size=5),
            Layout(name="main"),
            Layout(Panel(Text("n/p next/previous  e next failure  g/G first/last  q quit",
                              justify="center"), border_style="white"), name="footer", size=3),
        )
        layout["main"].split_row(Layout(name="left"), Layout(name="right", ratio=2))
        layout["left"].split_column(
            Layout(self.create_counts_panel(), name="counts", size=12),
            Layout(self.create_timeline_panel(), name="timeline"),
        )
        layout["right"].split_column(
            Layout(self.create_interaction_panel(), name="interaction"),
            Layout(self.create_body_panel(), name="body", size=BODY_LINES // 2 + 4),
        )
        return layout

    # Input

    def _raw_keys(self) -> Iterator[str]:
        fd = sys.stdin.fileno()
        saved = termios.tcgetattr(fd)
        try:
            tty.setraw(fd)
            while True:
                yield sys.stdin.read(1)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    def _line_keys(self) -> Iterator[str]:
        while True:
            self.console.clear()
            self.console.print(self.create_layout())
            yield self.console.input("\nKey (n/p/e/g/G/q): ").strip()[:1]

    def run(self) -> None:
        """Run the viewer until the user quits."""
        if termios is None or not sys.stdin.isatty():
            for key in self._line_keys():
                if not self.handle_key(key):
                    return
            return

        with Live(self.create_layout(), console=self.console, screen=True, auto_refresh=False) as live:
            for key in self._raw_keys():
                if not self.handle_key(key):
                    return
                live.update(self.create_layout(), refresh=True)


def print_summary(console: Console, replay: SessionReplayTUI) -> None:
    """Print frame counts and every failure without starting the viewer."""
    table = Table(title=f"Session {replay.session_data.get('session_id', 'Unknown')}",
                  header_style="bold magenta")
    table.add_column("Frame", style="cyan")
    table.add_column("Count", justify="right")
    for label, count in sorted(replay.classification_counts().items()):
        table.add_row(label, str(count))
    console.print(table)

    for interaction in replay.interactions:
        if is_failure(interaction):
            console.print(f"[red]{interaction.get('relative_time', 0):7.3f}s "
                          f"{describe_interaction(interaction)}[/red]")


def print_session_list(console: Console, sessions_dir: str = "sessions") -> None:
    """List the recordings found in a directory, newest first."""
    sessions = SessionLoader.list_sessions(sessions_dir)
    if not sessions:
        console.print(f"[yellow]No session files found in {sessions_dir}[/yellow]")
        return

    table = Table(title=f"Recorded sessions in {sessions_dir}", header_style="bold magenta")
    table.add_column("Session ID", style="cyan")
    table.add_column("Recorded At")
    table.add_column("Duration", justify="right", style="green")
    table.add_column("Frames", justify="right", style="yellow")
    table.add_column("Protocol")
    table.add_column("File", style="blue")

    for session in sessions:
        recorded_at = session.get("recorded_at") or "Unknown"
        try:
            recorded_at = datetime.fromisoformat(recorded_at.replace('Z', '+00:00')).strftime("%Y-%m-%d %H:%M:%S")
        except ValueError:
            pass
        duration = session.get("duration")
        table.add_row(
            session.get("session_id") or "Unknown",
            recorded_at,
            f"{duration:.2f}s" if duration else "-",
            str(session.get("total_interactions") or 0),
            session.get("protocol_version") or "-",
            session.get("filename", ""),
        )
    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay a recorded Event Socket session")
    parser.add_argument("--session", "-s", help="Session file to replay")
    parser.add_argument("--list", "-l", action="store_true", help="List available sessions")
    parser.add_argument("--sessions-dir", default="sessions", help="Directory containing session files")
    parser.add_argument("--only", choices=sorted(FILTERS), default="all",
                        help="Show only this kind of frame")
    parser.add_argument("--content-type", metavar="TYPE",
                        help="Show only frames with this Content-Type (e.g. api/response)")
    parser.add_argument("--summary", action="store_true",
                        help="Print frame counts and failures instead of starting the viewer")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the session replay viewer."""
    args = build_parser().parse_args(argv)
    console = Console()

    if args.list:
        print_session_list(console, args.sessions_dir)
        return 0

    if not args.session:
        console.print("[red]Error: No session file specified[/red]")
        console.print("Use --session <file> to replay a recording, or --list to see them")
        return 1

    replay = SessionReplayTUI(args.session, kind=args.only, content_type=args.content_type)
    if args.summary:
        print_summary(console, replay)
        return 1 if any(is_failure(i) for i in replay.interactions) else 0

    try:
        replay.run()
    except KeyboardInterrupt:
        console.print("\nReplay interrupted by user")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
