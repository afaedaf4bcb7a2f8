"""
Session recording functionality for the Event Socket client.

This module provides session recording capabilities to capture every
frame exchanged with the switch for later replay and analysis.
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Any, Optional

from .event import Event, EventType


PROTOCOL_VERSION = "Event Socket (plain)"
CLIENT_VERSION = "1.0.0"


class SessionRecorder:
    """
    Records all client-server interactions during an Event Socket session.
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or self._generate_session_id()
        self.interactions: List[Dict[str, Any]] = []
        self.start_time = time.time()

    def _generate_session_id(self) -> str:
        """Generate a unique session ID based on timestamp."""
        return f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    @staticmethod
    def _describe_request(data: bytes) -> Dict[str, str]:
        text = data.decode("utf-8", errors="replace")
        first_line, _, rest = text.partition("\n")
        first_line = first_line.strip()
        command = first_line.split(" ", 1)[0] if first_line else ""
        if command == "auth":
            # Never keep the shared secret in a recording
            first_line = "auth ********"
        return {"command": command, "line": first_line, "payload": rest.strip("\n")}

    def record_request(self, data: bytes, description: str = "") -> None:
        """
        Record a frame sent to the switch.

        Args:
            data: The raw bytes written to the socket
            description: Optional description of the request
        """
        request = self._describe_request(data)
        interaction = {
            "timestamp": time.time(),
            "relative_time": time.time() - self.start_time,
            "type": "request",
            "direction": "client -> server",
            "command": request["command"],
            "line": request["line"],
            "payload_length": len(request["payload"]),
            "payload": request["payload"],
            "description": description,
            "raw_frame_length": len(data)
        }
        self.interactions.append(interaction)

    def record_response(self, event: Event, description: str = "") -> None:
        """
        Record a frame received from the switch.

        Args:
            event: The decoded event
            description: Optional description of the response
        """
        raw_body = event.raw_body or b""
        interaction = {
            "timestamp": time.time(),
            "relative_time": time.time() - self.start_time,
            "type": "response",
            "direction": "server -> client",
            "content_type": event.content_type,
            "event_type": event.type.name,
            "event_name": event.name.name if event.type == EventType.GENERIC and event.name is not None else "",
            "unique_id": event.uid or "",
            "reply_text": event.header.get("Reply-Text"),
            "headers": event.header.to_dict(),
            "payload_length": len(raw_body),
            "payload": raw_body.decode('utf-8', errors='replace'),
            "description": description,
        }
        self.interactions.append(interaction)

    def record_event(self, event_type: str, description: str, details: Dict[str, Any] = None) -> None:
        """
        Record a general event (connection, disconnection, error, etc.).

        Args:
            event_type: Type of event (connection, disconnection, error, etc.)
            description: Description of the event
            details: Additional event details
        """
        interaction = {
            "timestamp": time.time(),
            "relative_time": time.time() - self.start_time,
            "type": "event",
            "event_type": event_type,
            "description": description,
            "details": details or {}
        }
        self.interactions.append(interaction)

    def save_session(self, output_dir: str = "sessions") -> str:
        """
        Save the recorded session to a JSON file.

        Args:
            output_dir: Directory to save session files

        Returns:
            str: Path to the saved session file
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        session_data = {
            "session_id": self.session_id,
            "start_time": self.start_time,
            "end_time": time.time(),
            "duration": time.time() - self.start_time,
            "total_interactions": len(self.interactions),
            "metadata": {
                "protocol_version": PROTOCOL_VERSION,
                "client_version": CLIENT_VERSION,
                "recorded_at": datetime.now().isoformat()
            },
            "interactions": self.interactions
        }

        filepath = output_path / f"{self.session_id}.json"
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(session_data, f, indent=2, ensure_ascii=False)

        return str(filepath)

    def get_session_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the current session.

        Returns:
            Dict containing session statistics
        """
        requests = [i for i in self.interactions if i.get("type") == "request"]
        responses = [i for i in self.interactions if i.get("type") == "response"]
        events = [i for i in self.interactions if i.get("type") == "event"]

        return {
            "session_id": self.session_id,
            "duration": time.time() - self.start_time,
            "total_interactions": len(self.interactions),
            "requests": len(requests),
            "responses": len(responses),
            "events": len(events),
            "commands_sent": [r.get("command") for r in requests],
            "responses_received": [r.get("event_name") or r.get("content_type") for r in responses]
        }


class SessionLoader:
    """
    Loads and provides access to recorded sessions.
    """

    @staticmethod
    def load_session(filepath: str) -> Dict[str, Any]:
        """
        Load a session from a JSON file.

        Raises:
            FileNotFoundError: If session file doesn't exist
            json.JSONDecodeError: If session file is invalid JSON
        """
        with open(filepath, 'r', encoding='utf-8') as f:
            return json.load(f)

    @staticmethod
    def list_sessions(sessions_dir: str = "sessions") -> List[Dict[str, Any]]:
        """
        List all available session files, newest first.

        Args:
            sessions_dir: Directory containing session files

        Returns:
            List of session metadata
        """
        sessions_path = Path(sessions_dir)
        if not sessions_path.exists():
            return []

        sessions = []
        for session_file in sessions_path.glob("*.json"):
            try:
                session_data = SessionLoader.load_session(str(session_file))
            except json.JSONDecodeError:
                # Skip files that are not recordings
                continue
            if not isinstance(session_data, dict) or "session_id" not in session_data:
                continue
            sessions.append({
                "filename": session_file.name,
                "filepath": str(session_file),
                "session_id": session_data.get("session_id"),
                "start_time": session_data.get("start_time"),
                "duration": session_data.get("duration"),
                "total_interactions": session_data.get("total_interactions"),
                "recorded_at": session_data.get("metadata", {}).get("recorded_at"),
                "protocol_version": session_data.get("metadata", {}).get("protocol_version")
            })

        sessions.sort(key=lambda x: x.get("start_time") or 0, reverse=True)
        return sessions

    @staticmethod
    def get_session_interactions(filepath: str) -> List[Dict[str, Any]]:
        """Get interactions from a session file."""
        session_data = SessionLoader.load_session(filepath)
        return session_data.get("interactions", [])
