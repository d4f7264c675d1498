"""Message codec: wire frames <-> typed envelopes.

Stateless. Classification rules for inbound frames:
- has `method`: event (a frame with `method` and an `id` is still an event;
  the remote never sends us requests, so such an id was never issued here)
- has `id` and `result` or `error`, no `method`: response
- anything else: MalformedMessageError
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from ..errors import MalformedMessageError
from .commands import ROOT_SESSION_ID, Command
from .messages import CommandFrame, EventEnvelope, ResponseEnvelope, join_method, split_method

logger = logging.getLogger(__name__)

DecodedMessage = ResponseEnvelope | EventEnvelope


class MessageCodec:
    """Converts between wire frames and envelopes."""

    def encode(
        self,
        session_id: str | None,
        command_id: int,
        domain: str,
        method: str,
        params: dict[str, Any] | None = None,
    ) -> str:
        """Encode a command request as a JSON text frame.

        The root session is encoded without a `sessionId` member.
        """
        frame = CommandFrame(
            id=command_id,
            method=join_method(domain, method),
            params=params or {},
            session_id=session_id or None,
        )
        return frame.to_json()

    def encode_command(self, command: Command) -> str:
        """Encode a registered command (its id must already be assigned)."""
        if command.id is None:
            raise ValueError(f"Command {command.qualified_name} has no id; register it first")
        session_id = None if command.session_id == ROOT_SESSION_ID else command.session_id
        return self.encode(session_id, command.id, command.domain, command.method, command.params)

    def decode(self, frame: str | bytes) -> DecodedMessage:
        """Parse and classify an inbound frame.

        Raises:
            MalformedMessageError: If the frame is not JSON or matches no shape
        """
        try:
            data = json.loads(frame)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedMessageError(f"Invalid JSON: {e}", frame) from e

        if not isinstance(data, dict):
            raise MalformedMessageError(
                f"Expected a JSON object, got {type(data).__name__}", frame
            )

        try:
            if "method" in data:
                event = EventEnvelope.model_validate(data)
                split_method(event.method)
                return event
            if "id" in data and ("result" in data or data.get("error") is not None):
                return ResponseEnvelope.model_validate(data)
        except ValidationError as e:
            raise MalformedMessageError(f"Invalid envelope: {e.error_count()} error(s)", frame) from e
        except MalformedMessageError as e:
            raise MalformedMessageError(str(e), frame) from e

        raise MalformedMessageError("Frame is neither a response nor an event", frame)
