"""Classification and dispatch of inbound announcement stream frames."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

SUCCESS_MARKER = 'SUCCESS'
DATA_TYPES = frozenset(['DATA', 'ANNOUNCEMENT'])

PayloadHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class FrameParseError(ValueError):
    """Raised when an inbound frame is not a JSON document."""


@dataclass(frozen=True)
class ControlAck:
    """Response to a previously sent SUBSCRIBE/UNSUBSCRIBE command."""
    command: Optional[str]
    success: bool
    code: Optional[str]
    message: Dict[str, Any]


@dataclass(frozen=True)
class DataPayload:
    """Domain event to hand to the consumer."""
    message: Dict[str, Any]


@dataclass(frozen=True)
class Unknown:
    """Anything that is neither an acknowledgement nor a payload."""
    message: Any


Frame = Union[ControlAck, DataPayload, Unknown]


class MessageRouter:
    """
    Parses raw frames into a closed set of kinds and delivers payloads.

    Classification order:
    1. `type == "COMMAND"` is a control acknowledgement.
    2. `type` in {"DATA", "ANNOUNCEMENT"} is a data payload.
    3. Any other object carrying a `data` field that is not the success
       marker is treated as a data payload, so unknown payload shapes are
       delivered rather than dropped.
    4. Everything else is Unknown and only logged.

    There is no deduplication here; the consumer owns it.
    """

    def __init__(self, handler: Optional[PayloadHandler] = None):
        self.handler = handler
        self.stats = {
            'parse_errors': 0,
            'control_acks': 0,
            'data_payloads': 0,
            'unknown_frames': 0,
            'handler_errors': 0,
        }

    def parse(self, raw: Union[str, bytes]) -> Frame:
        """Decode and classify one frame; raises FrameParseError."""
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode('utf-8')
            message = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self.stats['parse_errors'] += 1
            raise FrameParseError(f"Undecodable frame: {e}") from e

        frame = self.classify(message)
        if isinstance(frame, ControlAck):
            self.stats['control_acks'] += 1
        elif isinstance(frame, DataPayload):
            self.stats['data_payloads'] += 1
        else:
            self.stats['unknown_frames'] += 1
        return frame

    @staticmethod
    def classify(message: Any) -> Frame:
        if not isinstance(message, dict):
            return Unknown(message)

        kind = message.get('type')
        if kind == 'COMMAND':
            return ControlAck(
                command=message.get('subType'),
                success=message.get('data') == SUCCESS_MARKER,
                code=message.get('code'),
                message=message,
            )
        if kind in DATA_TYPES:
            return DataPayload(message)

        data = message.get('data')
        if data and data != SUCCESS_MARKER:
            return DataPayload(message)

        return Unknown(message)

    async def dispatch(self, payload: DataPayload) -> bool:
        """
        Hand one payload to the consumer.

        Returns False when no handler is set or the handler raised; handler
        errors never propagate.
        """
        if self.handler is None:
            logger.warning("Data payload received but no handler is registered")
            return False

        try:
            result = self.handler(payload.message)
            if asyncio.iscoroutine(result):
                await result
            return True
        except Exception as e:
            self.stats['handler_errors'] += 1
            logger.error(f"Payload handler failed: {e}", exc_info=True)
            return False
