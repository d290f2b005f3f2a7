"""Events fed into the connection lifecycle state machine."""

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class Stop:
    # resolved by the controller once this stop has taken effect or a later
    # Start superseded it
    waiter: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class TransportOpened:
    session_id: int


@dataclass(frozen=True)
class FrameReceived:
    session_id: int
    raw: Any
    frame: Any = None  # set by the controller after MessageRouter.parse


@dataclass(frozen=True)
class TransportClosed:
    session_id: int
    code: Optional[int] = None
    reason: str = ''


@dataclass(frozen=True)
class TransportError:
    session_id: int
    error: BaseException


@dataclass(frozen=True)
class OpenFailed:
    session_id: int
    error: BaseException


@dataclass(frozen=True)
class ProbeTimeout:
    session_id: int


@dataclass(frozen=True)
class RotationDue:
    session_id: int


@dataclass(frozen=True)
class ReconnectDue:
    pass


SessionEvent = Union[
    TransportOpened, FrameReceived, TransportClosed, TransportError,
    OpenFailed, ProbeTimeout, RotationDue,
]
Event = Union[Start, Stop, ReconnectDue, SessionEvent]


CLOSE_CODE_DESCRIPTIONS = {
    1000: 'normal closure',
    1001: 'endpoint going away',
    1002: 'protocol error',
    1003: 'unsupported data',
    1006: 'abnormal closure (network problem or server dropped the connection)',
    1008: 'policy violation',
    1011: 'server error',
    1012: 'service restart',
    1013: 'try again later',
    1014: 'bad gateway',
    1015: 'TLS handshake failure',
}


def describe_close_code(code: Optional[int]) -> str:
    return CLOSE_CODE_DESCRIPTIONS.get(code, 'unknown reason')
