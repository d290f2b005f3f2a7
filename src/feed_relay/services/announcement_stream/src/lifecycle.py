"""Connection lifecycle for the Binance announcement stream.

The state machine is split in two:

- `transition(snapshot, event, policy)` is pure. Given the current
  snapshot and one event it returns the next snapshot and an ordered list
  of actions. It never touches the network, timers or clocks.
- `LifecycleController` owns the session, the timers and the liveness
  monitor. A single task drains an event queue, drops events tagged with a
  session that is no longer current, applies `transition` and executes the
  resulting actions in order. Every state change happens on that task.
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .clients.connection import ConnectionSession
from .clients.server_time import ServerClock
from .clients.signer import ConnectionSigner, build_url, normalize_topics
from .config.settings import BinanceConfig, RetryConfig, StreamConfig
from .events import (
    Event,
    FrameReceived,
    OpenFailed,
    ProbeTimeout,
    ReconnectDue,
    RotationDue,
    Start,
    Stop,
    TransportClosed,
    TransportError,
    TransportOpened,
)
from .liveness import LivenessMonitor
from .message_router import ControlAck, DataPayload, FrameParseError, MessageRouter, Unknown
from .stats import StatsCollector
from .utils.retry import backoff_delay

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"


SESSION_PHASES = (Phase.CONNECTING, Phase.AUTHENTICATING, Phase.SUBSCRIBED)


@dataclass(frozen=True)
class Snapshot:
    phase: Phase = Phase.IDLE
    desired_running: bool = False
    attempts: int = 0
    terminal_failure: bool = False


@dataclass(frozen=True)
class ReconnectPolicy:
    initial_delay: float = 5.0
    max_delay: float = 30.0
    max_attempts: int = 10

    @classmethod
    def from_config(cls, config: RetryConfig) -> 'ReconnectPolicy':
        return cls(
            initial_delay=config.initial_backoff_seconds,
            max_delay=config.max_backoff_seconds,
            max_attempts=config.max_attempts,
        )

    def delay_for(self, attempt: int) -> float:
        return backoff_delay(attempt, self.initial_delay, self.max_delay)


class ActionKind(Enum):
    OPEN_SESSION = "open_session"
    SUBSCRIBE_TOPICS = "subscribe_topics"
    CLOSE_SESSION = "close_session"
    TEARDOWN_SESSION = "teardown_session"
    CANCEL_OPEN = "cancel_open"
    START_LIVENESS = "start_liveness"
    STOP_LIVENESS = "stop_liveness"
    ARM_ROTATION = "arm_rotation"
    CANCEL_ROTATION = "cancel_rotation"
    SCHEDULE_RECONNECT = "schedule_reconnect"
    CANCEL_RECONNECT = "cancel_reconnect"
    DISPATCH = "dispatch"
    RECORD_OPEN = "record_open"
    RECORD_ERROR = "record_error"
    RECORD_ROTATION = "record_rotation"
    REPORT_TERMINAL = "report_terminal"


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    delay: Optional[float] = None
    code: int = 1000
    reason: str = ''
    payload: Any = None


def _act(kind: ActionKind, **kwargs) -> Action:
    return Action(kind, **kwargs)


def _failure(state: Snapshot, policy: ReconnectPolicy, actions: List[Action]) -> Tuple[Snapshot, List[Action]]:
    """Common path for every transport failure of the current session."""
    attempts = state.attempts + 1
    actions = actions + [
        _act(ActionKind.STOP_LIVENESS),
        _act(ActionKind.CANCEL_ROTATION),
        _act(ActionKind.TEARDOWN_SESSION),
    ]

    if attempts >= policy.max_attempts:
        new_state = dataclasses.replace(
            state, phase=Phase.IDLE, attempts=attempts, terminal_failure=True
        )
        return new_state, actions + [_act(ActionKind.REPORT_TERMINAL)]

    new_state = dataclasses.replace(state, phase=Phase.RECONNECTING, attempts=attempts)
    delay = policy.delay_for(attempts)
    return new_state, actions + [_act(ActionKind.SCHEDULE_RECONNECT, delay=delay)]


def transition(state: Snapshot, event: Event, policy: ReconnectPolicy) -> Tuple[Snapshot, List[Action]]:
    """Next snapshot and actions for one event. Unhandled pairs are no-ops."""
    phase = state.phase

    if isinstance(event, Start):
        if phase == Phase.IDLE:
            return Snapshot(Phase.CONNECTING, desired_running=True), [_act(ActionKind.OPEN_SESSION)]
        return dataclasses.replace(state, desired_running=True), []

    if isinstance(event, Stop):
        stopped = dataclasses.replace(state, desired_running=False)
        if phase == Phase.CONNECTING:
            return dataclasses.replace(stopped, phase=Phase.IDLE), [
                _act(ActionKind.CANCEL_OPEN),
                _act(ActionKind.TEARDOWN_SESSION, reason='Monitor stopped'),
            ]
        if phase == Phase.RECONNECTING:
            return dataclasses.replace(stopped, phase=Phase.IDLE), [_act(ActionKind.CANCEL_RECONNECT)]
        if phase in (Phase.AUTHENTICATING, Phase.SUBSCRIBED):
            return dataclasses.replace(stopped, phase=Phase.CLOSING), [
                _act(ActionKind.STOP_LIVENESS),
                _act(ActionKind.CANCEL_ROTATION),
                _act(ActionKind.CLOSE_SESSION, reason='Monitor stopped'),
            ]
        return stopped, []

    if isinstance(event, TransportOpened):
        if phase == Phase.CONNECTING:
            return dataclasses.replace(state, phase=Phase.AUTHENTICATING), [
                _act(ActionKind.RECORD_OPEN),
                _act(ActionKind.SUBSCRIBE_TOPICS),
            ]
        return state, []

    if isinstance(event, FrameReceived):
        frame = event.frame
        if isinstance(frame, ControlAck) and frame.command == 'SUBSCRIBE':
            if frame.success and phase == Phase.AUTHENTICATING:
                return dataclasses.replace(state, phase=Phase.SUBSCRIBED, attempts=0), [
                    _act(ActionKind.START_LIVENESS),
                    _act(ActionKind.ARM_ROTATION),
                ]
            if not frame.success and phase == Phase.AUTHENTICATING:
                return state, [
                    _act(ActionKind.RECORD_ERROR, payload=frame),
                    _act(ActionKind.CLOSE_SESSION, code=1008, reason='Subscription rejected'),
                ]
            if not frame.success:
                return state, [_act(ActionKind.RECORD_ERROR, payload=frame)]
            return state, []
        if isinstance(frame, DataPayload) and phase in (Phase.AUTHENTICATING, Phase.SUBSCRIBED):
            return state, [_act(ActionKind.DISPATCH, payload=frame)]
        return state, []

    if isinstance(event, ProbeTimeout):
        if phase == Phase.SUBSCRIBED:
            return state, [
                _act(ActionKind.RECORD_ERROR, payload=event),
                _act(ActionKind.CLOSE_SESSION, code=1011, reason='Probe acknowledgement timeout'),
            ]
        return state, []

    if isinstance(event, RotationDue):
        if phase == Phase.SUBSCRIBED:
            return dataclasses.replace(state, phase=Phase.CONNECTING), [
                _act(ActionKind.STOP_LIVENESS),
                _act(ActionKind.CANCEL_ROTATION),
                _act(ActionKind.TEARDOWN_SESSION, reason='Scheduled rotation'),
                _act(ActionKind.RECORD_ROTATION),
                _act(ActionKind.OPEN_SESSION),
            ]
        return state, []

    if isinstance(event, ReconnectDue):
        if phase == Phase.RECONNECTING:
            return dataclasses.replace(state, phase=Phase.CONNECTING), [_act(ActionKind.OPEN_SESSION)]
        return state, []

    if isinstance(event, (TransportClosed, TransportError, OpenFailed)):
        if phase == Phase.CLOSING:
            if not isinstance(event, TransportClosed):
                return state, []
            if state.desired_running:
                return dataclasses.replace(state, phase=Phase.CONNECTING, attempts=0), [
                    _act(ActionKind.TEARDOWN_SESSION),
                    _act(ActionKind.OPEN_SESSION),
                ]
            return dataclasses.replace(state, phase=Phase.IDLE), [_act(ActionKind.TEARDOWN_SESSION)]

        if phase in SESSION_PHASES:
            actions = []
            if not isinstance(event, TransportClosed):
                actions.append(_act(ActionKind.RECORD_ERROR, payload=event))
            return _failure(state, policy, actions)

    return state, []


class _SessionState:
    """Bookkeeping the controller keeps beside each ConnectionSession."""

    def __init__(self, session):
        self.session = session
        self.duration_recorded = False


class LifecycleController:
    """
    Opens, authenticates, keeps alive and recovers the announcement stream.

    At most one session exists at a time. Failures never escape the
    controller: they become state transitions and counters. Exhausting the
    reconnect ceiling leaves the controller idle and unhealthy until an
    explicit `start()`.
    """

    def __init__(
        self,
        binance_config: BinanceConfig,
        router: MessageRouter,
        stream_config: Optional[StreamConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        stats: Optional[StatsCollector] = None,
        signer: Optional[ConnectionSigner] = None,
        server_clock: Optional[ServerClock] = None,
        session_factory: Optional[Callable[[int, Callable[[Event], None]], Any]] = None,
        scheduler=None,
        on_terminal_failure: Optional[Callable[[Dict[str, Any]], None]] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.config = binance_config
        self.stream_config = stream_config or StreamConfig()
        self.policy = ReconnectPolicy.from_config(retry_config or RetryConfig())
        self.router = router
        self.stats = stats or StatsCollector(self.stream_config.min_viable_session_seconds)
        self.signer = signer or ConnectionSigner(
            binance_config.api_secret, binance_config.recv_window_ms
        )
        self.server_clock = server_clock or ServerClock(
            binance_config.rest_base_url,
            proxy_url=binance_config.proxy_url,
            timeout_seconds=binance_config.server_time_timeout_seconds,
        )
        self.session_factory = session_factory or self._default_session_factory
        self._scheduler = scheduler
        self.on_terminal_failure = on_terminal_failure
        self._monotonic = monotonic

        self.topics = normalize_topics(binance_config.topics)
        self.state = Snapshot()

        self.liveness = LivenessMonitor(
            interval=self.stream_config.ping_interval_seconds,
            ack_timeout=self.stream_config.probe_ack_timeout_seconds,
            on_stale=lambda session_id: self._post(ProbeTimeout(session_id)),
            clock=monotonic,
        )

        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_waiters: List[asyncio.Future] = []
        self._starts_pending = 0
        self.terminated = asyncio.Event()

        self._session_seq = 0
        self._active_session_id: Optional[int] = None
        self._current: Optional[_SessionState] = None
        self._open_task: Optional[asyncio.Task] = None
        self._rotation_handle = None
        self._reconnect_handle = None

        logger.info(
            f"LifecycleController initialized: topics={'|'.join(self.topics)}, "
            f"recv_window={binance_config.recv_window_ms}ms"
        )

    def _default_session_factory(self, session_id: int, on_event: Callable[[Event], None]):
        return ConnectionSession(
            session_id,
            api_key=self.config.api_key,
            on_event=on_event,
            stream_config=self.stream_config,
            proxy_url=self.config.proxy_url,
            clock=self._monotonic,
        )

    # Public API

    async def start(self):
        """Begin (or resume after terminal failure) streaming."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run())
        self.terminated.clear()
        self._starts_pending += 1
        self._post(Start())

    async def stop(self):
        """
        Cancel timers, close any open transport and wait until idle.

        Returns early, leaving the controller running, when a `start()`
        issued after this call is processed before idle is reached.
        """
        if self._loop_task is None or self._loop_task.done():
            return

        waiter = asyncio.get_running_loop().create_future()
        self._post(Stop(waiter))
        await waiter

        if self.state.desired_running or self._starts_pending:
            logger.info("Stop superseded by a later start")
            return

        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None

        logger.info("Announcement stream stopped")
        self.stats.log_summary()

    def is_healthy(self) -> bool:
        if not self.state.desired_running:
            return True
        return self.state.phase == Phase.SUBSCRIBED

    @property
    def session(self):
        return self._current.session if self._current else None

    def get_status(self) -> Dict[str, Any]:
        session = self.session
        return {
            'state': self.state.phase.value,
            'is_connected': bool(session is not None and session.is_open),
            'is_healthy': self.is_healthy(),
            'reconnect_attempts': self.state.attempts,
            'terminal_failure': self.state.terminal_failure,
            'topics': list(self.topics),
            'last_probe_sent_at': getattr(session, 'last_probe_sent_at', None),
            'last_probe_ack_at': getattr(session, 'last_probe_ack_at', None),
            'stats': self.stats.snapshot(),
        }

    # Event loop

    def _post(self, event: Event):
        self._queue.put_nowait(event)

    async def _run(self):
        while True:
            event = await self._queue.get()
            try:
                await self._handle(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.record_error()
                logger.error(f"Error handling {type(event).__name__}: {e}", exc_info=True)

    def _is_stale(self, event: Event) -> bool:
        session_id = getattr(event, 'session_id', None)
        if session_id is None:
            return False
        return session_id != self._active_session_id

    async def _handle(self, event: Event):
        if self._is_stale(event):
            logger.debug(f"Ignoring {type(event).__name__} from stale session {event.session_id}")
            return

        if isinstance(event, FrameReceived):
            self.stats.record_message()
            try:
                frame = self.router.parse(event.raw)
            except FrameParseError as e:
                self.stats.record_error()
                logger.warning(f"Dropping frame: {e}")
                return
            if isinstance(frame, Unknown):
                logger.info(f"Unrecognized frame: {frame.message}")
            elif isinstance(frame, ControlAck):
                self._log_ack(frame)
            event = dataclasses.replace(event, frame=frame)

        if isinstance(event, Start):
            self._starts_pending -= 1
        if isinstance(event, Stop) and event.waiter is not None:
            self._stop_waiters.append(event.waiter)

        new_state, actions = transition(self.state, event, self.policy)
        self._set_state(new_state)

        try:
            for action in actions:
                await self._execute(action)
        finally:
            # pending stop() calls resume once idle, or once a Start posted
            # after them wins; never before the actions above have run
            if self.state.phase == Phase.IDLE or isinstance(event, Start):
                self._release_stop_waiters()

    def _release_stop_waiters(self):
        waiters, self._stop_waiters = self._stop_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def _set_state(self, new_state: Snapshot):
        if new_state.phase != self.state.phase:
            logger.info(f"Stream state: {self.state.phase.value} -> {new_state.phase.value}")
        self.state = new_state

    def _log_ack(self, frame: ControlAck):
        if frame.success:
            logger.info(f"{frame.command} succeeded: {frame.code}")
        else:
            logger.warning(f"Command response: {frame.command} - {frame.message.get('data')}")

    # Actions

    async def _execute(self, action: Action):
        kind = action.kind

        if kind == ActionKind.OPEN_SESSION:
            self._open_session()
        elif kind == ActionKind.SUBSCRIBE_TOPICS:
            await self._subscribe_topics()
        elif kind == ActionKind.CLOSE_SESSION:
            if self.session is not None:
                await self.session.close(action.code, action.reason)
        elif kind == ActionKind.TEARDOWN_SESSION:
            await self._teardown_session(action.code, action.reason)
        elif kind == ActionKind.CANCEL_OPEN:
            await self._cancel_open()
        elif kind == ActionKind.START_LIVENESS:
            self.session.subscribed = True
            self.liveness.start(self.session)
        elif kind == ActionKind.STOP_LIVENESS:
            self.liveness.stop()
        elif kind == ActionKind.ARM_ROTATION:
            self._arm_rotation()
        elif kind == ActionKind.CANCEL_ROTATION:
            self._rotation_handle = self._cancel_timer(self._rotation_handle)
        elif kind == ActionKind.SCHEDULE_RECONNECT:
            self._schedule_reconnect(action.delay)
        elif kind == ActionKind.CANCEL_RECONNECT:
            self._reconnect_handle = self._cancel_timer(self._reconnect_handle)
        elif kind == ActionKind.DISPATCH:
            if await self.router.dispatch(action.payload):
                self.stats.record_data_processed()
            else:
                self.stats.record_error()
        elif kind == ActionKind.RECORD_OPEN:
            self.stats.record_open()
        elif kind == ActionKind.RECORD_ERROR:
            self.stats.record_error()
            self._log_failure(action.payload)
        elif kind == ActionKind.RECORD_ROTATION:
            self.stats.record_rotation()
            logger.info("Session lifetime limit approaching, rotating connection")
        elif kind == ActionKind.REPORT_TERMINAL:
            self._report_terminal()

    def _log_failure(self, payload):
        if isinstance(payload, (TransportError, OpenFailed)):
            logger.error(f"Connection failure ({type(payload).__name__}): {payload.error}")
        elif isinstance(payload, ControlAck):
            logger.error(f"Subscription rejected: {payload.message}")

    def _scheduler_or_loop(self):
        return self._scheduler or asyncio.get_running_loop()

    @staticmethod
    def _cancel_timer(handle):
        if handle is not None:
            handle.cancel()
        return None

    def _open_session(self):
        self._session_seq += 1
        session_id = self._session_seq
        session = self.session_factory(session_id, self._post)
        self._current = _SessionState(session)
        self._active_session_id = session_id
        self._open_task = asyncio.create_task(self._open(session))
        logger.info(f"Opening session {session_id}")

    async def _open(self, session):
        try:
            timestamp = await self.server_clock.now_ms()
            authorization = self.signer.sign(self.topics, timestamp)
            url = build_url(self.config.ws_base_url, authorization)
            logger.info(f"Connection parameters signed at timestamp {timestamp}")
            await session.open(url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._post(OpenFailed(session.session_id, e))

    async def _cancel_open(self):
        task, self._open_task = self._open_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _subscribe_topics(self):
        for topic in self.topics:
            try:
                await self.session.subscribe(topic)
            except Exception as e:
                # the transport's close event drives recovery
                logger.warning(f"Failed to send SUBSCRIBE for {topic}: {e}")
                return

    async def _teardown_session(self, code: int, reason: str):
        current, self._current = self._current, None
        self._active_session_id = None
        await self._cancel_open()

        if current is None:
            return
        await current.session.close(code, reason)

        duration = current.session.duration()
        if duration is not None and not current.duration_recorded:
            current.duration_recorded = True
            self.stats.record_session_closed(duration)

    def _arm_rotation(self):
        self._rotation_handle = self._cancel_timer(self._rotation_handle)
        interval = self.stream_config.rotation_interval_seconds
        self._rotation_handle = self._scheduler_or_loop().call_later(
            interval, self._post, RotationDue(self._active_session_id)
        )
        logger.info(f"Session rotation scheduled in {interval / 3600:.1f}h")

    def _schedule_reconnect(self, delay: float):
        self._reconnect_handle = self._cancel_timer(self._reconnect_handle)
        self.stats.record_reconnect()
        logger.info(
            f"Reconnecting ({self.state.attempts}/{self.policy.max_attempts}) "
            f"in {delay:.1f}s"
        )
        self._reconnect_handle = self._scheduler_or_loop().call_later(
            delay, self._post, ReconnectDue()
        )

    def _report_terminal(self):
        logger.error(
            f"Reconnect ceiling reached ({self.policy.max_attempts} attempts), "
            "stream stopped until restarted"
        )
        self.stats.log_summary()
        self.terminated.set()
        if self.on_terminal_failure is not None:
            try:
                self.on_terminal_failure(self.get_status())
            except Exception as e:
                logger.error(f"Terminal failure callback raised: {e}", exc_info=True)
