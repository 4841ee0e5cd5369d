"""
Schwab Streamer session.

Manages one websocket connection to the Schwab streamer at a time:

    DISCONNECTED -> CONNECTING -> LOGIN_PENDING -> ACTIVE -> (CLOSING) -> DISCONNECTED
                        ^                             |
                        +------ recoverable drop -----+

Commands sent before the session is ACTIVE are queued and flushed, in order,
as soon as the server answers the login. A close with code 1000 ends the
session; other closes reconnect after a delay unless the connection dropped
before the minimum uptime, which indicates a rejected login or bad
configuration.

The session never raises out of its event handling. Callers inspect
``state`` / ``active``.
"""

import asyncio
import contextlib
import inspect
import json
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, time as dt_time
from typing import Any
from zoneinfo import ZoneInfo

import websockets

from schwabdev import metrics
from schwabdev.auth.token_manager import TokenManager
from schwabdev.common.log_sanitizer import sanitize_frame
from schwabdev.exceptions import (
    SchwabError,
    StreamTransientDrop,
    StreamUnrecoverable,
)
from schwabdev.streaming.services import StreamServices
from schwabdev.streaming.types import ReconnectPolicy, SessionState, StreamerDescriptor

logger = logging.getLogger(__name__)

Receiver = Callable[[str], Any]
PreferencesFetcher = Callable[[], Awaitable[Any]]
Connector = Callable[[str], Awaitable[Any]]

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

EASTERN = ZoneInfo("America/New_York")
MARKET_OPEN = dt_time(9, 29)
MARKET_CLOSE = dt_time(16, 0)
PRE_MARKET_OPEN = dt_time(7, 59)
AFTER_HOURS_CLOSE = dt_time(20, 0)


def in_market_hours(now: datetime, after_hours: bool = False, pre_hours: bool = False) -> bool:
    """Whether ``now`` falls in US equity trading hours (US/Eastern, Mon-Fri)."""
    local = now.astimezone(EASTERN)
    if local.weekday() >= 5:
        return False
    start = PRE_MARKET_OPEN if pre_hours else MARKET_OPEN
    end = AFTER_HOURS_CLOSE if after_hours else MARKET_CLOSE
    return start <= local.time() <= end


def _log_message(message: str) -> None:
    logger.info(message)


class StreamSession(StreamServices):
    """
    Streaming session against the Schwab streamer.

    Example:
        stream = StreamSession(tokens, fetch_preferences=client.preferences)
        await stream.start(print)
        await stream.send(await stream.level_one_equities("AMD,INTC", "0,1,2,3,4,5,6,7,8"))
        ...
        await stream.stop()
    """

    def __init__(
        self,
        tokens: TokenManager,
        fetch_preferences: PreferencesFetcher,
        policy: ReconnectPolicy | None = None,
        connect: Connector = websockets.connect,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the session.

        Args:
            tokens: Token manager supplying the access token for login
            fetch_preferences: Coroutine function returning the user preferences body
            policy: Reconnect policy (defaults to a fixed 1 s delay, unlimited)
            connect: Opens a websocket for a URL (``websockets.connect``)
            clock: Monotonic clock in seconds, used for uptime
        """
        self._tokens = tokens
        self._fetch_preferences = fetch_preferences
        self.policy = policy or ReconnectPolicy()
        self._connect = connect
        self._clock = clock

        self.state = SessionState.DISCONNECTED
        self._descriptor: StreamerDescriptor | None = None
        self._descriptor_lock = asyncio.Lock()
        self._request_id = 0
        self._queue: deque[dict[str, Any]] = deque()
        self._receiver: Receiver = _log_message

        self._websocket: Any = None
        self._connected_at: float | None = None
        self._connection_task: asyncio.Task[None] | None = None
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._reconnect_attempts = 0
        self._automatic_task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def descriptor(self) -> StreamerDescriptor | None:
        return self._descriptor

    @property
    def pending(self) -> int:
        """Number of queued commands not yet sent."""
        return len(self._queue)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, receiver: Receiver | None = None) -> None:
        """
        Start streaming. Returns once the connection attempt is scheduled.

        Args:
            receiver: Called with every inbound message (str); may be a
                coroutine function. Defaults to logging the message.
        """
        if self.state is not SessionState.DISCONNECTED or self._reconnect_timer is not None:
            logger.warning(f"Stream already started (state={self.state.value})")
            return
        self._receiver = receiver or _log_message
        self._reconnect_attempts = 0
        self._launch()

    async def send(self, requests: dict[str, Any] | list[dict[str, Any]] | None) -> None:
        """
        Send one or more request frames.

        Sent immediately while ACTIVE; otherwise queued and flushed after the
        next successful login.
        """
        if requests is None:
            return
        if isinstance(requests, dict):
            requests = [requests]
        if not requests:
            return

        if self.state is SessionState.ACTIVE and self._websocket is not None:
            try:
                await self._websocket.send(json.dumps({"requests": requests}))
                return
            except websockets.ConnectionClosed:
                logger.warning("Stream closed while sending, request queued")
        else:
            logger.warning("Stream is not active, request queued")

        self._queue.extend(requests)
        metrics.stream_commands_queued_total.inc(len(requests))

    async def stop(self) -> None:
        """Log out and close the stream. No-op if already stopped."""
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

        task = self._connection_task
        task_running = task is not None and not task.done()
        if self.state is SessionState.DISCONNECTED and not task_running:
            return

        self._set_state(SessionState.CLOSING)
        websocket = self._websocket
        if self._descriptor is not None and websocket is not None:
            logout = self._make_request(self._descriptor, "ADMIN", "LOGOUT")
            try:
                await websocket.send(json.dumps({"requests": [logout]}))
                await websocket.close()
            except (websockets.ConnectionClosed, OSError) as e:
                logger.debug(f"Stream already gone during logout: {e}")

        self._connection_task = None
        if task_running and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._websocket = None
        self._finish("stopped")
        logger.info("Stream stopped")

    async def build_request(
        self, service: str, command: str, parameters: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Build a request frame (all streamer requests share this format).

        Args:
            service: Streamer service, e.g. ``LEVELONE_EQUITIES``
            command: ``SUBS``, ``ADD``, ``UNSUBS``, ``VIEW``, ``LOGIN`` or ``LOGOUT``
            parameters: Service parameters

        Raises:
            StreamError: If the streamer info could not be obtained
        """
        descriptor = await self._get_descriptor()
        return self._make_request(descriptor, service, command, parameters)

    # ------------------------------------------------------------------
    # Market-hours automation
    # ------------------------------------------------------------------

    def start_automatic(
        self,
        receiver: Receiver | None = None,
        after_hours: bool = False,
        pre_hours: bool = False,
        check_interval: float = 60.0,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        """Start the stream during market hours and stop it outside them."""
        if self._automatic_task is not None and not self._automatic_task.done():
            return
        now_fn = now_fn or (lambda: datetime.now(EASTERN))
        if not in_market_hours(now_fn(), after_hours, pre_hours):
            logger.info("Stream was started outside of active hours and will launch when in hours")
        self._automatic_task = asyncio.create_task(
            self._automatic_loop(receiver, after_hours, pre_hours, check_interval, now_fn),
            name="schwab-stream-automatic",
        )

    async def stop_automatic(self) -> None:
        task, self._automatic_task = self._automatic_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _automatic_loop(
        self,
        receiver: Receiver | None,
        after_hours: bool,
        pre_hours: bool,
        check_interval: float,
        now_fn: Callable[[], datetime],
    ) -> None:
        while True:
            in_hours = in_market_hours(now_fn(), after_hours, pre_hours)
            idle = self.state is SessionState.DISCONNECTED and self._reconnect_timer is None
            if in_hours and idle:
                await self.start(receiver)
            elif not in_hours and not idle:
                logger.info("Stopping stream outside of market hours")
                await self.stop()
            await asyncio.sleep(check_interval)

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _launch(self) -> None:
        self._reconnect_timer = None
        self._set_state(SessionState.CONNECTING)
        self._connection_task = asyncio.create_task(self._run_connection(), name="schwab-stream")

    async def _run_connection(self) -> None:
        try:
            descriptor = await self._get_descriptor()
        except SchwabError as e:
            logger.error(f"Could not get streamer info: {e}")
            self._finish("error")
            return

        self._connected_at = self._clock()
        logger.info("Connecting to streaming server")
        try:
            self._websocket = await self._connect(descriptor.socket_url)
        except (OSError, TimeoutError, websockets.WebSocketException) as e:
            logger.error(f"Stream connection failed: {e}")
            self._on_connection_closed(ABNORMAL_CLOSURE)
            return

        logger.info("Connected")
        try:
            code = await self._login_and_receive(descriptor)
        except websockets.ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else ABNORMAL_CLOSURE
        except (OSError, websockets.WebSocketException) as e:
            logger.error(f"Stream transport error: {e}")
            code = ABNORMAL_CLOSURE

        if code is None:
            return
        self._websocket = None
        self._on_connection_closed(code)

    async def _login_and_receive(self, descriptor: StreamerDescriptor) -> int | None:
        try:
            await self._tokens.ensure_fresh()
        except SchwabError as e:
            logger.error(f"Could not refresh tokens before stream login: {e}")

        access_token = self._tokens.access_token
        if not access_token:
            logger.error("Access token not found, closing stream")
            await self._websocket.close()
            self._websocket = None
            self._finish("error")
            return None

        self._set_state(SessionState.LOGIN_PENDING)
        login = self._make_request(
            descriptor,
            "ADMIN",
            "LOGIN",
            {
                "Authorization": access_token,
                "SchwabClientChannel": descriptor.channel,
                "SchwabClientFunctionId": descriptor.function_id,
            },
        )
        websocket = self._websocket
        await websocket.send(json.dumps(login))

        while True:
            message = await websocket.recv()
            if isinstance(message, bytes):
                message = message.decode("utf-8")
            await self._deliver(message)
            # The receiver may have stopped or restarted the session
            if self._websocket is not websocket or self.state in (
                SessionState.CLOSING,
                SessionState.DISCONNECTED,
            ):
                return None
            if self.state is SessionState.LOGIN_PENDING:
                await self._flush_queue()
                self._set_state(SessionState.ACTIVE)
                self._reconnect_attempts = 0
                logger.info("Stream active")

    async def _flush_queue(self) -> None:
        while self._queue:
            batch = list(self._queue)
            await self._websocket.send(json.dumps({"requests": batch}))
            for _ in batch:
                self._queue.popleft()
            logger.info(f"Sent {len(batch)} queued stream request(s)")

    def _on_connection_closed(self, code: int) -> None:
        if self.state in (SessionState.CLOSING, SessionState.DISCONNECTED):
            return
        self._set_state(SessionState.CONNECTING)

        if code == NORMAL_CLOSURE:
            logger.info("Stream has closed")
            self._finish("normal")
            return

        uptime = self._clock() - (self._connected_at or 0.0)
        try:
            self._classify_close(code, uptime)
        except StreamUnrecoverable as e:
            logger.error(str(e))
            self._finish("unrecoverable")
        except StreamTransientDrop as e:
            logger.warning(str(e))
            self._schedule_reconnect()

    def _classify_close(self, code: int, uptime: float) -> None:
        if uptime < self.policy.min_uptime:
            raise StreamUnrecoverable(
                f"Stream closed with code {code} after {uptime:.1f}s "
                f"(less than {self.policy.min_uptime:.0f}s), not reconnecting"
            )
        raise StreamTransientDrop(f"Connection lost to server (code {code}), reconnecting")

    def _schedule_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            return
        if not self.policy.allows(self._reconnect_attempts):
            logger.error(f"Giving up after {self._reconnect_attempts} reconnect attempt(s)")
            self._finish("retries_exhausted")
            return

        delay = self.policy.delay_for(self._reconnect_attempts)
        self._reconnect_attempts += 1
        metrics.stream_reconnects_total.inc()
        logger.info(f"Reconnecting in {delay:.1f}s (attempt {self._reconnect_attempts})")
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay, self._launch)

    def _finish(self, reason: str) -> None:
        self._set_state(SessionState.DISCONNECTED)
        self._connected_at = None
        metrics.stream_sessions_ended_total.labels(reason=reason).inc()

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        if self.state is SessionState.ACTIVE:
            metrics.stream_active.dec()
        elif state is SessionState.ACTIVE:
            metrics.stream_active.inc()
        self.state = state

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    async def _get_descriptor(self) -> StreamerDescriptor:
        async with self._descriptor_lock:
            if self._descriptor is None:
                preferences = await self._fetch_preferences()
                self._descriptor = StreamerDescriptor.from_preferences(preferences)
        return self._descriptor

    def _make_request(
        self,
        descriptor: StreamerDescriptor,
        service: str,
        command: str,
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "service": service.upper(),
            "command": command.upper(),
            "requestid": self._request_id,
            "SchwabClientCustomerId": descriptor.customer_id,
            "SchwabClientCorrelId": descriptor.correl_id,
        }
        if parameters is not None:
            request["parameters"] = parameters
        self._request_id += 1
        logger.debug("Stream request built", extra={"context": sanitize_frame(request)})
        return request

    async def _deliver(self, message: str) -> None:
        try:
            result = self._receiver(message)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Stream receiver raised")
