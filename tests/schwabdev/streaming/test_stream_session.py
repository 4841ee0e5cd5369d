"""Tests for the streaming session state machine."""

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, Mock

import pytest

from schwabdev.exceptions import StreamError
from schwabdev.streaming.session import StreamSession, in_market_hours
from schwabdev.streaming.types import ReconnectPolicy, SessionState
from tests.schwabdev.fakes import PREFERENCES, SOCKET_URL, FakeClock, FakeConnector, wait_until

LOGIN_RESPONSE = json.dumps(
    {"response": [{"service": "ADMIN", "command": "LOGIN", "content": {"code": 0, "msg": "ok"}}]}
)


def make_tokens(access_token: str | None = "access-token-1") -> Mock:
    tokens = Mock()
    tokens.access_token = access_token
    tokens.ensure_fresh = AsyncMock()
    return tokens


def make_session(
    tokens: Mock | None = None,
    preferences: object = PREFERENCES,
    policy: ReconnectPolicy | None = None,
    connector: FakeConnector | None = None,
    clock: FakeClock | None = None,
) -> StreamSession:
    return StreamSession(
        tokens or make_tokens(),
        fetch_preferences=AsyncMock(return_value=preferences),
        policy=policy or ReconnectPolicy(delay=30.0),
        connect=connector or FakeConnector(),
        clock=clock or FakeClock(),
    )


async def activate(session: StreamSession, connector: FakeConnector, receiver=None) -> None:
    await session.start(receiver or (lambda message: None))
    await wait_until(lambda: session.state is SessionState.LOGIN_PENDING)
    connector.current.push(LOGIN_RESPONSE)
    await wait_until(lambda: session.active)


class TestLogin:
    @pytest.mark.asyncio()
    async def test_login_is_first_frame(self):
        connector = FakeConnector()
        session = make_session(connector=connector)

        await session.start()
        await wait_until(lambda: session.state is SessionState.LOGIN_PENDING)

        assert connector.urls == [SOCKET_URL]
        assert connector.current.sent == [
            {
                "service": "ADMIN",
                "command": "LOGIN",
                "requestid": 0,
                "SchwabClientCustomerId": "customer-1",
                "SchwabClientCorrelId": "correl-1",
                "parameters": {
                    "Authorization": "access-token-1",
                    "SchwabClientChannel": "N9",
                    "SchwabClientFunctionId": "APIAPP",
                },
            }
        ]
        await session.stop()

    @pytest.mark.asyncio()
    async def test_first_response_activates_and_reaches_receiver(self):
        connector = FakeConnector()
        session = make_session(connector=connector)
        received: list[str] = []

        await activate(session, connector, received.append)

        assert received == [LOGIN_RESPONSE]
        await session.stop()

    @pytest.mark.asyncio()
    async def test_tokens_are_checked_before_login(self):
        tokens = make_tokens()
        connector = FakeConnector()
        session = make_session(tokens=tokens, connector=connector)

        await activate(session, connector)

        tokens.ensure_fresh.assert_awaited_once()
        await session.stop()

    @pytest.mark.asyncio()
    async def test_missing_access_token_closes_stream(self):
        connector = FakeConnector()
        session = make_session(tokens=make_tokens(None), connector=connector)

        await session.start()
        await wait_until(lambda: connector.sockets and connector.current.closed)
        await wait_until(lambda: session.state is SessionState.DISCONNECTED)

        assert connector.current.sent == []

    @pytest.mark.asyncio()
    async def test_second_start_is_ignored(self):
        connector = FakeConnector()
        session = make_session(connector=connector)

        await activate(session, connector)
        await session.start()
        await asyncio.sleep(0)

        assert len(connector.sockets) == 1
        assert session.active
        await session.stop()


class TestQueue:
    @pytest.mark.asyncio()
    async def test_commands_before_login_are_flushed_in_order(self):
        connector = FakeConnector()
        session = make_session(connector=connector)
        first = await session.level_one_equities("AMD", "0,1,2")
        second = await session.chart_equity(["INTC"], [0, 1])
        await session.send(first)
        await session.send([second])
        assert session.pending == 2

        await activate(session, connector)

        sent = connector.current.sent
        assert sent[0]["command"] == "LOGIN"
        assert sent[1:] == [{"requests": [first, second]}]
        assert session.pending == 0
        await session.stop()

    @pytest.mark.asyncio()
    async def test_commands_while_active_are_sent_immediately(self):
        connector = FakeConnector()
        session = make_session(connector=connector)
        await activate(session, connector)

        request = await session.level_one_options("AAPL  240809C00095000", "0,1,2")
        await session.send(request)

        assert connector.current.sent[-1] == {"requests": [request]}
        assert session.pending == 0
        await session.stop()

    @pytest.mark.asyncio()
    async def test_none_and_empty_sends_are_ignored(self):
        session = make_session()

        await session.send(None)
        await session.send([])

        assert session.pending == 0

    @pytest.mark.asyncio()
    async def test_request_ids_strictly_increase(self):
        connector = FakeConnector()
        session = make_session(connector=connector)
        await activate(session, connector)

        requests = [await session.nasdaq_book("AMD", "0,1,2") for _ in range(3)]

        ids = [0] + [r["requestid"] for r in requests]
        assert ids == sorted(set(ids))
        await session.stop()


class TestClose:
    @pytest.mark.asyncio()
    async def test_normal_close_is_terminal(self):
        connector = FakeConnector()
        clock = FakeClock()
        session = make_session(connector=connector, clock=clock)
        await activate(session, connector)
        clock.advance(120)

        connector.current.drop(1000)
        await wait_until(lambda: session.state is SessionState.DISCONNECTED)

        assert session._reconnect_timer is None
        assert len(connector.sockets) == 1

    @pytest.mark.asyncio()
    async def test_early_abnormal_close_is_terminal(self):
        connector = FakeConnector()
        clock = FakeClock()
        session = make_session(connector=connector, clock=clock)
        await activate(session, connector)
        clock.advance(10)

        connector.current.drop(1006)
        await wait_until(lambda: session.state is SessionState.DISCONNECTED)

        assert session._reconnect_timer is None

    @pytest.mark.asyncio()
    async def test_late_abnormal_close_schedules_one_reconnect(self):
        connector = FakeConnector()
        clock = FakeClock()
        session = make_session(connector=connector, clock=clock)
        await activate(session, connector)
        clock.advance(61)

        connector.current.drop(1006)
        await wait_until(lambda: session._reconnect_timer is not None)
        timer = session._reconnect_timer
        session._schedule_reconnect()

        assert session._reconnect_timer is timer
        assert session.state is SessionState.CONNECTING
        loop = asyncio.get_running_loop()
        assert timer.when() - loop.time() == pytest.approx(30.0, abs=1.0)

        await session.stop()
        assert timer.cancelled()
        assert session.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio()
    async def test_reconnect_logs_in_again_and_keeps_queued_commands(self):
        connector = FakeConnector()
        clock = FakeClock()
        session = make_session(
            connector=connector, clock=clock, policy=ReconnectPolicy(delay=0.0)
        )
        await activate(session, connector)
        clock.advance(61)

        connector.current.drop(1011)
        await wait_until(
            lambda: len(connector.sockets) == 2 and session.state is SessionState.LOGIN_PENDING
        )
        request = await session.level_one_futures("/ESZ24", "0,1,2")
        await session.send(request)
        connector.current.push(LOGIN_RESPONSE)
        await wait_until(lambda: session.active)

        sent = connector.current.sent
        assert sent[0]["command"] == "LOGIN"
        assert sent[0]["requestid"] > 0
        assert sent[1] == {"requests": [request]}
        await session.stop()

    @pytest.mark.asyncio()
    async def test_reconnect_attempts_are_bounded(self):
        connector = FakeConnector()
        clock = FakeClock()
        session = make_session(
            connector=connector,
            clock=clock,
            policy=ReconnectPolicy(delay=0.0, max_attempts=1),
        )
        await activate(session, connector)

        clock.advance(61)
        connector.current.drop(1006)
        await wait_until(
            lambda: len(connector.sockets) == 2 and session.state is SessionState.LOGIN_PENDING
        )
        clock.advance(61)
        connector.current.drop(1006)
        await wait_until(lambda: session.state is SessionState.DISCONNECTED)

        assert session._reconnect_timer is None
        assert len(connector.sockets) == 2

    @pytest.mark.asyncio()
    async def test_successful_login_resets_reconnect_attempts(self):
        connector = FakeConnector()
        clock = FakeClock()
        session = make_session(
            connector=connector,
            clock=clock,
            policy=ReconnectPolicy(delay=0.0, max_attempts=1),
        )
        await activate(session, connector)

        clock.advance(61)
        connector.current.drop(1006)
        await wait_until(
            lambda: len(connector.sockets) == 2 and session.state is SessionState.LOGIN_PENDING
        )
        connector.current.push(LOGIN_RESPONSE)
        await wait_until(lambda: session.active)

        clock.advance(86_400)
        connector.current.drop(1006)
        await wait_until(lambda: len(connector.sockets) == 3)

        assert session.state is not SessionState.DISCONNECTED
        await session.stop()

    @pytest.mark.asyncio()
    async def test_connect_failure_ends_session(self):
        connector = FakeConnector(fail=True)
        session = make_session(connector=connector)

        await session.start()
        await wait_until(lambda: session.state is SessionState.DISCONNECTED)

        assert connector.urls == [SOCKET_URL]
        assert session._reconnect_timer is None


class TestStop:
    @pytest.mark.asyncio()
    async def test_stop_when_disconnected_is_noop(self):
        connector = FakeConnector()
        session = make_session(connector=connector)

        await session.stop()

        assert session.state is SessionState.DISCONNECTED
        assert connector.urls == []

    @pytest.mark.asyncio()
    async def test_stop_sends_logout_and_closes(self):
        connector = FakeConnector()
        session = make_session(connector=connector)
        await activate(session, connector)
        websocket = connector.current

        await session.stop()

        logout = websocket.sent[-1]["requests"][0]
        assert logout["service"] == "ADMIN"
        assert logout["command"] == "LOGOUT"
        assert "parameters" not in logout
        assert websocket.closed
        assert session.state is SessionState.DISCONNECTED

        await session.stop()
        assert session.state is SessionState.DISCONNECTED


class TestDelivery:
    @pytest.mark.asyncio()
    async def test_receiver_errors_do_not_stop_stream(self):
        connector = FakeConnector()
        session = make_session(connector=connector)
        receiver = Mock(side_effect=ValueError("bad message"))

        await activate(session, connector, receiver)
        connector.current.push('{"data": []}')
        await wait_until(lambda: receiver.call_count == 2)

        assert session.active
        await session.stop()

    @pytest.mark.asyncio()
    async def test_async_receiver_is_awaited(self):
        connector = FakeConnector()
        session = make_session(connector=connector)
        received: list[str] = []

        async def collect(message: str) -> None:
            received.append(message)

        await activate(session, connector, collect)
        connector.current.push('{"notify": [{"heartbeat": "1"}]}')
        await wait_until(lambda: len(received) == 2)

        assert received[1] == '{"notify": [{"heartbeat": "1"}]}'
        await session.stop()

    @pytest.mark.asyncio()
    async def test_receiver_can_stop_the_stream(self):
        connector = FakeConnector()
        session = make_session(connector=connector)

        async def stop_on_request(message: str) -> None:
            if message == '{"data": "stop"}':
                await session.stop()

        await activate(session, connector, stop_on_request)
        task = session._connection_task
        websocket = connector.current
        websocket.push('{"data": "stop"}')
        await wait_until(task.done)

        assert task.exception() is None
        assert session.state is SessionState.DISCONNECTED
        assert websocket.closed
        assert websocket.sent[-1]["requests"][0]["command"] == "LOGOUT"
        assert session._reconnect_timer is None


class TestDescriptor:
    @pytest.mark.asyncio()
    async def test_descriptor_is_fetched_once(self):
        connector = FakeConnector()
        clock = FakeClock()
        session = make_session(
            connector=connector, clock=clock, policy=ReconnectPolicy(delay=0.0)
        )
        await session.build_request("LEVELONE_EQUITIES", "SUBS", {"keys": "AMD"})
        await activate(session, connector)
        clock.advance(61)
        connector.current.drop(1006)
        await wait_until(lambda: len(connector.sockets) == 2)

        session._fetch_preferences.assert_awaited_once()
        assert session.descriptor.customer_id == "customer-1"
        await session.stop()

    @pytest.mark.asyncio()
    async def test_missing_streamer_info_fails_build_and_start(self):
        connector = FakeConnector()
        session = make_session(preferences={"accounts": []}, connector=connector)

        with pytest.raises(StreamError):
            await session.build_request("LEVELONE_EQUITIES", "SUBS")

        await session.start()
        await wait_until(lambda: session.state is SessionState.DISCONNECTED)
        assert connector.urls == []


@pytest.mark.parametrize(
    ("now", "after_hours", "pre_hours", "expected"),
    [
        (datetime(2026, 1, 5, 15, 0, tzinfo=UTC), False, False, True),  # Mon 10:00 ET
        (datetime(2026, 1, 5, 13, 0, tzinfo=UTC), False, False, False),  # Mon 08:00 ET
        (datetime(2026, 1, 5, 13, 0, tzinfo=UTC), False, True, True),
        (datetime(2026, 1, 5, 21, 30, tzinfo=UTC), False, False, False),  # Mon 16:30 ET
        (datetime(2026, 1, 5, 21, 30, tzinfo=UTC), True, False, True),
        (datetime(2026, 1, 9, 15, 0, tzinfo=UTC), False, False, True),  # Fri
        (datetime(2026, 1, 10, 15, 0, tzinfo=UTC), True, True, False),  # Sat
        (datetime(2026, 1, 11, 15, 0, tzinfo=UTC), True, True, False),  # Sun
    ],
)
def test_in_market_hours(now, after_hours, pre_hours, expected):
    assert in_market_hours(now, after_hours, pre_hours) is expected


class TestAutomatic:
    @pytest.mark.asyncio()
    async def test_starts_inside_market_hours(self):
        connector = FakeConnector()
        session = make_session(connector=connector)

        session.start_automatic(
            check_interval=3600, now_fn=lambda: datetime(2026, 1, 5, 15, 0, tzinfo=UTC)
        )
        await wait_until(lambda: session.state is SessionState.LOGIN_PENDING)
        await session.stop_automatic()
        await session.stop()

        assert len(connector.sockets) == 1
        assert session._automatic_task is None

    @pytest.mark.asyncio()
    async def test_stops_outside_market_hours(self):
        connector = FakeConnector()
        session = make_session(connector=connector)
        await activate(session, connector)

        session.start_automatic(
            check_interval=3600, now_fn=lambda: datetime(2026, 1, 10, 15, 0, tzinfo=UTC)
        )
        await wait_until(lambda: session.state is SessionState.DISCONNECTED)
        await session.stop_automatic()

        assert connector.current.closed
