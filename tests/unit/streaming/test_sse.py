"""Tests for the SSE event streamer."""

from datetime import UTC, datetime, timedelta

import orjson
import pytest

from beacon.events.models import Event
from beacon.streaming.sse import EventStreamer, sse_frame


def make_event(created_at: datetime) -> Event:
    return Event(
        channel_id="ch_1",
        project_id="proj_1",
        organization_id="org_1",
        title="Signup",
        created_at=created_at,
    )


def disconnect_after(polls: int):
    calls = {"n": 0}

    async def is_disconnected() -> bool:
        calls["n"] += 1
        return calls["n"] > polls

    return is_disconnected


async def no_sleep(_: float) -> None:
    return None


def decode(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return orjson.loads(frame.removeprefix("data: "))


class TestEventStreamer:
    """Test frame sequencing and the cursor."""

    def test_frame_format(self) -> None:
        """Frames are single data lines terminated by a blank line."""
        assert sse_frame({"type": "heartbeat"}) == 'data: {"type":"heartbeat"}\n\n'

    @pytest.mark.asyncio
    async def test_connected_events_heartbeat(self) -> None:
        """A poll yields its events oldest first, then a heartbeat."""
        now = datetime.now(UTC)
        newer, older = make_event(now), make_event(now - timedelta(seconds=1))

        async def poll(after: datetime) -> list[Event]:
            return [newer, older]

        streamer = EventStreamer(poll, is_disconnected=disconnect_after(1), sleep=no_sleep)
        frames = [decode(f) async for f in streamer.frames()]

        assert [f["type"] for f in frames] == ["connected", "event", "event", "heartbeat"]
        assert frames[1]["data"]["id"] == older.id
        assert frames[2]["data"]["id"] == newer.id

    @pytest.mark.asyncio
    async def test_stops_on_disconnect(self) -> None:
        """An already-closed client gets only the connected frame."""
        polled = []

        async def poll(after: datetime) -> list[Event]:
            polled.append(after)
            return []

        streamer = EventStreamer(poll, is_disconnected=disconnect_after(0), sleep=no_sleep)
        frames = [decode(f) async for f in streamer.frames()]

        assert frames == [{"type": "connected"}]
        assert polled == []

    @pytest.mark.asyncio
    async def test_poll_error_keeps_stream_open(self) -> None:
        """A failed poll skips its heartbeat and the loop carries on."""
        results: list = [RuntimeError("store down"), []]
        sleeps: list[float] = []

        async def poll(after: datetime) -> list[Event]:
            result = results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

        async def sleep(seconds: float) -> None:
            sleeps.append(seconds)

        streamer = EventStreamer(
            poll, interval=2.0, is_disconnected=disconnect_after(2), sleep=sleep
        )
        frames = [decode(f) async for f in streamer.frames()]

        assert [f["type"] for f in frames] == ["connected", "heartbeat"]
        assert sleeps == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_cursor_moves_forward_only(self) -> None:
        """The cursor advances to the newest event or to the lagged poll time."""
        start = datetime.now(UTC) - timedelta(minutes=5)
        delivered = make_event(datetime.now(UTC) + timedelta(seconds=30))
        cursors: list[datetime] = []

        async def poll(after: datetime) -> list[Event]:
            cursors.append(after)
            return [delivered] if len(cursors) == 1 else []

        streamer = EventStreamer(
            poll,
            is_disconnected=disconnect_after(3),
            sleep=no_sleep,
            cursor_lag=3,
            start=start,
        )
        [f async for f in streamer.frames()]

        assert cursors[0] == start
        assert cursors[1] == delivered.created_at
        assert cursors[2] == delivered.created_at

    @pytest.mark.asyncio
    async def test_cursor_lags_poll_time(self) -> None:
        """With no events the cursor trails the poll time by the lag."""
        start = datetime.now(UTC) - timedelta(minutes=5)
        cursors: list[datetime] = []

        async def poll(after: datetime) -> list[Event]:
            cursors.append(after)
            return []

        streamer = EventStreamer(
            poll, is_disconnected=disconnect_after(2), sleep=no_sleep, cursor_lag=3, start=start
        )
        before = datetime.now(UTC)
        [f async for f in streamer.frames()]

        assert cursors[1] > start
        assert cursors[1] <= datetime.now(UTC) - timedelta(seconds=3)
        assert cursors[1] >= before - timedelta(seconds=3)
