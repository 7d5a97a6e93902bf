"""
Tests for PollingTransport in vkrelay.updates.polling.
"""

import asyncio

import httpx
import pytest

from tests.mocks.vk import FakeVKAPI
from vkrelay.constants import UpdateSource
from vkrelay.exceptions import ProtocolError, TransportError
from vkrelay.updates.envelope import RawEnvelope
from vkrelay.updates.polling import PollingState, PollingTransport


def _group_update(event_id: str, text: str) -> dict:
    return {
        "type": "message_new",
        "event_id": event_id,
        "group_id": 1,
        "object": {"message": {"id": 1, "peer_id": 5, "from_id": 5, "text": text}},
    }


class EnvelopeRecorder:
    """Collect envelopes handed over by a transport."""

    def __init__(self) -> None:
        self.envelopes: list[RawEnvelope] = []

    async def __call__(self, envelope: RawEnvelope) -> None:
        self.envelopes.append(envelope)

    @property
    def delivery_ids(self) -> list:
        return [envelope.delivery_id for envelope in self.envelopes]


async def _wait_exhausted(fake_vk: FakeVKAPI) -> None:
    await asyncio.wait_for(fake_vk.poll_exhausted.wait(), timeout=5)


@pytest.mark.asyncio
async def test_group_polling_dispatches_in_order_and_tracks_cursor(make_api, fake_vk: FakeVKAPI):
    """Test ordered dispatch and cursor advance across two responses."""
    fake_vk.poll_steps = [
        {"ts": "11", "updates": [_group_update("a", "1"), _group_update("b", "2")]},
        {"ts": "12", "updates": [_group_update("c", "3")]},
    ]
    recorder = EnvelopeRecorder()

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=recorder)
        await transport.start()
        assert transport.state == PollingState.POLLING
        await _wait_exhausted(fake_vk=fake_vk)
        await transport.stop(cancel=True)

    assert recorder.delivery_ids == ["a", "b", "c"]
    assert all(envelope.source == UpdateSource.POLLING for envelope in recorder.envelopes)
    assert [request["ts"] for request in fake_vk.poll_requests] == ["10", "11", "12"]
    assert fake_vk.poll_requests[0] == {"act": "a_check", "key": "key1", "ts": "10", "wait": "25"}
    method, form = fake_vk.method_calls[0]
    assert method == "groups.getLongPollServer"
    assert form["group_id"] == "1"
    assert transport.session.ts == "12"
    assert transport.state == PollingState.STOPPED


@pytest.mark.asyncio
async def test_user_polling_requests_version_and_mode(make_api, fake_vk: FakeVKAPI):
    fake_vk.session_ts = 100
    fake_vk.poll_steps = [{"ts": 101, "updates": [[4, 10, 1, 5, 1700000000, "hi", {}, {}]]}]
    recorder = EnvelopeRecorder()

    async with make_api() as api:
        transport = PollingTransport(api=api, handler=recorder)
        await transport.start()
        await _wait_exhausted(fake_vk=fake_vk)
        await transport.stop(cancel=True)

    method, form = fake_vk.method_calls[0]
    assert method == "messages.getLongPollServer"
    assert form["lp_version"] == "3"
    assert transport.session.server == "https://lp.vk.test/user"
    assert fake_vk.poll_requests[0]["version"] == "3"
    assert fake_vk.poll_requests[0]["mode"] == str(2 | 8 | 64 | 128)
    assert fake_vk.poll_requests[1]["ts"] == "101"
    assert recorder.envelopes[0].update_type == 4
    assert recorder.envelopes[0].is_positional


@pytest.mark.asyncio
async def test_outdated_cursor_adopts_new_ts(make_api, fake_vk: FakeVKAPI):
    fake_vk.poll_steps = [
        {"failed": 1, "ts": "30"},
        {"ts": "31", "updates": [_group_update("a", "x")]},
    ]
    recorder = EnvelopeRecorder()

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=recorder)
        await transport.start()
        await _wait_exhausted(fake_vk=fake_vk)
        await transport.stop(cancel=True)

    assert [request["ts"] for request in fake_vk.poll_requests] == ["10", "30", "31"]
    assert fake_vk.session_count == 1
    assert recorder.delivery_ids == ["a"]


@pytest.mark.parametrize("failed", [2, 3])
@pytest.mark.asyncio
async def test_expired_session_is_refreshed_without_dispatch(make_api, fake_vk: FakeVKAPI, failed: int):
    """Test that failed=2|3 re-acquires the session and dispatches nothing from that response."""
    fake_vk.poll_steps = [
        {"failed": failed, "updates": [_group_update("ghost", "x")]},
        {"ts": "11", "updates": [_group_update("a", "y")]},
    ]
    recorder = EnvelopeRecorder()

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=recorder)
        await transport.start()
        await _wait_exhausted(fake_vk=fake_vk)
        await transport.stop(cancel=True)

    assert fake_vk.session_count == 2
    assert [request["key"] for request in fake_vk.poll_requests] == ["key1", "key2", "key2"]
    assert recorder.delivery_ids == ["a"]


@pytest.mark.asyncio
async def test_unknown_failure_is_fatal(make_api, fake_vk: FakeVKAPI):
    fake_vk.poll_steps = [{"failed": 4}]
    fatal_errors = []

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=EnvelopeRecorder(), on_fatal_error=fatal_errors.append)
        await transport.start()
        with pytest.raises(ProtocolError):
            await transport.join()

    assert transport.state == PollingState.STOPPED
    assert isinstance(transport.error, ProtocolError)
    assert fatal_errors == [transport.error]


@pytest.mark.asyncio
async def test_transport_failures_are_retried(make_api, fake_vk: FakeVKAPI):
    fake_vk.poll_steps = [
        503,
        httpx.ConnectError("connection reset"),
        {"ts": "11", "updates": [_group_update("a", "x")]},
    ]
    recorder = EnvelopeRecorder()

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=recorder)
        await transport.start()
        await _wait_exhausted(fake_vk=fake_vk)
        await transport.stop(cancel=True)

    assert recorder.delivery_ids == ["a"]
    assert [request["ts"] for request in fake_vk.poll_requests] == ["10", "10", "10", "11"]
    assert transport.error is None


@pytest.mark.asyncio
async def test_retry_budget_exhaustion_stops_polling(make_api, fake_vk: FakeVKAPI):
    fake_vk.poll_steps = [500, 500, 500]

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=EnvelopeRecorder())
        await transport.start()
        with pytest.raises(TransportError):
            await transport.join()

    assert len(fake_vk.poll_requests) == 3
    assert not transport.is_running
    assert transport.state == PollingState.STOPPED


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_polling(make_api, fake_vk: FakeVKAPI):
    fake_vk.poll_steps = [{"ts": "11", "updates": [_group_update("a", "x"), _group_update("b", "y")]}]
    seen = []

    async def handler(envelope: RawEnvelope) -> None:
        seen.append(envelope.delivery_id)
        if envelope.delivery_id == "a":
            raise RuntimeError("handler bug")

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=handler)
        await transport.start()
        await _wait_exhausted(fake_vk=fake_vk)
        assert transport.is_running
        await transport.stop(cancel=True)

    assert seen == ["a", "b"]


@pytest.mark.asyncio
async def test_stop_skips_remaining_updates(make_api, fake_vk: FakeVKAPI):
    fake_vk.poll_steps = [{"ts": "11", "updates": [_group_update("a", "x"), _group_update("b", "y")]}]
    seen = []
    transports: list[PollingTransport] = []

    async def handler(envelope: RawEnvelope) -> None:
        seen.append(envelope.delivery_id)
        await transports[0].stop()

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=handler)
        transports.append(transport)
        await transport.start()
        await transport.join()
        await transport.stop()

    assert seen == ["a"]
    assert len(fake_vk.poll_requests) == 1
    assert transport.state == PollingState.STOPPED


@pytest.mark.asyncio
async def test_start_is_idempotent(make_api, fake_vk: FakeVKAPI):
    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=EnvelopeRecorder())
        await transport.start()
        await transport.start()
        await _wait_exhausted(fake_vk=fake_vk)
        await transport.stop(cancel=True)
        await transport.stop(cancel=True)

    assert fake_vk.session_count == 1
    assert len(fake_vk.poll_requests) == 1


@pytest.mark.asyncio
async def test_response_arriving_after_stop_is_discarded(make_api, fake_vk: FakeVKAPI):
    """Test that an in-flight long-poll response is dropped once stop() was requested."""
    fake_vk.poll_steps = [{"ts": "11", "updates": [_group_update("late", "x")]}]
    fake_vk.poll_gate = asyncio.Event()
    recorder = EnvelopeRecorder()

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=recorder)
        await transport.start()
        await asyncio.wait_for(fake_vk.poll_received.wait(), timeout=5)

        await transport.stop()
        fake_vk.poll_gate.set()
        await asyncio.wait_for(transport.join(), timeout=5)

    assert recorder.envelopes == []
    assert transport.session.ts == "10"
    assert len(fake_vk.poll_requests) == 1
    assert transport.state == PollingState.STOPPED


@pytest.mark.asyncio
async def test_start_after_stop_restarts_with_request_in_flight(make_api, fake_vk: FakeVKAPI):
    fake_vk.poll_gate = asyncio.Event()

    async with make_api(polling_group_id=1) as api:
        transport = PollingTransport(api=api, handler=EnvelopeRecorder())
        await transport.start()
        await asyncio.wait_for(fake_vk.poll_received.wait(), timeout=5)

        await transport.stop()
        fake_vk.poll_received.clear()
        await transport.start()
        await asyncio.wait_for(fake_vk.poll_received.wait(), timeout=5)

        assert transport.state == PollingState.POLLING
        assert transport.is_running
        await transport.stop(cancel=True)

    assert fake_vk.session_count == 2
    assert [request["key"] for request in fake_vk.poll_requests] == ["key1", "key2"]
