"""ConnectionSession tests against an in-memory link."""

import asyncio

import pytest

from padctrl import protocol
from padctrl.errors import LinkUnstable, PadError, ServiceNotFound
from padctrl.session import ConnectionSession, SessionPhase, is_transient

HANDLE = "AA:BB:CC:DD:EE:FF"


def make_session(link, state, config, lost=None):
    return ConnectionSession(link, HANDLE, state, config, on_link_lost=lost)


def test_transient_classification():
    assert is_transient(LinkUnstable("x"))
    assert is_transient(asyncio.TimeoutError())
    assert is_transient(OSError("GATT error 133"))
    assert is_transient(RuntimeError("Device disconnected"))
    assert not is_transient(ServiceNotFound("nope"))
    assert not is_transient(PadError("device disconnected"))
    assert not is_transient(ValueError("bad value"))


@pytest.mark.asyncio
async def test_open_activates_and_seeds_queries(fake_link, device_state, fast_config, wait_for):
    session = make_session(fake_link, device_state, fast_config)
    await session.open()

    assert session.phase is SessionPhase.ACTIVE
    assert fake_link.on_value is not None
    await wait_for(lambda: protocol.query() in fake_link.writes)
    await wait_for(lambda: protocol.query_params() in fake_link.writes)
    await session.close()


@pytest.mark.asyncio
async def test_transient_failures_are_retried(fake_link, device_state, fast_config):
    fake_link.connect_errors = [LinkUnstable("flaky"), OSError("gatt error 133")]
    session = make_session(fake_link, device_state, fast_config)

    await session.open()

    assert session.is_active
    assert session.attempts == 2
    assert fake_link.connect_calls == 3
    await session.close()


@pytest.mark.asyncio
async def test_retries_are_bounded(fake_link, device_state, fast_config):
    fake_link.always_fail = LinkUnstable("still flaky")
    session = make_session(fake_link, device_state, fast_config)

    with pytest.raises(LinkUnstable):
        await session.open()
    assert fake_link.connect_calls == fast_config.connect_retries + 1


@pytest.mark.asyncio
async def test_drop_right_after_connect_is_retried(fake_link, device_state, fast_config):
    fake_link.drop_after_connect = True
    session = make_session(fake_link, device_state, fast_config)

    with pytest.raises(LinkUnstable, match="Connection lost after connect"):
        await session.open()
    assert fake_link.connect_calls == fast_config.connect_retries + 1


@pytest.mark.asyncio
async def test_drop_while_subscribing_is_retried(fake_link, device_state, fast_config):
    fake_link.drop_on_subscribe = 1
    session = make_session(fake_link, device_state, fast_config)

    await session.open()

    assert session.is_active
    assert session.attempts == 1
    assert fake_link.connect_calls == 2
    assert fake_link.gatts[-1].connected
    await session.close()


@pytest.mark.asyncio
async def test_persistent_drop_while_subscribing_fails_open(fake_link, device_state, fast_config):
    fake_link.drop_on_subscribe = fast_config.connect_retries + 1
    session = make_session(fake_link, device_state, fast_config)

    with pytest.raises(LinkUnstable, match="Connection lost during setup"):
        await session.open()
    assert not session.is_active
    assert fake_link.connect_calls == fast_config.connect_retries + 1


@pytest.mark.asyncio
async def test_missing_service_is_not_retried(fake_link, device_state, fast_config, not_a_walkingpad):
    fake_link.service_error = not_a_walkingpad
    session = make_session(fake_link, device_state, fast_config)

    with pytest.raises(ServiceNotFound, match="does not appear to be a WalkingPad"):
        await session.open()
    assert fake_link.connect_calls == 1


@pytest.mark.asyncio
async def test_non_transient_connect_error_is_wrapped(fake_link, device_state, fast_config):
    fake_link.connect_errors = [ValueError("adapter off")]
    session = make_session(fake_link, device_state, fast_config)

    with pytest.raises(PadError, match="adapter off"):
        await session.open()
    assert fake_link.connect_calls == 1


@pytest.mark.asyncio
async def test_commands_drain_in_order(fake_link, device_state, fast_config, wait_for):
    fast_config.query_interval = 10
    session = make_session(fake_link, device_state, fast_config)
    await session.open()
    await wait_for(lambda: len(fake_link.writes) >= 2)
    fake_link.writes.clear()

    frames = [protocol.set_speed(20), protocol.set_speed(30), protocol.start_belt()]
    for frame in frames:
        assert session.send(frame)

    await wait_for(lambda: len(fake_link.writes) >= 3)
    assert fake_link.writes[:3] == frames
    await session.close()


@pytest.mark.asyncio
async def test_write_failure_keeps_session_alive(fake_link, device_state, fast_config, wait_for):
    session = make_session(fake_link, device_state, fast_config)
    await session.open()

    fake_link.write_error = OSError("write failed")
    session.send(protocol.start_belt())
    await wait_for(lambda: session.write_failures >= 1)
    assert session.is_active

    fake_link.write_error = None
    session.send(protocol.set_speed(25))
    await wait_for(lambda: protocol.set_speed(25) in fake_link.writes)
    await session.close()


@pytest.mark.asyncio
async def test_notifications_update_state(fake_link, device_state, fast_config, frames):
    session = make_session(fake_link, device_state, fast_config)
    await session.open()

    fake_link.notify(frames.info(speed=42, time=61))
    fake_link.notify(frames.params(max_speed=70))

    assert device_state.status.speed == 42
    assert device_state.status.time == 61
    assert device_state.params.max_speed == 70
    assert session.poller.has_queried_params
    await session.close()


@pytest.mark.asyncio
async def test_zero_duration_record_discarded(fake_link, device_state, fast_config, frames):
    session = make_session(fake_link, device_state, fast_config)
    await session.open()

    fake_link.notify(frames.record(duration=0))
    fake_link.notify(frames.record(duration=120, remaining=0))

    assert [(r.duration, r.remaining) for r in device_state.records] == [(120, 0)]
    await session.close()


@pytest.mark.asyncio
async def test_malformed_frames_are_kept_for_inspection(fake_link, device_state, fast_config):
    session = make_session(fake_link, device_state, fast_config)
    await session.open()

    fake_link.notify(b"\xf8\xa2\x01")
    assert device_state.status.speed == 0
    assert list(session.discarded_frames) == [b"\xf8\xa2\x01"]
    await session.close()


@pytest.mark.asyncio
async def test_link_loss_tears_down(fake_link, device_state, fast_config):
    lost = []
    fast_config.send_interval = 10
    session = make_session(fake_link, device_state, fast_config, lost=lost.append)
    await session.open()
    session.send(protocol.start_belt())
    assert len(session.queue) > 0

    fake_link.drop_link()

    assert lost == [session]
    assert session.closed
    assert len(session.queue) == 0
    assert not session.poller.running
    assert not session.send(protocol.start_belt())


@pytest.mark.asyncio
async def test_close_releases_link(fake_link, device_state, fast_config):
    lost = []
    session = make_session(fake_link, device_state, fast_config, lost=lost.append)
    await session.open()

    await session.close()

    assert session.closed
    assert fake_link.unsubscribe_calls == 1
    assert fake_link.disconnect_calls == 1
    # A user-initiated close is not a link loss
    assert lost == []


@pytest.mark.asyncio
async def test_notifications_ignored_after_close(fake_link, device_state, fast_config, frames):
    session = make_session(fake_link, device_state, fast_config)
    await session.open()
    handler = fake_link.on_value
    await session.close()

    handler(frames.info(speed=50))
    assert device_state.status.speed == 0
