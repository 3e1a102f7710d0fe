import asyncio
import json
from unittest.mock import Mock

import pytest
import pytest_asyncio

from pyciv.codec import CivCommand
from pyciv.enums import Channel, DuplexDirection, OperatingMode, SessionState
from pyciv.errors import TransportWriteError
from pyciv.responses import FrequencyResponse, Ok, TransceiverIdResponse
from pyciv.session import RadioSession


@pytest.fixture
def make_session(connection_factory):
    def factory(**kwargs):
        kwargs.setdefault("command_timeout", 0.1)
        kwargs.setdefault("enable_polling", False)
        kwargs.setdefault("close_timeout", 0.2)
        return RadioSession("/dev/fake", connection_factory=connection_factory, **kwargs)

    return factory


@pytest_asyncio.fixture
async def session(make_session):
    session = make_session()
    listener = Mock()
    session.register_listener(listener)
    session.test_listener = listener
    await session.connect()
    yield session
    await session.disconnect()


def written(connection_factory) -> list[bytes]:
    return connection_factory.opened[-1].written


@pytest.mark.asyncio
async def test_connect_initializes_both_channels(session, radio, connection_factory):
    assert session.state is SessionState.ACTIVE
    assert radio.powered

    a = session.get_channel_state(Channel.A)
    b = session.get_channel_state(Channel.B)
    assert (a.frequency_hz, a.mode, a.tone_mode) == (145_000_000, OperatingMode.FM, 0)
    assert (b.frequency_hz, b.mode, b.tone_mode) == (433_500_000, OperatingMode.FM_N, 2)
    assert (b.tx_tone_tenths, b.rx_tone_tenths) == (1000, 1000)
    assert b.dtcs_code == 23

    sent = written(connection_factory)
    per_channel_reads = [
        CivCommand.read_frequency(),
        CivCommand.read_mode(),
        CivCommand.read_tone_mode(),
        CivCommand.read_tone_frequency(0x00),
        CivCommand.read_tone_frequency(0x01),
        CivCommand.read_dtcs(),
    ]
    assert sent == (
        [CivCommand.power_on(), CivCommand.select_channel(Channel.A)]
        + per_channel_reads
        + [CivCommand.select_channel(Channel.B)]
        + per_channel_reads
        + [CivCommand.select_channel(Channel.A)]
    )
    assert radio.selected is Channel.A
    assert session.selected_channel is Channel.A
    session.test_listener.connected.assert_called_once()


@pytest.mark.asyncio
async def test_set_frequency_updates_selected_channel_only(session, radio):
    response = await session.set_frequency(145_500_000)

    assert response == FrequencyResponse(145_500_000, channel=Channel.A)
    assert radio.registers[Channel.A].frequency_hz == 145_500_000
    assert session.get_channel_state(Channel.A).frequency_hz == 145_500_000
    assert session.get_channel_state(Channel.B).frequency_hz == 433_500_000


@pytest.mark.asyncio
async def test_view_channel_presents_cache_then_refreshes(session, radio):
    listener = session.test_listener
    radio.registers[Channel.B].frequency_hz = 438_000_000

    await session.view_channel(Channel.B)

    listener.channel_viewed.assert_called_once()
    viewed_channel, _ = listener.channel_viewed.call_args.args
    assert viewed_channel is Channel.B
    assert session.ui_active_channel is Channel.B
    assert session.selected_channel is Channel.B
    assert radio.selected is Channel.B
    assert session.get_channel_state(Channel.B).frequency_hz == 438_000_000


@pytest.mark.asyncio
async def test_set_mode_accepts_labels(session, radio):
    await session.set_mode("am-n")

    assert radio.registers[Channel.A].mode is OperatingMode.AM_N
    assert session.get_channel_state(Channel.A).mode is OperatingMode.AM_N


@pytest.mark.asyncio
async def test_tone_squelch_round_trip(session):
    await session.set_tone_mode(2)
    await session.set_tone_frequency(885)

    state = session.get_channel_state(Channel.A)
    assert state.tone_mode == 2
    assert state.tx_tone_tenths == 885
    assert state.rx_tone_tenths == 885


@pytest.mark.asyncio
async def test_tone_mode_writes_tx_tone_only(session, radio):
    await session.set_tone_mode(1)
    await session.set_tone_frequency(1318)

    assert radio.registers[Channel.A].tx_tone == 1318
    assert radio.registers[Channel.A].rx_tone == 885
    assert session.get_channel_state(Channel.A).tx_tone_tenths == 1318


@pytest.mark.asyncio
async def test_tone_frequency_refused_without_tone_mode(session, connection_factory):
    before = len(written(connection_factory))

    assert await session.set_tone_frequency(885) is None

    assert len(written(connection_factory)) == before


@pytest.mark.asyncio
async def test_set_dtcs(session, radio):
    await session.set_tone_mode(3)
    await session.set_dtcs(754, 1, 0)

    state = session.get_channel_state(Channel.A)
    assert (state.dtcs_code, state.dtcs_tx_polarity, state.dtcs_rx_polarity) == (754, 1, 0)
    assert state.tone_summary() == "DCS 754 RN"


@pytest.mark.asyncio
async def test_invalid_arguments_return_none_without_writing(session, connection_factory):
    before = len(written(connection_factory))

    assert await session.set_frequency(-5) is None
    assert await session.set_mode("LSB") is None
    assert await session.set_tone_mode(9) is None
    assert await session.set_dtcs(98) is None
    assert await session.set_af_level(300) is None
    assert await session.select_channel("C") is None

    assert len(written(connection_factory)) == before


@pytest.mark.asyncio
async def test_levels_and_auxiliary_reads(session, radio):
    await session.set_af_level(200)
    await session.set_squelch(10)
    assert radio.levels[0x01] == 200
    assert (session.meters.af_level, session.meters.squelch) == (200, 10)

    assert await session.read_transceiver_id() == TransceiverIdResponse(0xB4)
    await session.set_duplex(DuplexDirection.DUP_PLUS)
    await session.set_offset(5_000_000)

    assert session.telemetry.transceiver_id == 0xB4
    assert session.telemetry.duplex_direction is DuplexDirection.DUP_PLUS
    assert session.telemetry.offset_hz == 5_000_000


@pytest.mark.asyncio
async def test_power_off_stops_polling_and_power_on_restarts(make_session, radio):
    session = make_session(enable_polling=True, status_interval=10, telemetry_interval=10)
    await session.connect()
    try:
        assert session.poller.running

        assert await session.power_off() == Ok()
        assert not session.poller.running
        assert not radio.powered

        await session.power_on()
        assert radio.powered
        assert session.poller.running
        assert radio.selected is session.ui_active_channel
    finally:
        await session.disconnect()


@pytest.mark.asyncio
async def test_disconnect_resolves_queued_and_in_flight_commands(session, radio):
    radio.silent = True
    queue = session.command_queue
    futures = [queue.enqueue(CivCommand.read_frequency()) for _ in range(4)]
    await asyncio.sleep(0)
    assert queue.in_flight is not None
    assert queue.pending == 3

    await session.disconnect()

    assert [f.result() for f in futures] == [None] * 4
    assert queue.pending == 0
    assert queue.in_flight is None
    assert session.state is SessionState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(session, connection_factory):
    transport = connection_factory.opened[-1]
    listener = session.test_listener

    await asyncio.gather(session.disconnect(), session.disconnect())
    await session.disconnect()

    assert transport.close_calls == 1
    listener.disconnected.assert_called_once()
    assert session.state is SessionState.DISCONNECTED


@pytest.mark.asyncio
async def test_enqueue_during_disconnect_returns_none(session):
    queue = session.command_queue
    task = asyncio.ensure_future(session.disconnect())
    await asyncio.sleep(0)

    assert session.disconnecting or session.state is SessionState.DISCONNECTED
    future = queue.enqueue(CivCommand.read_frequency())
    assert future.done() and future.result() is None
    await task


@pytest.mark.asyncio
async def test_disconnect_resets_shadow_state(session):
    await session.disconnect()

    assert session.get_channel_state(Channel.A).frequency_hz is None
    assert session.command_queue is None
    assert await session.set_frequency(145_000_000) is None


@pytest.mark.asyncio
async def test_connection_lost_tears_down(session, connection_factory):
    connection_factory.opened[-1].lose(OSError("cable pulled"))
    await asyncio.sleep(0.05)

    assert session.state is SessionState.DISCONNECTED
    session.test_listener.error.assert_called()


@pytest.mark.asyncio
async def test_reconnect_builds_fresh_queue(session):
    first_queue = session.command_queue
    await session.disconnect()
    await session.connect()

    assert session.state is SessionState.ACTIVE
    assert session.command_queue is not first_queue
    assert session.get_channel_state(Channel.B).frequency_hz == 433_500_000


@pytest.mark.asyncio
async def test_connect_failure_propagates():
    async def failing_factory(protocol_factory):
        raise OSError("could not open port")

    session = RadioSession("/dev/missing", connection_factory=failing_factory)

    with pytest.raises(OSError):
        await session.connect()
    assert session.state is SessionState.DISCONNECTED


@pytest.mark.asyncio
async def test_write_failure_reaches_caller(session, connection_factory):
    connection_factory.opened[-1].fail_writes = True

    with pytest.raises(TransportWriteError):
        await session.set_frequency(145_000_000)


@pytest.mark.asyncio
async def test_radio_echo_is_ignored(make_session, radio):
    radio.echo = True
    session = make_session()
    await session.connect()
    try:
        assert session.get_channel_state(Channel.B).frequency_hz == 433_500_000
    finally:
        await session.disconnect()


@pytest.mark.asyncio
async def test_snapshot_is_json_ready(session):
    snapshot = session.snapshot()

    assert json.loads(json.dumps(snapshot)) == snapshot
    assert snapshot["state"] == "active"
    assert snapshot["channels"]["B"]["mode"] == "FM-N"
    assert snapshot["link"]["tx_bytes"] > 0


@pytest.mark.asyncio
async def test_boolean_arguments_are_rejected(session, connection_factory):
    await session.set_tone_mode(2)
    before = len(written(connection_factory))

    assert await session.set_frequency(True) is None
    assert await session.set_tone_frequency(True) is None
    assert await session.set_af_level(False) is None
    assert await session.set_squelch(True) is None
    assert await session.set_dtcs(True) is None

    assert len(written(connection_factory)) == before


@pytest.mark.asyncio
async def test_undecodable_reply_resolves_none_and_queue_continues(session, radio):
    listener = session.test_listener
    queue = session.command_queue
    radio.corrupt_frequency = True

    first = queue.enqueue(CivCommand.read_frequency(), channel=Channel.A)
    second = queue.enqueue(CivCommand.read_frequency(), channel=Channel.A)

    assert await asyncio.wait_for(first, timeout=1) is None
    assert await asyncio.wait_for(second, timeout=1) == FrequencyResponse(145_000_000, channel=Channel.A)
    listener.error.assert_called_once()
    assert "Decode error" in listener.error.call_args.args[0]
    assert session.get_channel_state(Channel.A).frequency_hz == 145_000_000
    assert session.state is SessionState.ACTIVE


@pytest.mark.asyncio
async def test_disconnect_while_opening_port_closes_new_link(connection_factory):
    gate = asyncio.Event()

    async def gated_factory(protocol_factory):
        await gate.wait()
        return await connection_factory(protocol_factory)

    session = RadioSession("/dev/fake", command_timeout=0.1, enable_polling=False, close_timeout=0.2,
                           connection_factory=gated_factory)
    listener = Mock()
    session.register_listener(listener)

    task = asyncio.ensure_future(session.connect())
    await asyncio.sleep(0)
    assert session.state is SessionState.CONNECTING

    await session.disconnect()
    assert session.state is SessionState.DISCONNECTED

    gate.set()
    await asyncio.wait_for(task, timeout=1)

    transport = connection_factory.opened[-1]
    assert session.state is SessionState.DISCONNECTED
    assert transport.close_calls == 1
    assert transport.written == []
    assert session.command_queue is None
    listener.connected.assert_not_called()
    listener.disconnected.assert_called_once()

    # The session is reusable afterwards
    await session.connect()
    assert session.state is SessionState.ACTIVE
    await session.disconnect()
