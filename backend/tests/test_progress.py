import asyncio

import pytest

from f95catalog.services.progress import PIPELINE_TOTAL_STEPS, ProgressBroker, make_event


def _event(event_type, step, correlation_id="run-1"):
    return make_event(event_type, correlation_id, step, PIPELINE_TOTAL_STEPS, f"{event_type} {step}")


def test_make_event_derives_percentage():
    assert _event("progress", 3).percentage == 50
    assert _event("completed", 6).percentage == 100
    assert make_event("progress", "run-1", 9, 6, "overflow").percentage == 100
    assert make_event("progress", "run-1", 1, 0, "no steps").percentage == 0


def test_subscriber_receives_buffered_events_then_terminal():
    async def scenario():
        broker = ProgressBroker(idle_timeout_seconds=5)
        broker.open("run-1")
        for step in (1, 2):
            assert broker.publish("run-1", _event("progress", step))
        assert broker.publish("run-1", _event("completed", 6))
        assert not broker.publish("run-1", _event("progress", 3))

        received = [event async for event in broker.subscribe("run-1")]
        return broker, received

    broker, received = asyncio.run(scenario())

    assert [event.type for event in received] == ["connected", "progress", "progress", "completed"]
    assert [event.step for event in received] == [0, 1, 2, 6]
    assert "run-1" not in broker


def test_publish_to_unknown_channel_is_ignored():
    broker = ProgressBroker(idle_timeout_seconds=5)
    assert broker.publish("missing", _event("progress", 1, "missing")) is False


def test_unsubscribed_channel_is_reaped_after_idle_timeout():
    async def scenario():
        broker = ProgressBroker(idle_timeout_seconds=0.01)
        channel = broker.open("run-1")
        await asyncio.sleep(0.05)
        return broker, channel

    broker, channel = asyncio.run(scenario())

    assert "run-1" not in broker
    assert channel.closed
    assert channel.publish(_event("progress", 1)) is False


def test_idle_subscriber_stream_ends():
    async def scenario():
        broker = ProgressBroker(idle_timeout_seconds=0.01)
        return [event.type async for event in broker.subscribe("run-1")]

    assert asyncio.run(scenario()) == ["connected"]


def test_disconnect_stops_publishing():
    async def scenario():
        broker = ProgressBroker(idle_timeout_seconds=5)
        channel = broker.open("run-1")
        stream = broker.subscribe("run-1")
        first = await stream.__anext__()
        await stream.aclose()
        return broker, channel, first

    broker, channel, first = asyncio.run(scenario())

    assert first.type == "connected"
    assert channel.disconnected
    assert channel.publish(_event("progress", 1)) is False
    assert "run-1" not in broker


def test_second_subscriber_is_rejected():
    async def scenario():
        broker = ProgressBroker(idle_timeout_seconds=5)
        first = broker.subscribe("run-1")
        await first.__anext__()
        second = broker.subscribe("run-1")
        try:
            with pytest.raises(RuntimeError):
                await second.__anext__()
        finally:
            await first.aclose()

    asyncio.run(scenario())


def test_fresh_open_replaces_finished_channel():
    async def scenario():
        broker = ProgressBroker(idle_timeout_seconds=5)
        finished = broker.open("run-1")
        broker.publish("run-1", _event("completed", 6))
        replay = broker.open("run-1")
        restarted = broker.open("run-1", fresh=True)
        again = broker.open("run-1", fresh=True)
        return finished, replay, restarted, again

    finished, replay, restarted, again = asyncio.run(scenario())

    assert replay is finished
    assert finished.closed
    assert restarted is not finished
    assert not restarted.closed
    # An open channel is kept even when a fresh one is requested.
    assert again is restarted
