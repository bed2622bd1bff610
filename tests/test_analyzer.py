import asyncio
import threading

from conftest import FakeFrame, FakeStrategy, RecordingDispatcher, ScriptedDecoder, text_payload, wifi_payload
from qrlink.analyzer import FrameAnalyzer
from qrlink.dispatcher import ActionDispatcher
from qrlink.network.join import NetworkJoinStateMachine
from qrlink.payloads import JoinNetwork, ShowText
from qrlink.sensors.decoder import DecodeError


def test_accepted_frame_is_classified_dispatched_and_released():
    decoder = ScriptedDecoder([text_payload("hello"), wifi_payload("Net1", "pw123")])
    dispatcher = RecordingDispatcher()
    analyzer = FrameAnalyzer(decoder, dispatcher)
    frame = FakeFrame()

    accepted = asyncio.run(analyzer.analyze(frame))

    assert accepted is True
    assert frame.release_calls == 1
    assert len(dispatcher.batches) == 1
    actions = dispatcher.batches[0]
    assert actions[0] == ShowText("hello")
    assert isinstance(actions[1], JoinNetwork)


def test_frame_arriving_while_busy_is_dropped_and_released():
    gate = threading.Event()
    decoder = ScriptedDecoder([text_payload("one")], [text_payload("two")], gate=gate)
    dispatcher = RecordingDispatcher()
    analyzer = FrameAnalyzer(decoder, dispatcher)
    first, second = FakeFrame(), FakeFrame()

    async def scenario():
        pending = asyncio.create_task(analyzer.analyze(first))
        while not analyzer.busy:
            await asyncio.sleep(0)
        dropped = await analyzer.analyze(second)
        gate.set()
        return await pending, dropped

    first_result, second_result = asyncio.run(scenario())

    assert first_result is True
    assert second_result is False
    assert decoder.calls == 1, "Second frame must not start a concurrent decode."
    assert first.release_calls == 1
    assert second.release_calls == 1
    assert analyzer.stats()["dropped"] == 1
    assert dispatcher.batches == [[ShowText("one")]]


def test_decode_error_is_logged_and_loop_continues(caplog):
    decoder = ScriptedDecoder(DecodeError("blurry"), [text_payload("after")])
    dispatcher = RecordingDispatcher()
    analyzer = FrameAnalyzer(decoder, dispatcher)
    broken, good = FakeFrame(), FakeFrame()

    async def scenario():
        return await analyzer.analyze(broken), await analyzer.analyze(good)

    with caplog.at_level("WARNING"):
        results = asyncio.run(scenario())

    assert results == (True, True)
    assert broken.release_calls == 1
    assert good.release_calls == 1
    assert analyzer.decode_errors == 1
    assert dispatcher.batches == [[], [ShowText("after")]]
    assert any("Barcode analysis failure" in r.message for r in caplog.records)


def test_unexpected_decoder_exception_is_treated_as_empty_result():
    decoder = ScriptedDecoder(ValueError("boom"))
    dispatcher = RecordingDispatcher()
    analyzer = FrameAnalyzer(decoder, dispatcher)
    frame = FakeFrame()

    assert asyncio.run(analyzer.analyze(frame)) is True
    assert frame.release_calls == 1
    assert dispatcher.batches == [[]]


def test_no_match_frame_is_released_once():
    analyzer = FrameAnalyzer(ScriptedDecoder([]), RecordingDispatcher())
    frame = FakeFrame()

    asyncio.run(analyzer.analyze(frame))

    assert frame.release_calls == 1


def test_closed_gate_rejects_until_reset():
    decoder = ScriptedDecoder([text_payload("x")])
    analyzer = FrameAnalyzer(decoder, RecordingDispatcher())
    analyzer.close()
    rejected = FakeFrame()

    assert asyncio.run(analyzer.analyze(rejected)) is False
    assert rejected.release_calls == 1
    assert decoder.calls == 0

    analyzer.reset()
    assert analyzer.stats() == {"accepted": 0, "dropped": 0, "decode_errors": 0, "busy": False}
    assert asyncio.run(analyzer.analyze(FakeFrame())) is True


def test_multi_payload_frame_shows_text_before_join_starts(notifier):
    strategy = FakeStrategy()
    dispatcher = ActionDispatcher(
        notifier,
        lambda creds: NetworkJoinStateMachine(creds, strategy, timeout_seconds=1.0),
    )
    decoder = ScriptedDecoder([text_payload("hello"), wifi_payload("Net1", "pw123")])
    analyzer = FrameAnalyzer(decoder, dispatcher)

    async def scenario():
        await analyzer.analyze(FakeFrame())
        snapshot = (list(notifier.history), len(strategy.requests))
        await dispatcher.drain()
        return snapshot

    (history_at_dispatch, joins_at_dispatch) = asyncio.run(scenario())

    assert history_at_dispatch == ["hello"]
    assert joins_at_dispatch == 0
    assert list(notifier.history) == ["hello", "Connected to Net1"]
