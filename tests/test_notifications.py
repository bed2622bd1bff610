import asyncio
import threading

import httpx

from qrlink.config import NotificationSettings
from qrlink.notifications import NotificationSink, WebhookNotifier
from qrlink.state import ControllerEvent, SessionPhase


def test_notify_records_and_fans_out_to_every_subscriber():
    sink = NotificationSink(phase_provider=lambda: SessionPhase.SCANNING)

    async def scenario():
        first, second = sink.register(), sink.register()
        sink.notify("Connected to Net1")
        return first.get_nowait(), second.get_nowait()

    a, b = asyncio.run(scenario())

    assert a is b
    assert a.type == "notification"
    assert a.phase is SessionPhase.SCANNING
    assert a.data == {"message": "Connected to Net1", "audience": "user"}
    assert list(sink.history) == ["Connected to Net1"]


def test_full_subscriber_queue_drops_oldest_event():
    sink = NotificationSink(NotificationSettings(ui_queue_size=2))

    async def scenario():
        queue = sink.register()
        for n in range(3):
            sink.publish(ControllerEvent(type="state", data={"n": n}, phase=SessionPhase.SCANNING))
        return [queue.get_nowait().data["n"] for _ in range(queue.qsize())]

    assert asyncio.run(scenario()) == [1, 2]


def test_unregistered_queue_stops_receiving():
    sink = NotificationSink()

    async def scenario():
        queue = sink.register()
        sink.unregister(queue)
        sink.notify("hello")
        return queue.qsize()

    assert asyncio.run(scenario()) == 0


def test_notify_from_worker_thread_is_posted_on_bound_loop():
    sink = NotificationSink()
    posted_on = []

    async def scenario():
        sink.bind_loop()
        queue = sink.register()
        worker = threading.Thread(target=sink.notify, args=("from worker",))
        worker.start()
        worker.join()
        event = await asyncio.wait_for(queue.get(), timeout=1.0)
        posted_on.append(threading.current_thread() is threading.main_thread())
        return event

    event = asyncio.run(scenario())

    assert event.data["message"] == "from worker"
    assert posted_on == [True]
    assert list(sink.history) == ["from worker"]


def _webhook(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotifier("http://hooks.local/notify", client=client)


def test_webhook_posts_json_message():
    received = []

    def handler(request):
        received.append(request)
        return httpx.Response(200, json={"ok": True})

    webhook = _webhook(handler)

    async def scenario():
        try:
            return await webhook.send("Connected to Net1")
        finally:
            await webhook.aclose()

    assert asyncio.run(scenario()) is True
    assert received[0].method == "POST"
    assert received[0].url == "http://hooks.local/notify"
    assert b'"message":"Connected to Net1"' in received[0].content.replace(b" ", b"")


def test_webhook_error_status_returns_false():
    webhook = _webhook(lambda request: httpx.Response(500, text="boom"))

    async def scenario():
        try:
            return await webhook.send("hello")
        finally:
            await webhook.aclose()

    assert asyncio.run(scenario()) is False


def test_sink_forwards_notifications_to_webhook():
    messages = []

    def handler(request):
        messages.append(request.content)
        return httpx.Response(204)

    sink = NotificationSink(webhook=_webhook(handler))

    async def scenario():
        sink.notify("hello")
        await sink.aclose()

    asyncio.run(scenario())

    assert len(messages) == 1
    assert b"hello" in messages[0]
