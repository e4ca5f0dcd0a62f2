import asyncio
import logging

from fastapi import BackgroundTasks

from clinicq.infrastructure.notifications.background_notifier import BackgroundNotifier

from tests.fakes import RecordingNotifier


def test_delivery_waits_for_the_background_run():
    inner = RecordingNotifier()
    tasks = BackgroundTasks()
    notifier = BackgroundNotifier(inner, tasks)

    notifier.notify(7, 1, "status_start", "Consultation Started", "Token 1 is being seen")

    assert inner.sent == []
    asyncio.run(tasks())
    assert inner.types_for(7) == ["status_start"]


def test_failed_delivery_is_logged_not_raised(caplog):
    tasks = BackgroundTasks()
    BackgroundNotifier(RecordingNotifier(fail=True), tasks).notify(7, None, "wallet_refund", "Refund", "done")

    with caplog.at_level(logging.ERROR):
        asyncio.run(tasks())

    assert "wallet_refund" in caplog.text
