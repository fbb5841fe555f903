"""Notification send, read-state and live store."""

from __future__ import annotations

import asyncio

import pytest

from prepmint.core.config import Settings
from prepmint.core.errors import PermissionDeniedError, ValidationError
from prepmint.notifications import NotificationService


def test_send_fetch_and_mark_read(backend) -> None:
    service = NotificationService(backend)

    async def scenario():
        first = await service.send(
            "s1",
            "evaluation",
            "Result ready",
            "Your answer sheet was graded",
            sender={"id": "t1", "name": "Ms T", "role": "teacher"},
            action_url="/results/job-1",
        )
        await service.send("s1", "badge", "Badge earned", "First upload")
        await service.send("s2", "info", "Hello", "Not yours")
        unread_before = await service.unread_count("s1")
        await service.mark_as_read(first)
        unread_after = await service.unread_count("s1")
        stored = await backend.get("notifications", first)
        return unread_before, unread_after, stored

    unread_before, unread_after, stored = asyncio.run(scenario())
    assert (unread_before, unread_after) == (2, 1)
    assert stored.fields["read"] is True
    assert stored.fields["senderName"] == "Ms T"
    assert stored.fields["actionUrl"] == "/results/job-1"


def test_mark_all_as_read_only_touches_owner(backend) -> None:
    service = NotificationService(backend)

    async def scenario():
        for index in range(3):
            await service.send("s1", "reminder", f"R{index}", "Practice today")
        await service.send("s2", "reminder", "Other", "Practice today")
        marked = await service.mark_all_as_read("s1")
        again = await service.mark_all_as_read("s1")
        return marked, again, await service.unread_count("s2")

    assert asyncio.run(scenario()) == (3, 0, 1)


def test_unknown_type_is_rejected(backend) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(NotificationService(backend).send("s1", "spam", "t", "m"))


def test_live_store_receives_new_notifications(backend) -> None:
    service = NotificationService(backend)

    async def scenario():
        await service.send("s1", "info", "Old", "Earlier")
        store = service.store_for("s1", unread_only=True)
        await store.bind()
        await service.send("s1", "announcement", "New", "Just now")
        await service.send("s2", "announcement", "Other", "Not mine")
        titles = sorted(r.fields["title"] for r in store.items)
        store.unbind()
        return titles

    assert asyncio.run(scenario()) == ["New", "Old"]


def test_mark_as_read_checks_the_recipient(backend) -> None:
    service = NotificationService(backend)

    async def scenario():
        notification_id = await service.send("s1", "info", "Hi", "For s1")
        with pytest.raises(PermissionDeniedError):
            await service.mark_as_read(notification_id, user_id="s2")
        untouched = await backend.get("notifications", notification_id)
        await service.mark_as_read(notification_id, user_id="s1")
        return untouched, await backend.get("notifications", notification_id)

    untouched, marked = asyncio.run(scenario())
    assert untouched.fields["read"] is False
    assert marked.fields["read"] is True


def test_realtime_setting_drives_live_stores(backend) -> None:
    service = NotificationService.from_settings(Settings(realtime=False), backend)

    async def scenario():
        store = service.store_for("s1")
        await store.bind()
        await service.send("s1", "info", "Later", "Arrives after bind")
        before = len(store.items)
        await store.refresh()
        after = len(store.items)
        store.unbind()
        return store.realtime, before, after

    assert asyncio.run(scenario()) == (False, 0, 1)
    assert service.store_for("s1", realtime=True).realtime is True
