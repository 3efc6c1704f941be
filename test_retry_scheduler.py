#!/usr/bin/env python3
"""
Tests for the retry countdown scheduler.

A fake sleep that only yields to the event loop makes countdowns finish
instantly while keeping the real tick ordering.
"""

import asyncio

from datamind.generation import RetryScheduler


async def fast_sleep(_seconds):
    await asyncio.sleep(0)


def test_countdown_ticks_then_expires():
    async def scenario():
        scheduler = RetryScheduler(sleep=fast_sleep)
        ticks = []
        expired = []

        scheduler.arm(3, ticks.append, lambda: expired.append(True))
        assert ticks == [3]
        assert scheduler.active
        assert scheduler.remaining == 3

        await scheduler.wait()
        return scheduler, ticks, expired

    scheduler, ticks, expired = asyncio.run(scenario())

    assert ticks == [3, 2, 1]
    assert expired == [True]
    assert not scheduler.active
    assert scheduler.remaining == 0
    print("✅ Countdown reported 3, 2, 1 then expired once")


def test_cancel_is_idempotent_and_suppresses_expiry():
    async def scenario():
        never = asyncio.Event()

        async def blocked_sleep(_seconds):
            await never.wait()

        scheduler = RetryScheduler(sleep=blocked_sleep)
        expired = []
        scheduler.arm(5, lambda _n: None, lambda: expired.append(True))
        await asyncio.sleep(0)

        scheduler.cancel()
        scheduler.cancel()
        await scheduler.wait()
        return scheduler, expired

    scheduler, expired = asyncio.run(scenario())

    assert expired == []
    assert not scheduler.active
    assert scheduler.remaining == 0


def test_rearm_replaces_running_countdown():
    async def scenario():
        scheduler = RetryScheduler(sleep=fast_sleep)
        first_ticks, first_expired = [], []
        second_ticks, second_expired = [], []

        scheduler.arm(3, first_ticks.append, lambda: first_expired.append(True))
        scheduler.arm(2, second_ticks.append, lambda: second_expired.append(True))
        await scheduler.wait()
        # Give a cancelled first countdown every chance to misbehave
        for _ in range(5):
            await asyncio.sleep(0)
        return first_ticks, first_expired, second_ticks, second_expired

    first_ticks, first_expired, second_ticks, second_expired = asyncio.run(scenario())

    assert first_ticks == [3]
    assert first_expired == []
    assert second_ticks == [2, 1]
    assert second_expired == [True]


def test_zero_delay_expires_immediately():
    async def scenario():
        scheduler = RetryScheduler(sleep=fast_sleep)
        ticks, expired = [], []
        scheduler.arm(0, ticks.append, lambda: expired.append(True))
        return scheduler, ticks, expired

    scheduler, ticks, expired = asyncio.run(scenario())

    assert ticks == []
    assert expired == [True]
    assert not scheduler.active


def test_interval_is_passed_to_sleep():
    async def scenario():
        waits = []

        async def recording_sleep(seconds):
            waits.append(seconds)
            await asyncio.sleep(0)

        scheduler = RetryScheduler(interval=1.0, sleep=recording_sleep)
        scheduler.arm(2, lambda _n: None, lambda: None)
        await scheduler.wait()
        return waits

    assert asyncio.run(scenario()) == [1.0, 1.0]


if __name__ == "__main__":
    test_countdown_ticks_then_expires()
    test_cancel_is_idempotent_and_suppresses_expiry()
    test_rearm_replaces_running_countdown()
    test_zero_delay_expires_immediately()
    test_interval_is_passed_to_sleep()
    print("🎉 All retry scheduler tests passed!")
