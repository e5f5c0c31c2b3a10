import asyncio

from debounce import Debouncer

DELAY = 0.05


def test_burst_of_triggers_runs_once_after_last():
    async def scenario():
        loop = asyncio.get_running_loop()
        fired = []

        async def callback():
            fired.append(loop.time())

        debouncer = Debouncer(DELAY, callback)
        for _ in range(5):
            debouncer.trigger()
            last_trigger = loop.time()
            await asyncio.sleep(DELAY / 5)

        assert fired == []
        await asyncio.sleep(DELAY * 3)
        return fired, last_trigger

    fired, last_trigger = asyncio.run(scenario())

    assert len(fired) == 1
    assert fired[0] >= last_trigger + DELAY - 0.005


def test_separate_quiet_windows_run_separately():
    async def scenario():
        calls = []

        async def callback():
            calls.append(1)

        debouncer = Debouncer(DELAY, callback)
        debouncer.trigger()
        await asyncio.sleep(DELAY * 3)
        debouncer.trigger()
        await asyncio.sleep(DELAY * 3)
        return calls

    assert len(asyncio.run(scenario())) == 2


def test_cancel_drops_pending_run():
    async def scenario():
        calls = []

        async def callback():
            calls.append(1)

        debouncer = Debouncer(DELAY, callback)
        debouncer.trigger()
        assert debouncer.pending
        debouncer.cancel()
        assert not debouncer.pending
        await asyncio.sleep(DELAY * 3)
        return calls

    assert asyncio.run(scenario()) == []


def test_failing_callback_does_not_break_later_runs():
    async def scenario():
        calls = []

        async def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first run failed")

        debouncer = Debouncer(DELAY, callback)
        debouncer.trigger()
        await asyncio.sleep(DELAY * 3)
        debouncer.trigger()
        await asyncio.sleep(DELAY * 3)
        await debouncer.wait_idle()
        return calls

    assert len(asyncio.run(scenario())) == 2
