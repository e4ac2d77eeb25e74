import asyncio
import threading

from heartsense.background import drain, run_sync, spawn


async def test_failed_task_reports_to_callback():
    seen = []

    async def boom():
        raise RuntimeError("push relay exploded")

    spawn(boom(), name="push:alert:1", on_error=seen.append)
    await drain(timeout=1)
    await asyncio.sleep(0)

    assert len(seen) == 1
    assert str(seen[0]) == "push relay exploded"


async def test_drain_cancels_stragglers():
    task = spawn(asyncio.sleep(10), name="slow")
    assert await drain(timeout=0.01) == 1
    await asyncio.sleep(0)
    assert task.cancelled()
    assert await drain(timeout=0.01) == 0


async def test_run_sync_uses_a_worker_thread():
    main = threading.get_ident()
    worker = await run_sync(threading.get_ident)
    assert worker != main
    assert await run_sync(lambda a, b=0: a + b, 2, b=3) == 5
