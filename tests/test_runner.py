import asyncio
import os
import signal

import pytest

from flareroute.reconciler import ReconcileState, Reconciler
from flareroute.runner import LifecycleRunner


async def test_work_that_finishes_is_not_an_interrupt():
    async def work():
        await asyncio.sleep(0)

    assert await LifecycleRunner().run(work()) is False


async def test_errors_propagate():
    async def work():
        raise ValueError("nope")

    with pytest.raises(ValueError):
        await LifecycleRunner().run(work())


async def test_stop_cancels_once_and_lets_cleanup_finish():
    runner = LifecycleRunner()
    started = asyncio.Event()
    cleanups = []

    async def work():
        try:
            started.set()
            await asyncio.Event().wait()
        finally:
            runner.request_stop(signal.SIGINT)  # a second Ctrl-C during cleanup
            await asyncio.sleep(0.01)
            cleanups.append("done")

    run = asyncio.create_task(runner.run(work()))
    await started.wait()
    runner.request_stop(signal.SIGINT)

    assert await run is True
    assert cleanups == ["done"]


async def test_real_signal_stops_the_work():
    runner = LifecycleRunner(signals=(signal.SIGUSR1,))
    started = asyncio.Event()

    async def work():
        started.set()
        await asyncio.Event().wait()

    run = asyncio.create_task(runner.run(work()))
    await started.wait()
    os.kill(os.getpid(), signal.SIGUSR1)

    assert await asyncio.wait_for(run, timeout=2) is True


async def test_interrupted_provisioning_tears_down_once(settings, dns, daemon):
    daemon.run_forever = True
    runner = LifecycleRunner()
    reconciler = Reconciler(settings, dns, daemon, "api.example.com")

    run = asyncio.create_task(runner.run(reconciler.provision(8080)))
    await asyncio.wait_for(daemon.running.wait(), timeout=2)
    runner.request_stop(signal.SIGINT)
    runner.request_stop(signal.SIGTERM)

    assert await run is True
    assert daemon.deletes == ["tunnel_api_example_com"]
    assert daemon.tunnels == {}
    assert dns.records == {}
    assert reconciler.history.count(ReconcileState.TORN_DOWN) == 1


async def test_signal_during_teardown_lets_it_finish(settings, dns, daemon, events):
    daemon.run_exit_code = 1
    dns.delete_lag = 5
    runner = LifecycleRunner()
    reconciler = Reconciler(settings, dns, daemon, "api.example.com")

    async def record_delete_sent():
        while "delete_record api.example.com" not in events:
            await asyncio.sleep(0.001)

    run = asyncio.create_task(runner.run(reconciler.provision(8080)))
    await asyncio.wait_for(record_delete_sent(), timeout=2)
    runner.request_stop(signal.SIGINT)

    assert await asyncio.wait_for(run, timeout=2) is True
    assert daemon.tunnels == {}
    assert dns.records == {}
    assert reconciler.state is ReconcileState.TORN_DOWN
