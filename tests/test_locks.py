import asyncio

from vpn_provisioner.utils.locks import KeyedLocks


def test_lock_is_dropped_after_release():
    locks = KeyedLocks()

    async def scenario():
        async with locks.hold(("alice1", "vmess", 1)):
            assert len(locks) == 1
        return len(locks)

    assert asyncio.run(scenario()) == 0


def test_same_key_serializes_and_is_dropped_after_last_waiter():
    locks = KeyedLocks()
    order = []
    seen = []

    async def worker(name):
        async with locks.hold("vpn1"):
            order.append(f"{name}-in")
            seen.append(len(locks))
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    async def scenario():
        await asyncio.gather(worker("a"), worker("b"), worker("c"))
        return len(locks)

    assert asyncio.run(scenario()) == 0
    assert order == ["a-in", "a-out", "b-in", "b-out", "c-in", "c-out"]
    assert seen == [1, 1, 1]


def test_distinct_keys_run_concurrently():
    locks = KeyedLocks()
    active = []
    peak = []

    async def worker(key):
        async with locks.hold(key):
            active.append(key)
            peak.append(len(active))
            await asyncio.sleep(0.01)
            active.remove(key)

    async def scenario():
        await asyncio.gather(worker("vpn1"), worker("vpn2"))

    asyncio.run(scenario())
    assert max(peak) == 2
