import asyncio

import pytest

from sms_ledger.services.locks import KeyedLock

pytestmark = pytest.mark.anyio


async def test_same_key_is_serialized() -> None:
    locks = KeyedLock()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("key"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


async def test_different_keys_do_not_block() -> None:
    locks = KeyedLock()

    async with locks.hold(1):
        async with locks.hold(2):
            assert len(locks) == 2

    assert len(locks) == 0


async def test_lock_released_on_error() -> None:
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("key"):
            raise RuntimeError("boom")

    assert len(locks) == 0
