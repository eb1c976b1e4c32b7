import asyncio

from trialscribe.pipeline.mutations import STAGE_EXTRACT, STAGE_FORMAT, MutationRegistry


def test_concurrent_calls_for_same_key_share_one_execution() -> None:
    registry = MutationRegistry()
    calls: list[str] = []

    async def work() -> str:
        calls.append("run")
        await asyncio.sleep(0.01)
        return "done"

    async def scenario():
        first = registry.run(STAGE_FORMAT, "p001", work)
        second = registry.run(STAGE_FORMAT, "p001", work)
        other_patient = registry.run(STAGE_FORMAT, "p002", work)
        return await asyncio.gather(first, second, other_patient)

    assert asyncio.run(scenario()) == ["done", "done", "done"]
    assert calls == ["run", "run"]
    assert not registry.is_in_flight(STAGE_FORMAT, "p001")


def test_in_flight_stages_are_visible_while_running() -> None:
    registry = MutationRegistry()
    seen: list[list[str]] = []

    async def scenario() -> None:
        gate = asyncio.Event()

        async def work() -> None:
            await gate.wait()

        task = asyncio.ensure_future(registry.run(STAGE_EXTRACT, "p001", work))
        await asyncio.sleep(0)
        seen.append(registry.in_flight_stages("p001"))
        gate.set()
        await task

    asyncio.run(scenario())
    assert seen == [[STAGE_EXTRACT]]
    assert registry.in_flight_stages("p001") == []


def test_generation_is_per_patient() -> None:
    registry = MutationRegistry()
    assert registry.generation("p001") == 0
    assert registry.bump_generation("p001") == 1
    assert registry.generation("p001") == 1
    assert registry.generation("p002") == 0


def test_calls_after_a_generation_bump_do_not_join_earlier_ones() -> None:
    registry = MutationRegistry()
    calls: list[str] = []

    async def scenario() -> list[str]:
        gate = asyncio.Event()

        async def work(label: str) -> str:
            calls.append(label)
            await gate.wait()
            return label

        old = asyncio.ensure_future(registry.run(STAGE_FORMAT, "p001", lambda: work("old")))
        await asyncio.sleep(0)
        registry.bump_generation("p001")
        assert registry.in_flight_stages("p001") == []
        new = asyncio.ensure_future(registry.run(STAGE_FORMAT, "p001", lambda: work("new")))
        await asyncio.sleep(0)
        assert registry.is_in_flight(STAGE_FORMAT, "p001")
        gate.set()
        return list(await asyncio.gather(old, new))

    assert asyncio.run(scenario()) == ["old", "new"]
    assert calls == ["old", "new"]


def test_calls_with_different_arguments_run_separately() -> None:
    registry = MutationRegistry()
    calls: list[int] = []

    async def work(size: int) -> int:
        calls.append(size)
        await asyncio.sleep(0.01)
        return size

    async def scenario():
        return await asyncio.gather(
            registry.run(STAGE_FORMAT, "p001", lambda: work(5), args=5),
            registry.run(STAGE_FORMAT, "p001", lambda: work(10), args=10),
        )

    assert asyncio.run(scenario()) == [5, 10]
    assert sorted(calls) == [5, 10]
