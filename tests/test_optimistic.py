"""OptimisticMutationTracker tests — apply, reconcile, roll back.

Learn: The rollback guarantee is checked the strict way: after a failed
server call the item list must EQUAL the list from before the mutation,
order included.
"""

import asyncio
from dataclasses import dataclass, replace

import pytest

from orderpulse.client.optimistic import (
    ItemNotFoundError,
    MutationInProgressError,
    OptimisticMutationTracker,
)


@dataclass
class Row:
    order_id: str
    status: str
    tags: list


class ServerError(Exception):
    pass


def rows():
    return [
        Row("o-1", "pending", ["a"]),
        Row("o-2", "processing", []),
        Row("o-3", "completed", []),
    ]


@pytest.fixture
def tracker(clock):
    return OptimisticMutationTracker(rows(), key=lambda r: r.order_id, clock=clock)


def ok(value=None):
    async def call():
        return value
    return call


def fail():
    async def call():
        raise ServerError("500")
    return call


# ═══════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_success_uses_server_copy(tracker):
    server_row = Row("o-4", "pending", ["from-server"])
    result = await tracker.optimistic_create(Row("o-4", "pending", []), ok(server_row))

    assert result is server_row
    assert tracker.items[-1] is server_row
    assert not tracker.has_pending


@pytest.mark.asyncio
async def test_create_failure_rolls_back(tracker):
    before = tracker.items
    with pytest.raises(ServerError):
        await tracker.optimistic_create(Row("o-4", "pending", []), fail())
    assert tracker.items == before
    assert not tracker.is_optimistic("o-4")


@pytest.mark.asyncio
async def test_create_is_visible_while_in_flight(tracker):
    gate = asyncio.Event()
    new = Row("o-4", "pending", [])

    async def slow():
        await gate.wait()
        return new

    task = asyncio.create_task(tracker.optimistic_create(new, slow))
    await asyncio.sleep(0)

    assert tracker.get("o-4") is new
    assert tracker.is_optimistic("o-4")
    op = tracker.get_operation("o-4")
    assert op.kind == "create"
    assert op.new is new
    assert op.started_at == 1_000.0

    gate.set()
    await task
    assert not tracker.is_optimistic("o-4")


# ═══════════════════════════════════════════════════════════
# Update
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_update_success(tracker):
    edited = replace(tracker.get("o-2"), status="completed")
    confirmed = replace(edited, tags=["confirmed"])

    await tracker.optimistic_update(edited, ok(confirmed))

    assert tracker.items[1] is confirmed


@pytest.mark.asyncio
async def test_update_failure_restores_exact_state(tracker):
    before = rows()
    original = tracker.get("o-1")
    gate = asyncio.Event()

    async def slow():
        await gate.wait()
        raise ServerError("500")

    task = asyncio.create_task(
        tracker.optimistic_update(replace(original, status="cancelled"), slow)
    )
    await asyncio.sleep(0)
    assert tracker.get("o-1").status == "cancelled"
    # The caller keeps editing its own copy; the rollback snapshot is separate
    original.tags.append("mutated")

    gate.set()
    with pytest.raises(ServerError):
        await task
    assert tracker.items == before


@pytest.mark.asyncio
async def test_update_unknown_key(tracker):
    with pytest.raises(ItemNotFoundError):
        await tracker.optimistic_update(Row("nope", "pending", []), ok())
    assert not tracker.has_pending


# ═══════════════════════════════════════════════════════════
# Delete
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_delete_success(tracker):
    await tracker.optimistic_delete("o-2", ok())
    assert [r.order_id for r in tracker.items] == ["o-1", "o-3"]


@pytest.mark.asyncio
async def test_delete_failure_reinserts_at_original_index(tracker):
    before = tracker.items
    with pytest.raises(ServerError):
        await tracker.optimistic_delete("o-2", fail())
    assert tracker.items == before


@pytest.mark.asyncio
async def test_delete_unknown_key(tracker):
    with pytest.raises(ItemNotFoundError):
        await tracker.optimistic_delete("nope", ok())


# ═══════════════════════════════════════════════════════════
# One operation per key
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_second_mutation_on_same_key_is_rejected(tracker):
    gate = asyncio.Event()

    async def slow():
        await gate.wait()
        raise ServerError("late failure")

    before = tracker.items
    first = asyncio.create_task(
        tracker.optimistic_update(replace(tracker.get("o-1"), status="processing"), slow)
    )
    await asyncio.sleep(0)

    with pytest.raises(MutationInProgressError):
        await tracker.optimistic_update(replace(tracker.get("o-1"), status="completed"), ok())
    with pytest.raises(MutationInProgressError):
        await tracker.optimistic_delete("o-1", ok())

    gate.set()
    with pytest.raises(ServerError):
        await first
    assert tracker.items == before


@pytest.mark.asyncio
async def test_other_keys_are_independent(tracker):
    gate = asyncio.Event()

    async def slow():
        await gate.wait()

    first = asyncio.create_task(tracker.optimistic_delete("o-1", slow))
    await asyncio.sleep(0)

    await tracker.optimistic_delete("o-3", ok())
    gate.set()
    await first

    assert [r.order_id for r in tracker.items] == ["o-2"]


@pytest.mark.asyncio
async def test_cancelled_call_rolls_back(tracker):
    before = tracker.items

    async def hang():
        await asyncio.Event().wait()

    task = asyncio.create_task(tracker.optimistic_delete("o-1", hang))
    await asyncio.sleep(0)
    assert len(tracker.items) == 2

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert tracker.items == before
    assert not tracker.has_pending
