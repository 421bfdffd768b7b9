"""
flowdesk: write serialization against real flowctl processes.

The scripted flowctl records wall-clock start and end times per process, so
overlap between two writes to the same workspace is directly observable.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from flowdesk.bridge.resolver import BinaryResolver
from flowdesk.workspace import WorkspaceRegistry

pytestmark = pytest.mark.integration

CallLog = Callable[[], list[dict[str, object]]]


@pytest.mark.asyncio
async def test_writes_run_one_at_a_time_in_submission_order(
    flow_root: Path, calls: CallLog, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_FLOWCTL_DELAY", "0.2")
    registry = WorkspaceRegistry(resolver=BinaryResolver())
    session = await registry.open(flow_root, watch=False)
    bridge = session.bridge

    try:
        results = await asyncio.gather(
            bridge.update_task_status("fn-1.1", "in_progress"),
            bridge.update_task_status("fn-1.2", "done"),
            bridge.set_epic_plan("fn-1", "plan"),
        )
    finally:
        await registry.close_all()

    assert all(result.ok for result in results)
    records = calls()
    assert [record["argv"][:2] for record in records] == [  # type: ignore[index]
        ["start", "fn-1.1"],
        ["done", "fn-1.2"],
        ["epic", "set-plan"],
    ]
    for earlier, later in zip(records, records[1:], strict=False):
        assert float(earlier["end"]) <= float(later["start"])  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_reads_are_not_queued_behind_writes(
    flow_root: Path, calls: CallLog, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_FLOWCTL_DELAY", "1.0")
    registry = WorkspaceRegistry(resolver=BinaryResolver())
    session = await registry.open(flow_root, watch=False)

    try:
        write = asyncio.ensure_future(session.bridge.start_task("fn-1.1"))
        await asyncio.sleep(0.1)
        epics = await session.bridge.list_epics()
        assert not write.done()
        assert (await write).ok
    finally:
        await registry.close_all()

    assert epics is not None and epics.ok
    assert [record["argv"][0] for record in calls()] == ["epics", "start"]  # type: ignore[index]


@pytest.mark.asyncio
async def test_rejected_status_never_reaches_flowctl(flow_root: Path, calls: CallLog) -> None:
    registry = WorkspaceRegistry(resolver=BinaryResolver())
    session = await registry.open(flow_root, watch=False)

    try:
        failed, succeeded = await asyncio.gather(
            session.bridge.update_task_status("fn-1.1", "blocked"),
            session.bridge.start_task("fn-1.1"),
        )
    finally:
        await registry.close_all()

    assert not failed.ok
    assert succeeded.ok
    assert [record["argv"] for record in calls()] == [["start", "fn-1.1"]]
