import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import (
    OTHER_REPO_ID,
    add_commit,
    add_deployment,
    add_project_repo,
    add_pull_request,
    add_work_item,
    seed_t1_scenario,
)
from cycle_metrics.database.models import TaskDeployment
from cycle_metrics.database.repository import CorrelationRepository
from cycle_metrics.engine import calculate_and_commit, calculate_business_cycle_time
from cycle_metrics.models import TaskOptions
from cycle_metrics.resolver import CorrelationResolver

OPTIONS = TaskOptions(project_name="checkout")


async def _run(session_factory, **kwargs):
    async with session_factory() as session:
        summary = await calculate_business_cycle_time(session, OPTIONS, **kwargs)
        await session.commit()
    return summary


async def _records(session_factory) -> list[TaskDeployment]:
    async with session_factory() as session:
        result = await session.scalars(
            select(TaskDeployment).order_by(TaskDeployment.task_id, TaskDeployment.deployment_id)
        )
        return list(result.all())


def _as_rows(records):
    return [
        {column: getattr(r, column) for column in TaskDeployment.__table__.columns.keys()}
        for r in records
    ]


@pytest.mark.asyncio
async def test_task_deployed_to_production(session, session_factory):
    await seed_t1_scenario(session)

    summary = await _run(session_factory)

    assert summary.candidates == 1
    assert summary.processed == 1
    assert summary.with_deployment == 1

    [record] = await _records(session_factory)
    assert record.task_id == "T1"
    assert record.connection_id == 1
    assert record.deployment_id == "D7"
    assert record.task_created_at == datetime(2024, 1, 1)
    assert record.first_commit_at == datetime(2024, 1, 3)
    assert record.pr_created_at == datetime(2024, 1, 2)
    assert record.pr_merged_at == datetime(2024, 1, 5)
    assert record.deployment_at == datetime(2024, 1, 6)
    assert record.planning_time == 2880
    assert record.code_time == 2880
    assert record.deploy_time == 1440
    assert record.total_cycle_time == 7200


@pytest.mark.asyncio
async def test_merged_but_never_deployed(session, session_factory):
    await seed_t1_scenario(session, with_deployment=False)

    summary = await _run(session_factory)

    assert summary.processed == 1
    assert summary.with_deployment == 0

    [record] = await _records(session_factory)
    assert record.deployment_id == ""
    assert record.deployment_at is None
    assert record.planning_time == 2880
    assert record.code_time == 2880
    assert record.deploy_time is None
    assert record.total_cycle_time is None


@pytest.mark.asyncio
async def test_rerun_is_idempotent(session, session_factory):
    await seed_t1_scenario(session)

    await _run(session_factory)
    first = _as_rows(await _records(session_factory))
    await _run(session_factory)
    second = _as_rows(await _records(session_factory))

    assert first == second
    assert len(second) == 1


@pytest.mark.asyncio
async def test_later_deployment_overwrites_undeployed_record(session, session_factory):
    await seed_t1_scenario(session, with_deployment=False)
    await _run(session_factory)
    [before] = await _records(session_factory)

    add_deployment(
        session, "D7", commit_sha="head777", finished_date=datetime(2024, 1, 6),
        shipped=["abc123"],
    )
    await session.commit()
    summary = await _run(session_factory)

    [after] = await _records(session_factory)
    assert summary.with_deployment == 1
    assert after.deployment_id == "D7"
    assert after.deploy_time == 1440
    assert after.total_cycle_time == 7200
    assert after.planning_time == before.planning_time
    assert after.code_time == before.code_time


@pytest.mark.asyncio
async def test_unmatched_candidates_write_nothing(session, session_factory):
    add_project_repo(session)
    add_work_item(session, "T1", linked_pr_number=42)
    add_pull_request(session, pr_id="pr-42", key=42)
    add_work_item(session, "T2", linked_pr_number=None)
    await session.commit()

    with patch.object(CorrelationResolver, "resolve", AsyncMock(return_value=None)):
        summary = await _run(session_factory)

    # T2 has no linked PR so it is never a candidate
    assert summary.candidates == 1
    assert summary.unmatched == 1
    assert summary.processed == 0
    assert await _records(session_factory) == []


@pytest.mark.asyncio
async def test_only_candidates_in_project_are_selected(session, session_factory):
    add_project_repo(session)
    add_work_item(session, "T1", linked_pr_number=42)
    add_pull_request(session, pr_id="pr-42", key=42)
    add_work_item(session, "OTHER", linked_pr_number=99)
    add_pull_request(session, pr_id="pr-99", key=99, repo_id=OTHER_REPO_ID)
    await session.commit()

    summary = await _run(session_factory)

    assert summary.candidates == 1
    assert [r.task_id for r in await _records(session_factory)] == ["T1"]


@pytest.mark.asyncio
async def test_record_uses_pull_request_from_project_repository(session, session_factory):
    await seed_t1_scenario(session)
    add_pull_request(
        session,
        pr_id="other-42",
        key=42,
        created_date=datetime(2023, 6, 1),
        merged_date=datetime(2023, 6, 2),
        merge_commit_sha="other999",
        repo_id=OTHER_REPO_ID,
    )
    await session.commit()

    await _run(session_factory)

    [record] = await _records(session_factory)
    assert record.pr_created_at == datetime(2024, 1, 2)
    assert record.pr_merged_at == datetime(2024, 1, 5)
    assert record.deployment_id == "D7"

@pytest.mark.asyncio
async def test_no_candidates_is_not_an_error(session_factory):
    summary = await _run(session_factory)

    assert summary.candidates == 0
    assert summary.processed == 0


@pytest.mark.asyncio
async def test_storage_failure_skips_only_that_candidate(session, session_factory):
    add_project_repo(session)
    for task_id, key in (("T1", 41), ("T2", 42), ("T3", 43)):
        add_work_item(session, task_id, linked_pr_number=key)
        add_pull_request(session, pr_id=f"pr-{key}", key=key)
        add_commit(session, f"pr-{key}", f"c{key}", datetime(2024, 1, 3))
    await session.commit()

    original_upsert = CorrelationRepository.upsert

    async def flaky_upsert(self, record):
        if record["task_id"] == "T2":
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        await original_upsert(self, record)

    with patch.object(CorrelationRepository, "upsert", flaky_upsert):
        summary = await _run(session_factory)

    assert summary.candidates == 3
    assert summary.processed == 2
    assert summary.failed == 1
    assert [r.task_id for r in await _records(session_factory)] == ["T1", "T3"]


@pytest.mark.asyncio
async def test_cancel_stops_before_next_candidate(session, session_factory):
    add_project_repo(session)
    for task_id, key in (("T1", 41), ("T2", 42), ("T3", 43)):
        add_work_item(session, task_id, linked_pr_number=key)
        add_pull_request(session, pr_id=f"pr-{key}", key=key)
    await session.commit()

    cancel_event = asyncio.Event()
    progress = []

    def on_progress(increment):
        progress.append(increment)
        cancel_event.set()

    summary = await _run(session_factory, on_progress=on_progress, cancel_event=cancel_event)

    assert summary.cancelled is True
    assert summary.candidates == 1
    assert progress == [1]
    assert len(await _records(session_factory)) == 1


@pytest.mark.asyncio
async def test_progress_reported_per_candidate(session, session_factory):
    add_project_repo(session)
    add_work_item(session, "T1", linked_pr_number=41)
    add_pull_request(session, pr_id="pr-41", key=41)
    add_work_item(session, "T2", linked_pr_number=42)
    add_pull_request(session, pr_id="pr-42", key=42)
    await session.commit()

    progress = []
    summary = await _run(session_factory, on_progress=progress.append)

    assert progress == [1, 1]
    assert summary.processed == 2


@pytest.mark.asyncio
async def test_cursor_failure_is_fatal(session_factory):
    with patch(
        "cycle_metrics.engine.WorkItemRepository.stream_candidates",
        side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
    ):
        with pytest.raises(OperationalError):
            await _run(session_factory)


@pytest.mark.asyncio
async def test_task_cancel_finishes_current_candidate_and_commits(session, session_factory):
    add_project_repo(session)
    for task_id, key in (("T1", 41), ("T2", 42), ("T3", 43)):
        add_work_item(session, task_id, linked_pr_number=key)
        add_pull_request(session, pr_id=f"pr-{key}", key=key)
    await session.commit()

    t2_started = asyncio.Event()
    original_resolve = CorrelationResolver.resolve

    async def slow_resolve(self, work_item):
        if work_item.id == "T2":
            t2_started.set()
            await asyncio.sleep(0.05)
        return await original_resolve(self, work_item)

    async def run_task():
        async with session_factory() as task_session:
            await calculate_and_commit(task_session, OPTIONS)

    with patch.object(CorrelationResolver, "resolve", slow_resolve):
        running = asyncio.create_task(run_task())
        await t2_started.wait()
        running.cancel()

        with pytest.raises(asyncio.CancelledError):
            await running

    # T2 was in flight when the task was cancelled; T3 was never started
    assert [r.task_id for r in await _records(session_factory)] == ["T1", "T2"]


@pytest.mark.asyncio
async def test_calculate_and_commit_returns_summary(session, session_factory):
    await seed_t1_scenario(session)

    async with session_factory() as run_session:
        summary = await calculate_and_commit(run_session, OPTIONS)

    assert summary.with_deployment == 1
    assert [r.deployment_id for r in await _records(session_factory)] == ["D7"]
