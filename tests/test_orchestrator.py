import asyncio
import logging

import pytest

from common.errors import CoordinationError, NoAgentsAvailableError, SuiteNotFoundError
from coordinator.coordinator import AgentCoordinator
from coordinator.models import KnowledgeType, TaskStatus
from orchestrator.history import ExecutionHistory
from orchestrator.models import TestDefinition, TestStatus, TestSuite
from orchestrator.orchestrator import SUITE_CANCELLED, TEST_TASK_TYPE, TestOrchestrator

# 로깅 설정
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def make_suite(count=3, **kwargs):
    tests = kwargs.pop("tests", None) or [
        TestDefinition(name=f"test-{i}", url=f"https://example.com/{i}") for i in range(count)
    ]
    return TestSuite(name="checkout flow", tests=tests, **kwargs)


async def test_parallel_suite_respects_max_concurrency(orchestrator, live_coordinator, agents, make_workers):
    """병렬 스위트는 max_concurrency 이상 동시에 in-progress 가 되지 않는다"""
    agents(live_coordinator, 5)
    workers = make_workers(duration=0.05)
    suite_id = orchestrator.register_suite(make_suite(5, parallel=True, max_concurrency=2))

    results = await orchestrator.execute_suite(suite_id)

    assert results.total_tests == 5
    assert results.passed == 5
    assert results.pass_rate == pytest.approx(100.0)
    assert 1 <= workers.max_running <= 2
    assert orchestrator.get_plan(suite_id).parallelism == 2
    assert not orchestrator.is_active(suite_id)


async def test_failed_test_is_retried_with_higher_priority(
    orchestrator, live_coordinator, agents, make_workers, suite_tasks,
):
    """실패한 테스트는 max_retries 만큼 우선순위를 높여 다시 제출된다"""
    agents(live_coordinator, 2)
    make_workers(behavior=lambda task: "element not found")
    retrying = []
    orchestrator.events.on("test:retrying", lambda test_id, count: retrying.append(count))
    suite_id = orchestrator.register_suite(make_suite(1))

    results = await orchestrator.execute_suite(suite_id)

    assert results.failed == 1
    result = results.results[0]
    assert result.status == TestStatus.FAILED
    assert result.error == "element not found"
    assert result.retries == 2

    tasks = suite_tasks(live_coordinator)
    assert len(tasks) == 3
    assert [t.priority for t in tasks] == [5, 6, 7]
    assert [t.payload["retry_count"] for t in tasks] == [0, 1, 2]
    assert all(t.status == TaskStatus.FAILED for t in tasks)
    assert retrying == [1, 2]


async def test_unsuccessful_result_counts_as_failure(
    orchestrator, live_coordinator, agents, make_workers, suite_tasks,
):
    agents(live_coordinator, 1)
    make_workers(behavior=lambda task: {"success": False, "error": "assertion failed", "duration": 0.3})
    suite_id = orchestrator.register_suite(make_suite(1, retry_count=1))

    results = await orchestrator.execute_suite(suite_id)

    assert results.failed == 1
    assert results.results[0].error == "assertion failed"
    assert results.results[0].duration == pytest.approx(0.3)
    assert len(suite_tasks(live_coordinator)) == 2


async def test_flaky_test_passes_on_retry(orchestrator, live_coordinator, agents, make_workers):
    agents(live_coordinator, 1)
    make_workers(behavior=lambda task: "flaky" if task.payload["retry_count"] == 0 else {"success": True})

    results = await orchestrator.execute_suite(orchestrator.register_suite(make_suite(1)))

    assert results.passed == 1
    assert results.results[0].retries == 1


async def test_no_retry_when_disabled(orchestrator, live_coordinator, agents, make_workers, suite_tasks):
    agents(live_coordinator, 1)
    make_workers(behavior=lambda task: "boom")

    results = await orchestrator.execute_suite(orchestrator.register_suite(make_suite(1, retry_on_failure=False)))

    assert results.failed == 1
    assert results.results[0].retries == 0
    assert len(suite_tasks(live_coordinator)) == 1


async def test_timeout_fails_without_retry(orchestrator, live_coordinator, agents, make_workers, suite_tasks):
    """응답 없는 테스트는 대기 시간 초과로 실패하고 재시도하지 않는다"""
    agents(live_coordinator, 1)
    make_workers(behavior=lambda task: None)
    suite = make_suite(tests=[TestDefinition(name="hangs", timeout=0.1)])

    results = await orchestrator.execute_suite(orchestrator.register_suite(suite))

    assert results.failed == 1
    assert results.results[0].error == "Test timed out after 0.1s"
    assert results.results[0].agent_id == "agent-0"

    tasks = suite_tasks(live_coordinator)
    assert len(tasks) == 1
    assert tasks[0].status == TaskStatus.FAILED
    assert tasks[0].error == "Test timed out after 0.1s"


async def test_sequential_suite_runs_dependencies_first(orchestrator, live_coordinator, agents, make_workers):
    agents(live_coordinator, 3)
    workers = make_workers()
    suite = make_suite(tests=[
        TestDefinition(name="checkout", depends_on=["login"]),
        TestDefinition(name="search"),
        TestDefinition(name="login"),
    ], parallel=False)
    suite_id = orchestrator.register_suite(suite)

    results = await orchestrator.execute_suite(suite_id)

    assert results.passed == 3
    assert [test_id for _, test_id in workers.started] == [
        f"{suite_id}-test-2", f"{suite_id}-test-0", f"{suite_id}-test-1",
    ]
    assert workers.max_running == 1
    # 결과는 스위트 정의 순서
    assert [r.test_name for r in results.results] == ["checkout", "search", "login"]


async def test_failed_dependency_skips_dependents(
    orchestrator, live_coordinator, agents, make_workers, suite_tasks,
):
    agents(live_coordinator, 3)
    make_workers(behavior=lambda task: "login failed" if task.payload["test"]["name"] == "login" else {"success": True})
    suite = make_suite(tests=[
        TestDefinition(name="login"),
        TestDefinition(name="checkout", depends_on=["login"]),
        TestDefinition(name="search"),
    ], retry_count=0)

    results = await orchestrator.execute_suite(orchestrator.register_suite(suite))

    assert (results.passed, results.failed, results.skipped) == (1, 1, 1)
    skipped = next(r for r in results.results if r.test_name == "checkout")
    assert skipped.status == TestStatus.SKIPPED
    assert "login" in skipped.error
    assert len(suite_tasks(live_coordinator)) == 2
    assert results.pass_rate == pytest.approx(100 / 3)


async def test_successful_steps_are_shared_as_knowledge(orchestrator, live_coordinator, agents, make_workers):
    agents(live_coordinator, 1)
    make_workers(behavior=lambda task: {"success": True, "duration": 0.5, "steps": ["open", "click #buy"]})

    await orchestrator.execute_suite(orchestrator.register_suite(make_suite(1)))

    knowledge = live_coordinator.query_knowledge(KnowledgeType.PATTERN, contributed_by="orchestrator")
    assert len(knowledge) == 1
    assert knowledge[0].content == {"test_name": "test-0", "steps": ["open", "click #buy"]}
    assert knowledge[0].confidence == pytest.approx(0.8)


async def test_history_and_metrics(orchestrator, live_coordinator, agents, make_workers):
    agents(live_coordinator, 2)
    make_workers()
    completed = []
    orchestrator.events.on("suite:completed", completed.append)

    await orchestrator.execute_suite(orchestrator.register_suite(make_suite(2)))

    assert len(completed) == 1
    records = orchestrator.history.get_recent_executions()
    assert len(records) == 2
    assert all(r.status == TestStatus.PASSED for r in records)

    metrics = orchestrator.get_metrics()
    assert metrics.total_suites == 1
    assert metrics.active_suites == 0
    assert metrics.total_tests == 2
    assert metrics.tests_completed == 2
    assert metrics.tests_failed == 0
    assert metrics.tests_running == 0
    assert metrics.coordinator.completed_tasks == 2
    assert 0.0 <= metrics.resource_utilization.memory <= 100.0


async def test_execute_suite_errors(orchestrator, live_coordinator, agents):
    with pytest.raises(SuiteNotFoundError):
        await orchestrator.execute_suite("suite-missing")

    suite_id = orchestrator.register_suite(make_suite(1))
    with pytest.raises(NoAgentsAvailableError):
        await orchestrator.execute_suite(suite_id)

    agents(live_coordinator, 1)
    running = asyncio.create_task(orchestrator.execute_suite(suite_id))
    await asyncio.sleep(0.05)
    with pytest.raises(CoordinationError):
        await orchestrator.execute_suite(suite_id)

    assert orchestrator.cancel_suite(suite_id) is True
    results = await running
    assert results.failed == 1
    assert orchestrator.cancel_suite(suite_id) is False


async def test_cancel_suite_fails_pending_and_keeps_completed():
    """취소 시 대기 중인 테스트만 'Suite cancelled' 로 실패하고 완료된 결과는 유지"""
    coordinator = AgentCoordinator()
    orchestrator = TestOrchestrator(coordinator, history=ExecutionHistory())
    try:
        coordinator.register_agent("A", [{"type": "navigation", "proficiency": 0.8}])
        coordinator.register_agent("B", [{"type": "navigation", "proficiency": 0.8}])
        suite_id = orchestrator.register_suite(make_suite(5, max_concurrency=5))

        running = asyncio.create_task(orchestrator.execute_suite(suite_id))
        for _ in range(100):
            if len(coordinator.get_tasks()) == 5:
                break
            await asyncio.sleep(0.01)

        assert coordinator.distribute_tasks() == 2
        for task in coordinator.get_tasks(status=TaskStatus.ASSIGNED):
            coordinator.complete_task(task.id, {"success": True, "duration": 1.0}, agent_id=task.assigned_to)
        for _ in range(100):
            partial = orchestrator.get_suite_results(suite_id)
            if partial.passed == 2:
                break
            await asyncio.sleep(0.01)
        assert partial.passed == 2

        assert orchestrator.cancel_suite(suite_id) is True
        results = await running

        assert (results.passed, results.failed, results.skipped) == (2, 3, 0)
        failed = [r for r in results.results if r.status == TestStatus.FAILED]
        assert all(r.error == SUITE_CANCELLED for r in failed)
        passed = [r for r in results.results if r.status == TestStatus.PASSED]
        assert all(r.duration == pytest.approx(1.0) for r in passed)

        tasks = coordinator.get_tasks()
        assert sum(1 for t in tasks if t.status == TaskStatus.COMPLETED) == 2
        cancelled = [t for t in tasks if t.status == TaskStatus.FAILED]
        assert len(cancelled) == 3
        assert all(t.error == SUITE_CANCELLED for t in cancelled)
        assert all(t.type == TEST_TASK_TYPE for t in tasks)
    finally:
        orchestrator.cleanup()
        coordinator.cleanup()


async def test_task_payload_envelope(orchestrator, live_coordinator, agents, make_workers, suite_tasks):
    agents(live_coordinator, 1)
    make_workers()
    suite = make_suite(1, priority=9)
    suite_id = orchestrator.register_suite(suite)

    await orchestrator.execute_suite(suite_id)

    task = suite_tasks(live_coordinator)[0]
    assert task.priority == 9
    assert task.payload["suite_id"] == suite_id
    assert task.payload["test_id"] == f"{suite_id}-test-0"
    assert task.payload["test"]["url"] == "https://example.com/0"
    assert task.payload["options"]["browser_type"] == "chromium"
    assert task.payload["planned_agent"] == "agent-0"


async def test_cancelled_suite_stays_blocked_until_run_finishes(orchestrator, live_coordinator, agents):
    """취소된 스위트는 실행 코루틴이 끝나기 전까지 다시 실행할 수 없다"""
    agents(live_coordinator, 1)
    suite_id = orchestrator.register_suite(make_suite(1))

    running = asyncio.create_task(orchestrator.execute_suite(suite_id))
    await asyncio.sleep(0.05)
    assert orchestrator.cancel_suite(suite_id) is True
    assert orchestrator.is_active(suite_id) is False

    with pytest.raises(CoordinationError):
        await orchestrator.execute_suite(suite_id)

    first = await running
    assert first.failed == 1
    assert orchestrator.get_suite_results(suite_id).results[0].error == SUITE_CANCELLED

    # 첫 실행이 끝난 뒤에는 다시 실행할 수 있다
    rerun = asyncio.create_task(orchestrator.execute_suite(suite_id))
    await asyncio.sleep(0.05)
    assert orchestrator.is_active(suite_id) is True
    assert orchestrator.cancel_suite(suite_id) is True
    assert (await rerun).failed == 1


async def test_duration_without_start_report_excludes_queue_time(clock):
    """시작 보고 없이 완료된 테스트의 소요 시간은 배정 시각부터 계산한다"""
    coordinator = AgentCoordinator(clock=clock)
    orchestrator = TestOrchestrator(coordinator, history=ExecutionHistory(), clock=clock)
    try:
        coordinator.register_agent("A", [{"type": "navigation", "proficiency": 0.8}])
        suite_id = orchestrator.register_suite(make_suite(1))

        running = asyncio.create_task(orchestrator.execute_suite(suite_id))
        for _ in range(100):
            if coordinator.get_tasks():
                break
            await asyncio.sleep(0.01)
        task = coordinator.get_tasks()[0]

        clock.advance(2)
        assert coordinator.distribute_tasks() == 1
        clock.advance(3)
        assert coordinator.complete_task(task.id, {"success": True}, agent_id="A") is True

        results = await running
        assert results.passed == 1
        assert results.results[0].duration == pytest.approx(3.0)
    finally:
        orchestrator.cleanup()
        coordinator.cleanup()
