"""
테스트 오케스트레이터

테스트 스위트를 코디네이터 태스크로 분해해 병렬/순차로 실행하고, 재시도와
결과 집계, 실행 이력 기록, 성공 패턴 공유를 담당한다.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

import psutil
from pydantic import ValidationError

from common.errors import CoordinationError, NoAgentsAvailableError, SuiteNotFoundError
from common.events import EventEmitter
from common.metrics import MetricsCollector
from coordinator.coordinator import AgentCoordinator
from coordinator.models import AgentStatus, AgentTask, KnowledgeType, TaskStatus

from .aggregator import aggregate_results
from .history import ExecutionHistory, ExecutionRecord
from .models import (
    AggregatedResults,
    ExecutionOptions,
    ExecutionResult,
    OrchestrationConfig,
    OrchestratorMetrics,
    PlannedTest,
    ResourceUtilization,
    TestDefinition,
    TestExecutionPlan,
    TestResult,
    TestStatus,
    TestSuite,
)
from .planner import build_plan, execution_order, validate_suite

logger = logging.getLogger(__name__)

TEST_TASK_TYPE = "test-execution"
SUITE_CANCELLED = "Suite cancelled"
KNOWLEDGE_CONTRIBUTOR = "orchestrator"
PATTERN_CONFIDENCE = 0.8


@dataclass
class _SuiteRun:
    """실행 중인 스위트 상태"""
    suite: TestSuite
    plan: TestExecutionPlan
    options: ExecutionOptions
    start_time: float
    end_time: Optional[float] = None
    outcomes: Dict[str, TestResult] = field(default_factory=dict)
    task_ids: Dict[str, str] = field(default_factory=dict)  # 테스트 ID -> 현재 코디네이터 태스크 ID
    steps: Dict[str, List[Any]] = field(default_factory=dict)
    done: Dict[str, asyncio.Event] = field(default_factory=dict)
    cancelled: bool = False


class TestOrchestrator:
    """테스트 스위트 실행 관리자"""

    __test__ = False

    def __init__(
        self,
        coordinator: AgentCoordinator,
        config: Optional[OrchestrationConfig] = None,
        history: Optional[ExecutionHistory] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        오케스트레이터 초기화

        Args:
            coordinator: 태스크를 실행할 에이전트 코디네이터
            config: 오케스트레이터 설정
            history: 실행 이력 저장소 (기본값: 메모리)
            clock: 현재 시각 함수
        """
        self.coordinator = coordinator
        self.config = config or OrchestrationConfig()
        self.history = history or ExecutionHistory()
        self.clock = clock
        self.events = EventEmitter()

        self._suites: Dict[str, TestSuite] = {}
        self._runs: Dict[str, _SuiteRun] = {}
        self._active: Set[str] = set()
        self._draining: Set[str] = set()  # 취소되었지만 실행 코루틴이 아직 끝나지 않은 스위트
        self._lock = threading.RLock()
        self._tests_running = 0
        self._tests_completed = 0
        self._tests_failed = 0

    # ------------------------------------------------------------------
    # 스위트 관리
    # ------------------------------------------------------------------
    def register_suite(self, suite: TestSuite) -> str:
        """
        스위트 등록 (실행하지 않음)

        Raises:
            InvalidSuiteError: 스위트 정의가 잘못된 경우
        """
        validate_suite(suite)
        with self._lock:
            self._suites[suite.id] = suite.model_copy(deep=True)
        logger.info(f"테스트 스위트 등록: {suite.id} ({suite.name}, 테스트 {len(suite.tests)}개)")
        self.events.emit("suite:registered", suite.id)
        return suite.id

    def get_suite(self, suite_id: str) -> Optional[TestSuite]:
        with self._lock:
            suite = self._suites.get(suite_id)
            return suite.model_copy(deep=True) if suite else None

    def get_plan(self, suite_id: str) -> Optional[TestExecutionPlan]:
        with self._lock:
            run = self._runs.get(suite_id)
            return run.plan if run else None

    def is_active(self, suite_id: str) -> bool:
        with self._lock:
            return suite_id in self._active

    async def execute_suite(self, suite_id: str, options: Optional[ExecutionOptions] = None) -> AggregatedResults:
        """
        스위트 실행

        Args:
            suite_id: 등록된 스위트 ID
            options: 외부 테스트 실행기에 전달할 실행 옵션

        Returns:
            AggregatedResults: 모든 테스트 결과가 나온 뒤의 집계

        Raises:
            SuiteNotFoundError: 등록되지 않은 스위트
            NoAgentsAvailableError: offline 이 아닌 에이전트가 없음
        """
        with self._lock:
            suite = self._suites.get(suite_id)
            if suite is None:
                raise SuiteNotFoundError(suite_id)
            if suite_id in self._active or suite_id in self._draining:
                raise CoordinationError(f"이미 실행 중인 스위트입니다: {suite_id}")

        agents = [a for a in self.coordinator.get_agents() if a.status != AgentStatus.OFFLINE]
        if not agents:
            raise NoAgentsAvailableError(suite_id)

        average_duration = self.history.get_stats().average_duration or self.config.default_test_duration
        plan = build_plan(suite, agents, self.config, average_duration)
        run = _SuiteRun(
            suite=suite,
            plan=plan,
            options=options or ExecutionOptions(),
            start_time=self.clock(),
            done={planned.test_id: asyncio.Event() for planned in plan.tests},
        )

        with self._lock:
            if suite_id in self._active or suite_id in self._draining:
                raise CoordinationError(f"이미 실행 중인 스위트입니다: {suite_id}")
            self._runs[suite_id] = run
            self._active.add(suite_id)

        logger.info(f"테스트 스위트 실행 시작: {suite_id} ({'병렬' if suite.parallel else '순차'})")
        self.events.emit("suite:started", suite_id, plan)

        slots = asyncio.Semaphore(plan.parallelism)
        try:
            if suite.parallel:
                await asyncio.gather(*(
                    self._run_test(run, suite.tests[i], plan.tests[i], slots)
                    for i in range(len(suite.tests))
                ))
            else:
                for i in execution_order(suite):
                    await self._run_test(run, suite.tests[i], plan.tests[i], slots)
        finally:
            with self._lock:
                run.end_time = self.clock()
                self._active.discard(suite_id)
                self._draining.discard(suite_id)
                outcomes = dict(run.outcomes)

        results = aggregate_results(suite, outcomes, run.start_time, run.end_time, self.history)
        self._learn_from_execution(run, outcomes)

        MetricsCollector.record_suite_duration(results.duration)
        logger.info(
            f"테스트 스위트 실행 완료: {suite_id} "
            f"(통과 {results.passed}, 실패 {results.failed}, 건너뜀 {results.skipped}, "
            f"통과율 {results.pass_rate:.1f}%)"
        )
        self.events.emit("suite:completed", results)
        return results

    def get_suite_results(self, suite_id: str) -> Optional[AggregatedResults]:
        """현재까지의 결과로 부분 집계 (실행 이력이 없으면 None)"""
        with self._lock:
            run = self._runs.get(suite_id)
            if run is None:
                return None
            outcomes = dict(run.outcomes)
            end_time = run.end_time if run.end_time is not None else self.clock()
        return aggregate_results(run.suite, outcomes, run.start_time, end_time, self.history)

    def cancel_suite(self, suite_id: str) -> bool:
        """
        실행 중인 스위트 취소

        진행/대기 중인 코디네이터 태스크는 "Suite cancelled" 로 실패 처리하고,
        아직 제출되지 않은 테스트도 같은 사유의 실패로 기록한다.
        이미 결과가 나온 테스트는 건드리지 않는다.

        Returns:
            실행 중이 아니면 False
        """
        with self._lock:
            if suite_id not in self._active:
                return False
            run = self._runs[suite_id]
            run.cancelled = True
            self._active.discard(suite_id)
            self._draining.add(suite_id)
            submitted = {
                test_id: task_id for test_id, task_id in run.task_ids.items()
                if test_id not in run.outcomes
            }
            unsubmitted = [
                planned for planned in run.plan.tests
                if planned.test_id not in run.outcomes and planned.test_id not in submitted
            ]

        for task_id in submitted.values():
            self.coordinator.fail_task(task_id, SUITE_CANCELLED)

        for planned in unsubmitted:
            self._record_outcome(run, TestResult(
                test_id=planned.test_id,
                test_name=planned.test_name,
                status=TestStatus.FAILED,
                error=SUITE_CANCELLED,
            ))
            run.done[planned.test_id].set()

        logger.warning(
            f"테스트 스위트 취소: {suite_id} "
            f"(진행 중 {len(submitted)}개, 미제출 {len(unsubmitted)}개 실패 처리)"
        )
        self.events.emit("suite:cancelled", suite_id)
        return True

    # ------------------------------------------------------------------
    # 테스트 실행
    # ------------------------------------------------------------------
    async def _run_test(
        self,
        run: _SuiteRun,
        test: TestDefinition,
        planned: PlannedTest,
        slots: asyncio.Semaphore,
    ) -> None:
        try:
            for dep_id in planned.dependencies:
                await run.done[dep_id].wait()
                dep_result = run.outcomes.get(dep_id)
                if dep_result is None or dep_result.status != TestStatus.PASSED:
                    self._record_outcome(run, TestResult(
                        test_id=planned.test_id,
                        test_name=test.name,
                        status=TestStatus.SKIPPED,
                        error=f"Dependency {dep_result.test_name if dep_result else dep_id} did not pass",
                    ))
                    return

            async with slots:
                if run.cancelled:
                    return
                result = await self._execute_with_retry(run, test, planned)
            self._record_outcome(run, result)
        finally:
            run.done[planned.test_id].set()

    async def _execute_with_retry(self, run: _SuiteRun, test: TestDefinition, planned: PlannedTest) -> TestResult:
        """
        코디네이터 태스크 생성 후 완료를 기다리고, 실패하면 정책에 따라 재시도한다.

        재시도는 같은 실행 슬롯 안에서 우선순위 +1, 재시도 횟수 +1 로 새 태스크를 만든다.
        대기 시간 초과는 재시도하지 않는다.
        """
        suite = run.suite
        max_retries = suite.retry_count if suite.retry_count is not None else self.config.max_retries
        can_retry = self.config.retry_failed_tests and suite.retry_on_failure
        timeout = test.timeout or suite.timeout or self.config.default_timeout
        priority = planned.priority
        retry_count = 0

        while True:
            dependencies = [run.task_ids[d] for d in planned.dependencies if d in run.task_ids]
            task_id = self.coordinator.create_task(
                TEST_TASK_TYPE,
                payload={
                    "test": test.model_dump(mode="json"),
                    "suite_id": suite.id,
                    "test_id": planned.test_id,
                    "options": run.options.model_dump(mode="json"),
                    "retry_count": retry_count,
                    "planned_agent": planned.agent_id,
                },
                priority=priority,
                dependencies=dependencies,
                required_capabilities=test.required_capabilities,
            )

            with self._lock:
                cancelled = run.cancelled
                if not cancelled:
                    run.task_ids[planned.test_id] = task_id
                    self._tests_running += 1
            if cancelled:
                self.coordinator.fail_task(task_id, SUITE_CANCELLED)
                return self._failed(planned, SUITE_CANCELLED, retry_count)

            try:
                task = await self.coordinator.wait_for_task(task_id, timeout)
            except asyncio.TimeoutError:
                error = f"Test timed out after {timeout}s"
                self.coordinator.fail_task(task_id, error)
                logger.warning(f"테스트 대기 시간 초과: {planned.test_id} ({timeout}초)")
                return self._failed(planned, error, retry_count, agent_id=self._assignee(task_id))
            finally:
                with self._lock:
                    self._tests_running -= 1

            if task is None:
                return self._failed(planned, f"Task {task_id} not found", retry_count)

            if task.status == TaskStatus.COMPLETED:
                result = self._parse_result(task.result)
                if result.success:
                    run.steps[planned.test_id] = list(result.steps)
                    return TestResult(
                        test_id=planned.test_id,
                        test_name=test.name,
                        agent_id=task.assigned_to,
                        status=TestStatus.PASSED,
                        duration=result.duration or self._task_duration(task),
                        screenshots=result.screenshots,
                        video_path=result.video_path,
                        retries=retry_count,
                    )
                error = result.error or "Test failed"
                duration = result.duration or self._task_duration(task)
                screenshots = result.screenshots
            else:
                error = task.error or "Task failed"
                duration = self._task_duration(task)
                screenshots = []

            if run.cancelled or not can_retry or retry_count >= max_retries:
                return self._failed(
                    planned, error, retry_count,
                    agent_id=task.assigned_to, duration=duration, screenshots=screenshots,
                )

            retry_count += 1
            priority += 1
            logger.info(f"테스트 재시도: {planned.test_id} ({retry_count}/{max_retries}, 사유: {error})")
            self.events.emit("test:retrying", planned.test_id, retry_count)

    def _record_outcome(self, run: _SuiteRun, result: TestResult) -> bool:
        """테스트 결과 기록 (이미 결과가 있으면 무시)"""
        with self._lock:
            if result.test_id in run.outcomes:
                return False
            run.outcomes[result.test_id] = result
            if result.status == TestStatus.PASSED:
                self._tests_completed += 1
            elif result.status == TestStatus.FAILED:
                self._tests_failed += 1

        MetricsCollector.record_test(result.status.value)
        if result.status != TestStatus.SKIPPED:
            self.history.record(ExecutionRecord(
                suite_id=run.suite.id,
                test_name=result.test_name,
                status=result.status,
                duration=result.duration,
                agent_id=result.agent_id,
                error=result.error,
                timestamp=self.clock(),
            ))
        self.events.emit(f"test:{result.status.value}", result)
        return True

    def _learn_from_execution(self, run: _SuiteRun, outcomes: Dict[str, TestResult]) -> None:
        """성공한 테스트의 단계 시퀀스를 패턴 지식으로 공유"""
        for test_id, result in outcomes.items():
            steps = run.steps.get(test_id)
            if result.status != TestStatus.PASSED or not steps:
                continue
            self.coordinator.share_knowledge(
                KnowledgeType.PATTERN,
                contributed_by=KNOWLEDGE_CONTRIBUTOR,
                content={"test_name": result.test_name, "steps": steps},
                confidence=PATTERN_CONFIDENCE,
            )

    @staticmethod
    def _failed(
        planned: PlannedTest,
        error: str,
        retries: int,
        agent_id: Optional[str] = None,
        duration: float = 0.0,
        screenshots: Optional[List[str]] = None,
    ) -> TestResult:
        return TestResult(
            test_id=planned.test_id,
            test_name=planned.test_name,
            agent_id=agent_id,
            status=TestStatus.FAILED,
            duration=duration,
            error=error,
            screenshots=screenshots or [],
            retries=retries,
        )

    @staticmethod
    def _parse_result(value: Any) -> ExecutionResult:
        """워커 보고 결과를 ExecutionResult 로 변환 (success 필드가 없으면 성공으로 간주)"""
        if isinstance(value, ExecutionResult):
            return value
        if isinstance(value, dict) and "success" in value:
            try:
                return ExecutionResult.model_validate(value)
            except ValidationError as e:
                logger.warning(f"잘못된 테스트 결과 형식: {str(e)}")
                return ExecutionResult(success=False, error="Invalid execution result")
        return ExecutionResult(success=True)

    @staticmethod
    def _task_duration(task: AgentTask) -> float:
        return task.duration or 0.0

    def _assignee(self, task_id: str) -> Optional[str]:
        task = self.coordinator.get_task(task_id)
        return task.assigned_to if task else None

    # ------------------------------------------------------------------
    # 지표
    # ------------------------------------------------------------------
    def get_metrics(self) -> OrchestratorMetrics:
        coordinator_metrics = self.coordinator.get_metrics()
        history_stats = self.history.get_stats()

        with self._lock:
            total_suites = len(self._suites)
            total_tests = sum(len(s.tests) for s in self._suites.values())
            active_suites = len(self._active)
            running = self._tests_running
            completed = self._tests_completed
            failed = self._tests_failed

        max_browsers = self.config.resource_limits.max_browsers
        return OrchestratorMetrics(
            total_suites=total_suites,
            active_suites=active_suites,
            total_tests=total_tests,
            tests_running=running,
            tests_completed=completed,
            tests_failed=failed,
            average_execution_time=history_stats.average_duration,
            parallelization_efficiency=coordinator_metrics.system_utilization,
            resource_utilization=ResourceUtilization(
                agents=coordinator_metrics.system_utilization,
                browsers=(coordinator_metrics.active_agents / max_browsers) * 100 if max_browsers else 0.0,
                memory=psutil.virtual_memory().percent,
                cpu=psutil.cpu_percent(interval=None),
            ),
            coordinator=coordinator_metrics,
        )

    def cleanup(self) -> None:
        """실행 중인 스위트를 취소하고 상태 초기화"""
        with self._lock:
            active = list(self._active)
        for suite_id in active:
            self.cancel_suite(suite_id)
        with self._lock:
            self._suites.clear()
            self._runs.clear()
        self.events.remove_all_listeners()
