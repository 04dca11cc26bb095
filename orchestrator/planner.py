"""
테스트 스위트 검증과 실행 계획 수립
"""
import logging
import math
from typing import Dict, List, Sequence

from common.errors import InvalidSuiteError
from coordinator.models import Agent
from coordinator.scoring import relevant_proficiency

from .models import (
    OrchestrationConfig,
    PlannedTest,
    ResourceRequirements,
    SchedulingAlgorithm,
    TestDefinition,
    TestExecutionPlan,
    TestSuite,
)

logger = logging.getLogger(__name__)

DEFAULT_SUITE_PRIORITY = 5
PLANNED_LOAD_PENALTY = 0.1


def make_test_id(suite_id: str, index: int) -> str:
    return f"{suite_id}-test-{index}"


def validate_suite(suite: TestSuite) -> None:
    """
    스위트 정의 검증

    Raises:
        InvalidSuiteError: 테스트가 없거나, 이름이 중복되거나, depends_on 이
            알 수 없는 테스트를 가리키거나, 의존성에 순환이 있는 경우
    """
    if not suite.tests:
        raise InvalidSuiteError(f"테스트가 없는 스위트입니다: {suite.id}")

    names = [t.name for t in suite.tests]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise InvalidSuiteError(f"테스트 이름이 중복되었습니다: {duplicates}")

    known = set(names)
    for test in suite.tests:
        unknown = [d for d in test.depends_on if d not in known]
        if unknown:
            raise InvalidSuiteError(f"'{test.name}' 테스트의 알 수 없는 의존성: {unknown}")
        if test.name in test.depends_on:
            raise InvalidSuiteError(f"'{test.name}' 테스트가 자기 자신에 의존합니다")

    # 위상 정렬로 순환 확인
    remaining: Dict[str, set] = {t.name: set(t.depends_on) for t in suite.tests}
    while remaining:
        ready = [name for name, deps in remaining.items() if not deps]
        if not ready:
            raise InvalidSuiteError(f"테스트 의존성에 순환이 있습니다: {sorted(remaining)}")
        for name in ready:
            del remaining[name]
        for deps in remaining.values():
            deps.difference_update(ready)


def execution_order(suite: TestSuite) -> List[int]:
    """
    순차 실행 순서 (테스트 인덱스)

    스위트 순서를 유지하되 선행 테스트가 항상 먼저 오도록 정렬한다.
    """
    index_by_name = {t.name: i for i, t in enumerate(suite.tests)}
    order: List[int] = []
    placed = set()

    def _place(index: int) -> None:
        if index in placed:
            return
        placed.add(index)
        for dep in suite.tests[index].depends_on:
            _place(index_by_name[dep])
        order.append(index)

    for index in range(len(suite.tests)):
        _place(index)
    return order


def effective_parallelism(suite: TestSuite, config: OrchestrationConfig) -> int:
    """동시 실행 슬롯 수 (순차 실행이면 1)"""
    if not suite.parallel:
        return 1
    return min(suite.max_concurrency or config.max_parallel_tests, config.max_parallel_tests)


def choose_agent(
    test: TestDefinition,
    index: int,
    agents: Sequence[Agent],
    planned: Dict[str, int],
    algorithm: SchedulingAlgorithm,
) -> Agent:
    """
    테스트를 맡을 에이전트 선택

    capability-based/priority: 요구 능력 숙련도 - 0.1 * (현재 부하 + 이번 계획에서 받은 테스트 수)
    load-balanced: 부하가 가장 적은 에이전트
    fifo: 순서대로 돌아가며 배정
    """
    if algorithm == SchedulingAlgorithm.FIFO:
        return agents[index % len(agents)]

    def load(agent: Agent) -> float:
        return agent.load + planned.get(agent.id, 0)

    best = agents[0]
    best_score = float("-inf")
    for agent in agents:
        if algorithm == SchedulingAlgorithm.LOAD_BALANCED:
            score = -load(agent)
        else:
            score = relevant_proficiency(agent, test.required_capabilities) - PLANNED_LOAD_PENALTY * load(agent)
        if score > best_score:
            best, best_score = agent, score
    return best


def build_plan(
    suite: TestSuite,
    agents: Sequence[Agent],
    config: OrchestrationConfig,
    average_duration: float,
) -> TestExecutionPlan:
    """
    실행 계획 수립

    Args:
        suite: 검증된 테스트 스위트
        agents: offline 이 아닌 에이전트 목록 (비어 있으면 안 됨)
        config: 오케스트레이터 설정
        average_duration: 테스트 평균 소요 시간 추정치 (초)

    Returns:
        TestExecutionPlan: 테스트별 예정 에이전트, 우선순위, 선행 테스트 ID와 자원 추정
    """
    ids_by_name = {test.name: make_test_id(suite.id, i) for i, test in enumerate(suite.tests)}
    priority = suite.priority if suite.priority is not None else DEFAULT_SUITE_PRIORITY
    planned: Dict[str, int] = {}
    tests: List[PlannedTest] = []

    for index, test in enumerate(suite.tests):
        agent = choose_agent(test, index, agents, planned, config.scheduling.algorithm)
        planned[agent.id] = planned.get(agent.id, 0) + 1
        tests.append(PlannedTest(
            test_id=ids_by_name[test.name],
            test_name=test.name,
            agent_id=agent.id,
            priority=priority,
            dependencies=[ids_by_name[name] for name in test.depends_on],
        ))

    count = len(suite.tests)
    parallelism = effective_parallelism(suite, config)
    usable = max(1, min(parallelism, len(agents)))

    plan = TestExecutionPlan(
        suite_id=suite.id,
        tests=tests,
        parallelism=parallelism,
        estimated_duration=math.ceil(count / usable) * average_duration,
        resource_requirements=ResourceRequirements(
            agents=min(count, usable),
            browsers=min(count, config.resource_limits.max_browsers),
            memory=count * config.resource_limits.max_memory_per_test,
        ),
    )
    logger.info(
        f"실행 계획 수립: {suite.id} (테스트 {count}개, 병렬 {parallelism}, "
        f"예상 소요 {plan.estimated_duration:.1f}초)"
    )
    return plan
