import asyncio
import os
import sys

import pytest

# 프로젝트 루트 경로를 sys.path에 추가
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from arbitration.models import ConflictPolicy
from arbitration.resolver import ConflictResolver
from coordinator.coordinator import AgentCoordinator
from coordinator.models import CoordinatorConfig
from orchestrator.history import ExecutionHistory
from orchestrator.models import OrchestrationConfig
from orchestrator.orchestrator import TestOrchestrator


class FakeClock:
    """테스트에서 시간을 직접 움직이는 시계"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SimulatedWorkers:
    """
    배정된 코디네이터 태스크를 가짜로 실행하는 워커 풀

    behavior(task) 가 dict 를 반환하면 그 값으로 완료, 문자열을 반환하면 그 사유로 실패,
    None 을 반환하면 응답하지 않는다 (멈춘 워커).
    """

    def __init__(self, coordinator: AgentCoordinator, behavior=None, duration: float = 0.02):
        self.coordinator = coordinator
        self.behavior = behavior or (lambda task: {"success": True, "duration": duration, "steps": []})
        self.duration = duration
        self.running = 0
        self.max_running = 0
        self.started = []  # (task_id, test_id) 시작 순서
        self._tasks = []
        coordinator.events.on("task:assigned", self._on_assigned)

    def _on_assigned(self, task, agent_id):
        self._tasks.append(asyncio.get_running_loop().create_task(self._run(task, agent_id)))

    async def _run(self, task, agent_id):
        self.coordinator.start_task(task.id, agent_id)
        self.started.append((task.id, task.payload.get("test_id")))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(self.duration)
            outcome = self.behavior(task)
            if outcome is None:
                await asyncio.sleep(3600)
            elif isinstance(outcome, str):
                self.coordinator.fail_task(task.id, outcome, agent_id=agent_id)
            else:
                self.coordinator.complete_task(task.id, outcome, agent_id=agent_id)
        finally:
            self.running -= 1

    def stop(self):
        for task in self._tasks:
            task.cancel()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def resolver(clock):
    resolver = ConflictResolver(policy=ConflictPolicy(), clock=clock)
    yield resolver
    resolver.cleanup()


@pytest.fixture
def coordinator(clock):
    coordinator = AgentCoordinator(config=CoordinatorConfig(message_retention=5), clock=clock)
    yield coordinator
    coordinator.cleanup()


@pytest.fixture
async def live_coordinator():
    """스케줄링 주기가 빠르게 도는 실제 시계 기반 코디네이터"""
    coordinator = AgentCoordinator(config=CoordinatorConfig(
        task_distribution_interval=0.01,
        heartbeat_check_interval=60.0,
        heartbeat_timeout=600.0,
    ))
    coordinator.start()
    yield coordinator
    coordinator.cleanup()


@pytest.fixture
def orchestration_config():
    return OrchestrationConfig(max_parallel_tests=8, default_timeout=5.0, max_retries=2)


@pytest.fixture
def orchestrator(live_coordinator, orchestration_config):
    orchestrator = TestOrchestrator(live_coordinator, config=orchestration_config, history=ExecutionHistory())
    yield orchestrator
    orchestrator.cleanup()


@pytest.fixture
def make_workers(live_coordinator):
    created = []

    def _make(behavior=None, duration: float = 0.02) -> SimulatedWorkers:
        workers = SimulatedWorkers(live_coordinator, behavior, duration)
        created.append(workers)
        return workers

    yield _make
    for workers in created:
        workers.stop()


def register_agents(coordinator: AgentCoordinator, count: int, capability: str = "navigation") -> None:
    for i in range(count):
        coordinator.register_agent(f"agent-{i}", [{"type": capability, "proficiency": 0.8}])


@pytest.fixture
def agents():
    return register_agents


def _suite_tasks(coordinator: AgentCoordinator):
    return [t for t in coordinator.get_tasks() if t.type == "test-execution"]


@pytest.fixture
def suite_tasks():
    return _suite_tasks

