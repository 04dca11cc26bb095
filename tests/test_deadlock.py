import asyncio
import logging

import pytest

from arbitration.deadlock import (
    FewestCancellationsSelector,
    LastInCycleSelector,
    build_wait_for_graph,
    describe_cycle,
    find_cycle,
    make_victim_selector,
)
from arbitration.models import ConflictPolicy, ConflictType, ResolutionAction, ResourceType
from arbitration.resolver import ConflictResolver

# 로깅 설정
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BROWSER = ResourceType.BROWSER


def test_build_wait_for_graph():
    """대기자 -> 보유자 간선 생성"""
    graph = build_wait_for_graph(
        holders={"browser:b1": ["A"], "browser:b2": ["B", "C"]},
        waiters={"browser:b1": ["B"], "browser:b2": ["A"], "browser:b3": ["D"]},
    )

    assert graph["B"] == ["A"]
    assert graph["A"] == ["B", "C"]
    assert graph["C"] == []
    # 보유자가 없는 리소스의 대기자는 간선을 만들지 않는다
    assert "D" not in graph


def test_find_cycle():
    assert find_cycle({"A": ["B"], "B": ["C"], "C": []}) is None
    assert find_cycle({}) is None

    cycle = find_cycle({"A": ["B"], "B": ["C"], "C": ["A"]})
    assert cycle == ["A", "B", "C"]

    # 순환에 속하지 않은 시작 노드는 결과에 포함되지 않는다
    assert find_cycle({"X": ["A"], "A": ["B"], "B": ["A"]}) == ["A", "B"]


def test_describe_cycle():
    assert describe_cycle(["A", "B"]) == "A -> B -> A"
    assert describe_cycle([]) == ""


def test_victim_selectors():
    assert LastInCycleSelector().select(["A", "B", "C"]) == "C"

    selector = FewestCancellationsSelector()
    assert selector.select(["A", "B", "C"]) == "C"
    selector.record("C")
    assert selector.select(["A", "B", "C"]) == "B"
    selector.record("B")
    selector.record("A")
    assert selector.select(["A", "B", "C"]) == "C"

    assert isinstance(make_victim_selector("last_in_cycle"), LastInCycleSelector)
    with pytest.raises(ValueError):
        make_victim_selector("random")


def create_cross_wait(resolver):
    """A 는 b1, B 는 b2 를 보유한 채 서로의 리소스를 기다린다"""
    assert resolver.acquire_lock("b1", BROWSER, "A")
    assert resolver.acquire_lock("b2", BROWSER, "B")
    assert resolver.acquire_lock("b2", BROWSER, "A") is False
    assert resolver.acquire_lock("b1", BROWSER, "B") is False


def test_detect_deadlock_cancels_exactly_one_victim(resolver):
    cancelled = []
    resolver.events.on("task:cancelled", lambda agent_id, reason: cancelled.append((agent_id, reason)))
    create_cross_wait(resolver)

    deadlocks = resolver.detect_deadlocks()

    assert len(deadlocks) == 1
    conflict = deadlocks[0]
    assert conflict.type == ConflictType.DEADLOCK
    assert sorted(conflict.agents) == ["A", "B"]
    assert conflict.resources == ["browser:b1", "browser:b2"]

    assert len(cancelled) == 1
    victim, reason = cancelled[0]
    survivor = "B" if victim == "A" else "A"
    assert conflict.resolution.action_for(victim).action == ResolutionAction.CANCEL
    assert conflict.resolution.action_for(survivor).action == ResolutionAction.PROCEED
    assert "Deadlock detected" in reason

    # 생존자가 두 리소스를 모두 보유하고 대기열은 비어 있다
    assert resolver.get_lock("b1", BROWSER).locked_by == survivor
    assert resolver.get_lock("b2", BROWSER).locked_by == survivor
    assert resolver.get_wait_queue("b1", BROWSER) == []
    assert resolver.get_wait_queue("b2", BROWSER) == []

    assert resolver.detect_deadlocks() == []
    assert resolver.get_conflict_stats().deadlocks == 1


def test_detect_all_independent_cycles(resolver):
    create_cross_wait(resolver)
    resolver.acquire_lock("b3", BROWSER, "C")
    resolver.acquire_lock("b4", BROWSER, "D")
    resolver.acquire_lock("b4", BROWSER, "C")
    resolver.acquire_lock("b3", BROWSER, "D")

    deadlocks = resolver.detect_deadlocks()

    assert len(deadlocks) == 2
    assert {frozenset(c.agents) for c in deadlocks} == {frozenset("AB"), frozenset("CD")}


def test_repeated_deadlocks_rotate_victims(clock):
    """같은 에이전트가 반복해서 희생되지 않는다"""
    resolver = ConflictResolver(policy=ConflictPolicy(), clock=clock)
    victims = []
    resolver.events.on("task:cancelled", lambda agent_id, reason: victims.append(agent_id))

    for _ in range(2):
        create_cross_wait(resolver)
        resolver.detect_deadlocks()
        for agent in ("A", "B"):
            resolver.release_agent(agent)

    assert sorted(victims) == ["A", "B"]


async def test_background_detection_breaks_deadlock():
    resolver = ConflictResolver(policy=ConflictPolicy(deadlock_detection_interval=0.05))
    detected = []
    resolver.events.on("deadlock:detected", detected.append)
    create_cross_wait(resolver)

    resolver.start()
    try:
        await asyncio.sleep(0.2)
    finally:
        resolver.stop()

    assert len(detected) == 1
    holders = {lock.locked_by for lock in resolver.get_active_locks()}
    assert len(holders) == 1
