"""
대기 그래프(wait-for graph) 기반 데드락 탐지와 희생자 선택
"""
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

WaitForGraph = Dict[str, List[str]]


def build_wait_for_graph(
    holders: Mapping[str, Sequence[str]],
    waiters: Mapping[str, Sequence[str]],
) -> WaitForGraph:
    """
    대기 그래프 생성

    Args:
        holders: 락 키 -> 현재 보유 에이전트 목록
        waiters: 락 키 -> 대기 중인 에이전트 목록 (FIFO 순서)

    Returns:
        에이전트 -> 해당 에이전트가 기다리는 보유자 목록.
        A 가 B 가 보유한 락을 기다리면 A -> B 간선이 생긴다.
    """
    graph: WaitForGraph = {}

    for key, queue in waiters.items():
        key_holders = holders.get(key, ())
        if not key_holders:
            continue

        for holder in key_holders:
            graph.setdefault(holder, [])

        for waiter in queue:
            edges = graph.setdefault(waiter, [])
            for holder in key_holders:
                if holder != waiter and holder not in edges:
                    edges.append(holder)

    return graph


def find_cycle(graph: Mapping[str, Sequence[str]]) -> Optional[List[str]]:
    """
    DFS 로 첫 번째 순환을 찾는다.

    재귀 스택에 있는 노드로 향하는 역방향 간선이 순환 신호이며,
    반환값은 역방향 간선의 대상부터 현재 노드까지의 경로다.
    (마지막 원소 -> 첫 원소 간선으로 순환이 닫힌다)
    """
    visited = set()
    stack: List[str] = []
    on_stack = set()

    def _visit(node: str) -> Optional[List[str]]:
        visited.add(node)
        stack.append(node)
        on_stack.add(node)

        for neighbor in graph.get(node, ()):
            if neighbor not in visited:
                cycle = _visit(neighbor)
                if cycle:
                    return cycle
            elif neighbor in on_stack:
                return stack[stack.index(neighbor):]

        stack.pop()
        on_stack.discard(node)
        return None

    for node in list(graph.keys()):
        if node not in visited:
            cycle = _visit(node)
            if cycle:
                return list(cycle)
    return None


class VictimSelector(ABC):
    """데드락을 끊기 위해 취소할 에이전트 선택 전략"""

    @abstractmethod
    def select(self, cycle: Sequence[str]) -> str:
        ...

    def record(self, victim: str) -> None:
        """선택된 희생자 기록 (공정성 추적용)"""


class LastInCycleSelector(VictimSelector):
    """발견된 순환의 마지막 에이전트를 취소"""

    def select(self, cycle: Sequence[str]) -> str:
        return cycle[-1]


class FewestCancellationsSelector(VictimSelector):
    """
    지금까지 취소된 횟수가 가장 적은 순환 구성원을 취소

    동률이면 순환의 마지막 쪽 에이전트를 고른다. 같은 에이전트가 반복해서
    희생되는 기아 상태를 막는다.
    """

    def __init__(self):
        self.cancellations: Dict[str, int] = defaultdict(int)

    def select(self, cycle: Sequence[str]) -> str:
        victim = cycle[-1]
        for agent_id in reversed(cycle):
            if self.cancellations[agent_id] < self.cancellations[victim]:
                victim = agent_id
        return victim

    def record(self, victim: str) -> None:
        self.cancellations[victim] += 1


def make_victim_selector(name: str) -> VictimSelector:
    if name == "last_in_cycle":
        return LastInCycleSelector()
    if name == "fewest_cancellations":
        return FewestCancellationsSelector()
    raise ValueError(f"알 수 없는 희생자 선택 전략: {name}")


def describe_cycle(cycle: Iterable[str]) -> str:
    members = list(cycle)
    if not members:
        return ""
    return " -> ".join(members + [members[0]])
