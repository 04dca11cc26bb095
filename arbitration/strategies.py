"""
충돌 해결 전략과 경합자 우선순위 점수 계산
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import (
    AgentAction,
    ConflictResolution,
    PriorityWeights,
    ResolutionAction,
    ResolutionStrategy,
    ResourceType,
)

logger = logging.getLogger(__name__)

# 리소스 유형별 중요도 (우선순위 점수의 resource_type 항목)
RESOURCE_TYPE_WEIGHTS: Dict[ResourceType, float] = {
    ResourceType.BROWSER: 1.0,
    ResourceType.FILE: 0.75,
    ResourceType.DATA: 0.5,
    ResourceType.URL: 0.25,
}

# 태스크 우선순위 정규화 기준 (0~10 범위를 0~1 로)
MAX_TASK_PRIORITY = 10.0


@dataclass
class Contender:
    """충돌에 참여한 에이전트 (기존 보유자 또는 요청자)"""
    agent_id: str
    is_holder: bool
    task_priority: float = 0.0
    since: float = 0.0  # 보유자는 락 획득 시각, 요청자는 요청 시각


class PriorityScorer(ABC):
    """경합자 우선순위 점수 계산 전략 (높을수록 우선)"""

    @abstractmethod
    def score(self, contender: Contender, resource_type: ResourceType, now: float) -> float:
        ...


class WeightedPriorityScorer(PriorityScorer):
    """
    정책 가중치 기반 기본 점수 계산

    score = w_agent * 에이전트 우선순위 + w_task * 정규화된 태스크 우선순위
            + w_resource * 리소스 유형 중요도 + w_wait * 정규화된 대기/보유 시간
    """

    def __init__(
        self,
        weights: Optional[PriorityWeights] = None,
        max_lock_duration: float = 300.0,
        agent_priority_provider: Optional[Callable[[str], float]] = None,
    ):
        self.weights = weights or PriorityWeights()
        self.max_lock_duration = max_lock_duration
        self.agent_priority_provider = agent_priority_provider

    def agent_priority(self, agent_id: str) -> float:
        if self.agent_priority_provider is None:
            return 0.5
        try:
            return float(self.agent_priority_provider(agent_id))
        except Exception:
            logger.exception(f"에이전트 우선순위 조회 실패: {agent_id}")
            return 0.5

    def score(self, contender: Contender, resource_type: ResourceType, now: float) -> float:
        task_priority = min(max(contender.task_priority, 0.0) / MAX_TASK_PRIORITY, 1.0)
        waited = max(now - contender.since, 0.0)
        wait_factor = min(waited / self.max_lock_duration, 1.0) if self.max_lock_duration > 0 else 0.0

        return (
            self.weights.agent_priority * self.agent_priority(contender.agent_id)
            + self.weights.task_priority * task_priority
            + self.weights.resource_type * RESOURCE_TYPE_WEIGHTS.get(resource_type, 0.5)
            + self.weights.wait_time * wait_factor
        )


def rank_contenders(
    contenders: Sequence[Contender],
    scorer: PriorityScorer,
    resource_type: ResourceType,
    now: float,
) -> List[Tuple[Contender, float]]:
    """
    점수 내림차순 정렬 (동점이면 입력 순서 유지 → 기존 보유자 우선)
    """
    scored = [(c, scorer.score(c, resource_type, now)) for c in contenders]
    scored.sort(key=lambda item: item[1], reverse=True)
    return scored


def resolve_by_queue(contenders: Sequence[Contender]) -> ConflictResolution:
    """보유자는 계속 진행, 요청자는 대기열로"""
    return ConflictResolution(
        strategy=ResolutionStrategy.QUEUE,
        winner=contenders[0].agent_id,
        actions=[
            AgentAction(
                agent_id=c.agent_id,
                action=ResolutionAction.PROCEED if c.is_holder else ResolutionAction.WAIT,
            )
            for c in contenders
        ],
        reason="First agent proceeds, others queued",
    )


def resolve_by_priority(
    ranked: Sequence[Tuple[Contender, float]],
    stagger_delay: float,
) -> ConflictResolution:
    """
    최고 점수 경합자가 진행, 나머지는 순위별 지연을 두고 대기

    요청자가 모든 보유자보다 높으면 보유자들은 선점되어 대기 상태가 된다.
    """
    top, top_score = ranked[0]
    requester_wins = not top.is_holder

    actions = []
    for rank, (contender, _score) in enumerate(ranked):
        if contender is top:
            actions.append(AgentAction(agent_id=contender.agent_id, action=ResolutionAction.PROCEED))
        elif contender.is_holder and not requester_wins:
            actions.append(AgentAction(agent_id=contender.agent_id, action=ResolutionAction.PROCEED))
        else:
            actions.append(AgentAction(
                agent_id=contender.agent_id,
                action=ResolutionAction.WAIT,
                delay=rank * stagger_delay,
            ))

    return ConflictResolution(
        strategy=ResolutionStrategy.PRIORITIZE,
        winner=top.agent_id,
        actions=actions,
        reason=f"Agent {top.agent_id} has highest priority (score: {top_score:.2f})",
    )


def resolve_by_split(contenders: Sequence[Contender]) -> ConflictResolution:
    return ConflictResolution(
        strategy=ResolutionStrategy.SPLIT,
        actions=[
            AgentAction(agent_id=c.agent_id, action=ResolutionAction.PROCEED)
            for c in contenders
        ],
        reason="Resources split between agents",
    )


def resolve_by_merge(contenders: Sequence[Contender]) -> ConflictResolution:
    """보유자 작업으로 병합, 요청자 작업은 중복으로 취소"""
    return ConflictResolution(
        strategy=ResolutionStrategy.MERGE,
        winner=contenders[0].agent_id,
        actions=[
            AgentAction(
                agent_id=c.agent_id,
                action=ResolutionAction.PROCEED if c.is_holder else ResolutionAction.CANCEL,
            )
            for c in contenders
        ],
        reason="Tasks merged into single execution",
    )


def resolve_by_cancel(ranked: Sequence[Tuple[Contender, float]], reason: Optional[str] = None) -> ConflictResolution:
    """최고 점수 경합자만 진행, 나머지는 무조건 취소"""
    top, _score = ranked[0]
    return ConflictResolution(
        strategy=ResolutionStrategy.CANCEL,
        winner=top.agent_id,
        actions=[
            AgentAction(
                agent_id=contender.agent_id,
                action=ResolutionAction.PROCEED if contender is top else ResolutionAction.CANCEL,
            )
            for contender, _ in ranked
        ],
        reason=reason or "Lower priority tasks cancelled",
    )
