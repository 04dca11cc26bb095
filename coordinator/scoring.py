"""
태스크-에이전트 매칭 점수 계산
"""
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Set

from .models import Agent, AgentTask, CapabilityType


def capabilities_for_task_type(task_type: str) -> Set[CapabilityType]:
    """
    태스크 유형 문자열에서 필요한 능력 집합 추론

    하이픈으로 구분된 토큰 단위로 비교한다.
    ("navigation-test" -> {navigation}, "form-filling-check" -> {form-filling})
    """
    padded = f"-{task_type.lower()}-"
    return {cap for cap in CapabilityType if f"-{cap.value}-" in padded}


def relevant_proficiency(agent: Agent, required: Iterable[CapabilityType]) -> float:
    """요구 능력과 겹치는 능력의 평균 숙련도 (겹치는 능력이 없으면 0)"""
    required = set(required)
    relevant = [cap.proficiency for cap in agent.capabilities if cap.type in required]
    if not relevant:
        return 0.0
    return sum(relevant) / len(relevant)


class AgentScorer(ABC):
    """스케줄러가 사용하는 에이전트 점수 계산 전략 (높을수록 적합)"""

    @abstractmethod
    def score(self, task: AgentTask, agent: Agent) -> float:
        ...


class CapabilityLoadScorer(AgentScorer):
    """
    기본 점수 계산

    score = 50 * 성공률 + 50 * 관련 능력 평균 숙련도 - 10 * (배정 - 완료)
    """

    def __init__(self, success_weight: float = 50.0, proficiency_weight: float = 50.0, load_penalty: float = 10.0):
        self.success_weight = success_weight
        self.proficiency_weight = proficiency_weight
        self.load_penalty = load_penalty

    def score(self, task: AgentTask, agent: Agent) -> float:
        score = agent.success_rate * self.success_weight
        score += relevant_proficiency(agent, task.required_capabilities) * self.proficiency_weight
        score -= agent.load * self.load_penalty
        return score


def select_best_agent(task: AgentTask, candidates: Iterable[Agent], scorer: AgentScorer) -> Optional[Agent]:
    """
    가장 높은 점수의 에이전트 선택 (동점이면 먼저 등록된 에이전트)
    """
    best: Optional[Agent] = None
    best_score = float("-inf")
    for agent in candidates:
        score = scorer.score(task, agent)
        if score > best_score:
            best, best_score = agent, score
    return best
