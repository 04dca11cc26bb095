"""
리소스 중재(락/충돌) 데이터 모델 정의
"""
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResourceType(str, Enum):
    BROWSER = "browser"
    URL = "url"
    DATA = "data"
    FILE = "file"


class LockMode(str, Enum):
    READ = "read"
    WRITE = "write"
    EXCLUSIVE = "exclusive"


class ConflictType(str, Enum):
    RESOURCE = "resource"
    DATA = "data"
    TIMING = "timing"
    PRIORITY = "priority"
    DEADLOCK = "deadlock"


class ResolutionStrategy(str, Enum):
    QUEUE = "queue"
    PRIORITIZE = "prioritize"
    SPLIT = "split"
    MERGE = "merge"
    CANCEL = "cancel"


class ResolutionAction(str, Enum):
    WAIT = "wait"
    PROCEED = "proceed"
    RETRY = "retry"
    CANCEL = "cancel"


def lock_key(resource_type: ResourceType, resource_id: str) -> str:
    """(리소스 유형, 리소스 ID) 복합 키"""
    return f"{ResourceType(resource_type).value}:{resource_id}"


class ResourceLock(BaseModel):
    """리소스 락 정보 모델"""
    resource_id: str
    resource_type: ResourceType
    locked_by: str
    lock_type: LockMode = LockMode.WRITE
    acquired_at: float = Field(default_factory=time.time)
    expires_at: float
    partition_of: Optional[str] = None  # split 전략으로 받은 파티션 락의 원본 리소스 ID
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return lock_key(self.resource_type, self.resource_id)

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now


class AgentAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: str
    action: ResolutionAction
    delay: float = 0.0  # 초 단위


class ConflictResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: ResolutionStrategy
    winner: Optional[str] = None
    actions: List[AgentAction] = Field(default_factory=list)
    reason: str

    def action_for(self, agent_id: str) -> Optional[AgentAction]:
        for action in self.actions:
            if action.agent_id == agent_id:
                return action
        return None


class Conflict(BaseModel):
    """감지된 경합 기록 (생성 후 변경 불가, 감사/통계용)"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"conflict-{uuid.uuid4().hex[:12]}")
    type: ConflictType = ConflictType.RESOURCE
    agents: List[str]
    resources: List[str]
    detected_at: float = Field(default_factory=time.time)
    resolved_at: Optional[float] = None
    resolved: bool = False
    resolution: Optional[ConflictResolution] = None


class PriorityWeights(BaseModel):
    agent_priority: float = 0.4
    task_priority: float = 0.3
    resource_type: float = 0.2
    wait_time: float = 0.1


class ConflictPolicy(BaseModel):
    """충돌 해결 정책"""
    default_strategy: ResolutionStrategy = ResolutionStrategy.QUEUE
    # 리소스 유형별 전략 (예: 분할 가능한 data 리소스는 split)
    resource_strategies: Dict[ResourceType, ResolutionStrategy] = Field(default_factory=dict)
    max_lock_duration: float = 300.0  # 초 (5분)
    deadlock_detection_interval: float = 10.0  # 초
    stagger_delay: float = 1.0  # prioritize 전략의 순위별 지연 (초)
    victim_selection: str = "fewest_cancellations"  # fewest_cancellations | last_in_cycle
    max_conflict_history: int = 1000
    priority_weights: PriorityWeights = Field(default_factory=PriorityWeights)

    def strategy_for(self, resource_type: ResourceType) -> ResolutionStrategy:
        return self.resource_strategies.get(resource_type, self.default_strategy)


class ConflictStats(BaseModel):
    total: int = 0
    resolved: int = 0
    unresolved: int = 0
    deadlocks: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_strategy: Dict[str, int] = Field(default_factory=dict)
    average_resolution_time: float = 0.0  # 초
