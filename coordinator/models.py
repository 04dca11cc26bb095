"""
에이전트 코디네이터 데이터 모델 정의
"""
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator


class AgentStatus(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"
    OFFLINE = "offline"


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED)
IN_FLIGHT_STATUSES = (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)


class CapabilityType(str, Enum):
    NAVIGATION = "navigation"
    FORM_FILLING = "form-filling"
    VISUAL_TESTING = "visual-testing"
    API_TESTING = "api-testing"
    CAPTCHA_SOLVING = "captcha-solving"


class MessageType(str, Enum):
    TASK = "task"
    RESULT = "result"
    STATUS = "status"
    QUERY = "query"
    KNOWLEDGE_SHARE = "knowledge-share"


class KnowledgeType(str, Enum):
    PATTERN = "pattern"
    SOLUTION = "solution"
    FAILURE = "failure"
    OPTIMIZATION = "optimization"


class AgentCapability(BaseModel):
    type: CapabilityType
    proficiency: float = Field(..., ge=0.0, le=1.0, description="숙련도 (0~1)")


class Agent(BaseModel):
    """에이전트 정보 모델"""
    id: str
    name: str
    status: AgentStatus = AgentStatus.IDLE
    capabilities: List[AgentCapability] = []
    current_task: Optional[str] = None
    tasks_completed: int = 0
    tasks_assigned: int = 0
    success_rate: float = 1.0
    last_heartbeat: float = Field(default_factory=time.time)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def capability_types(self) -> Set[CapabilityType]:
        return {cap.type for cap in self.capabilities}

    @property
    def load(self) -> int:
        """배정되었지만 완료되지 않은 태스크 수"""
        return self.tasks_assigned - self.tasks_completed


class AgentTask(BaseModel):
    """태스크 정보 모델"""
    id: str = Field(default_factory=lambda: f"task-{uuid.uuid4().hex}")
    type: str
    priority: float = 5
    status: TaskStatus = TaskStatus.PENDING
    payload: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = []
    required_capabilities: Set[CapabilityType] = Field(default_factory=set)
    assigned_to: Optional[str] = None
    sequence: int = 0  # 생성 순서 (동일 우선순위 정렬 기준)
    created_at: float = Field(default_factory=time.time)
    assigned_at: Optional[float] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    result: Optional[Any] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration(self) -> Optional[float]:
        """실행 시간 (시작 보고가 없으면 배정 시각부터, 종료 전이거나 배정된 적 없으면 None)"""
        started = self.started_at if self.started_at is not None else self.assigned_at
        if started is None or self.completed_at is None:
            return None
        return max(self.completed_at - started, 0.0)


class AgentMessage(BaseModel):
    id: str = Field(default_factory=lambda: f"msg-{uuid.uuid4().hex[:12]}")
    sender: str = "coordinator"
    to: Optional[str] = None  # None 이면 브로드캐스트
    type: MessageType
    payload: Any = None
    timestamp: float = Field(default_factory=time.time)
    priority: float = 5


class SharedKnowledge(BaseModel):
    """에이전트 간 공유되는 자동화 패턴"""
    id: str = Field(default_factory=lambda: f"knowledge-{uuid.uuid4().hex[:12]}")
    type: KnowledgeType
    contributed_by: str
    content: Any = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    usage_count: int = 0
    success_count: int = 0
    success_rate: float = 1.0
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @property
    def rank_score(self) -> float:
        return self.confidence * self.success_rate


class CoordinationMetrics(BaseModel):
    total_agents: int = 0
    active_agents: int = 0  # busy
    idle_agents: int = 0
    offline_agents: int = 0
    error_agents: int = 0
    total_tasks: int = 0
    pending_tasks: int = 0
    assigned_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_task_duration: float = 0.0  # 초
    system_utilization: float = 0.0  # busy / total (%)
    knowledge_base_size: int = 0


class CoordinatorConfig(BaseModel):
    """코디네이터 설정"""
    task_distribution_interval: float = 1.0  # 초
    heartbeat_check_interval: float = 5.0  # 초
    heartbeat_timeout: float = 30.0  # 초
    message_retention: int = 100  # 에이전트별 보관 메시지 수
    default_task_priority: float = 5

    @field_validator("message_retention")
    @classmethod
    def retention_must_be_positive(cls, v):
        if v < 1:
            raise ValueError("message_retention 은 1 이상이어야 합니다")
        return v
