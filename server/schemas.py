"""
코디네이션 API 요청/응답 모델
"""
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from arbitration.models import LockMode, ResolutionStrategy, ResourceType
from coordinator.models import AgentCapability, AgentStatus, CapabilityType, KnowledgeType
from orchestrator.models import ExecutionOptions


class ApiResponse(BaseModel):
    status: str
    message: str
    data: Optional[Any] = None


class AgentRegistration(BaseModel):
    """에이전트 등록 요청 모델"""
    id: str
    name: Optional[str] = None
    capabilities: List[AgentCapability] = []
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HeartbeatRequest(BaseModel):
    status: Optional[AgentStatus] = None


class TaskCreateRequest(BaseModel):
    """태스크 생성 요청 모델"""
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: Optional[float] = None
    dependencies: List[str] = []
    required_capabilities: Optional[Set[CapabilityType]] = None


class TaskReport(BaseModel):
    """워커의 태스크 진행 보고"""
    agent_id: Optional[str] = None


class TaskCompleteRequest(TaskReport):
    result: Any = None


class TaskFailRequest(TaskReport):
    error: str


class LockRequest(BaseModel):
    """리소스 락 요청 모델"""
    agent_id: str
    resource_id: str
    resource_type: ResourceType
    mode: LockMode = LockMode.WRITE
    timeout: Optional[float] = None
    strategy: Optional[ResolutionStrategy] = None


class LockReleaseRequest(BaseModel):
    agent_id: str
    resource_id: str
    resource_type: ResourceType


class KnowledgeShareRequest(BaseModel):
    type: KnowledgeType
    contributed_by: str
    content: Any = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)


class KnowledgeUsageRequest(BaseModel):
    success: bool


class SuiteExecuteRequest(BaseModel):
    options: Optional[ExecutionOptions] = None
