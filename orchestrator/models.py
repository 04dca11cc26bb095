"""
테스트 오케스트레이터 데이터 모델 정의
"""
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from coordinator.models import CapabilityType, CoordinationMetrics


class TestStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SchedulingAlgorithm(str, Enum):
    FIFO = "fifo"
    PRIORITY = "priority"
    LOAD_BALANCED = "load-balanced"
    CAPABILITY_BASED = "capability-based"


class TestDefinition(BaseModel):
    """테스트 정의 (실행 내용은 외부 테스트 실행기가 해석)"""
    name: str
    url: Optional[str] = None
    steps: List[Dict[str, Any]] = []
    timeout: Optional[float] = None
    depends_on: List[str] = []  # 같은 스위트 안의 테스트 이름
    required_capabilities: Set[CapabilityType] = Field(default_factory=set)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExecutionOptions(BaseModel):
    browser_type: str = "chromium"
    headless: bool = True
    record_video: bool = False
    take_screenshots: bool = False
    screenshot_dir: Optional[str] = None
    video_dir: Optional[str] = None
    slow_mo: Optional[float] = None


class TestSuite(BaseModel):
    """테스트 스위트 정의"""
    id: str = Field(default_factory=lambda: f"suite-{uuid.uuid4().hex[:12]}")
    name: str
    tests: List[TestDefinition]
    parallel: bool = True
    max_concurrency: Optional[int] = Field(default=None, ge=1)
    timeout: Optional[float] = Field(default=None, gt=0)  # 테스트별 대기 시간 (초)
    retry_on_failure: bool = True
    retry_count: Optional[int] = Field(default=None, ge=0)  # 지정 시 max_retries 대신 사용
    tags: List[str] = []
    priority: Optional[float] = None


class PlannedTest(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_id: str
    test_name: str
    agent_id: str
    priority: float
    dependencies: List[str] = []  # 선행 테스트 ID


class ResourceRequirements(BaseModel):
    model_config = ConfigDict(frozen=True)

    agents: int
    browsers: int
    memory: int  # MB


class TestExecutionPlan(BaseModel):
    """스위트 시작 시 한 번 계산되는 실행 계획 (이후 변경하지 않음)"""
    model_config = ConfigDict(frozen=True)

    suite_id: str
    tests: List[PlannedTest]
    parallelism: int
    estimated_duration: float  # 초
    resource_requirements: ResourceRequirements


class ExecutionResult(BaseModel):
    """워커가 보고하는 테스트 실행 결과"""
    success: bool
    duration: float = 0.0  # 초
    error: Optional[str] = None
    screenshots: List[str] = []
    video_path: Optional[str] = None
    steps: List[Any] = []


class TestResult(BaseModel):
    test_id: str
    test_name: str
    agent_id: Optional[str] = None
    status: TestStatus
    duration: float = 0.0
    error: Optional[str] = None
    screenshots: List[str] = []
    video_path: Optional[str] = None
    retries: int = 0


class NamedDuration(BaseModel):
    name: str
    duration: float


class NamedReliability(BaseModel):
    name: str
    success_rate: float


class TestAnalytics(BaseModel):
    fastest_test: Optional[NamedDuration] = None
    slowest_test: Optional[NamedDuration] = None
    most_reliable: Optional[NamedReliability] = None
    least_reliable: Optional[NamedReliability] = None


class AggregatedResults(BaseModel):
    """스위트 실행 결과 요약 (읽기 전용)"""
    model_config = ConfigDict(frozen=True)

    suite_id: str
    suite_name: str
    start_time: float
    end_time: float
    duration: float
    total_tests: int
    passed: int
    failed: int
    skipped: int
    pass_rate: float  # %
    results: List[TestResult]
    analytics: TestAnalytics


class ResourceLimits(BaseModel):
    max_browsers: int = 16
    max_memory_per_test: int = 512  # MB
    max_cpu_per_test: int = 50  # %


class SchedulingConfig(BaseModel):
    algorithm: SchedulingAlgorithm = SchedulingAlgorithm.CAPABILITY_BASED
    rebalance_interval: float = 5.0  # 초


class OrchestrationConfig(BaseModel):
    """오케스트레이터 설정"""
    max_parallel_tests: int = Field(default=8, ge=1)
    default_timeout: float = Field(default=300.0, gt=0)  # 초
    retry_failed_tests: bool = True
    max_retries: int = Field(default=2, ge=0)
    default_test_duration: float = 5.0  # 이력이 없을 때 추정치 (초)
    resource_limits: ResourceLimits = Field(default_factory=ResourceLimits)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)


class ResourceUtilization(BaseModel):
    agents: float = 0.0  # %
    browsers: float = 0.0  # %
    memory: float = 0.0  # 호스트 메모리 사용률 %
    cpu: float = 0.0  # 호스트 CPU 사용률 %


class OrchestratorMetrics(BaseModel):
    total_suites: int = 0
    active_suites: int = 0
    total_tests: int = 0
    tests_running: int = 0
    tests_completed: int = 0
    tests_failed: int = 0
    average_execution_time: float = 0.0  # 초
    parallelization_efficiency: float = 0.0  # %
    resource_utilization: ResourceUtilization = Field(default_factory=ResourceUtilization)
    coordinator: CoordinationMetrics = Field(default_factory=CoordinationMetrics)
