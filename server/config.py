"""
코디네이션 서비스 설정 및 환경 변수 모듈
"""
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

from arbitration.models import ConflictPolicy, ResolutionStrategy
from coordinator.models import CoordinatorConfig
from orchestrator.models import OrchestrationConfig, ResourceLimits, SchedulingAlgorithm, SchedulingConfig

logger = logging.getLogger(__name__)

# 프로젝트 루트의 .env 로드
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"
load_dotenv(env_path)


class CoordinationSettings(BaseSettings):
    # 서비스 설정
    APP_NAME: str = "Browser Agent Coordination Service"
    APP_VERSION: str = "1.0.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8010
    LOG_LEVEL: str = "INFO"

    # 코디네이터 설정
    TASK_DISTRIBUTION_INTERVAL: float = 1.0
    HEARTBEAT_CHECK_INTERVAL: float = 5.0
    HEARTBEAT_TIMEOUT: float = 30.0
    MESSAGE_RETENTION: int = 100
    DEFAULT_TASK_PRIORITY: float = 5

    # 리소스 중재 설정
    DEFAULT_RESOLUTION_STRATEGY: ResolutionStrategy = ResolutionStrategy.QUEUE
    MAX_LOCK_DURATION: float = 300.0
    DEADLOCK_DETECTION_INTERVAL: float = 10.0
    STAGGER_DELAY: float = 1.0
    VICTIM_SELECTION: str = "fewest_cancellations"

    # 테스트 오케스트레이션 설정
    MAX_PARALLEL_TESTS: int = 8
    DEFAULT_TEST_TIMEOUT: float = 300.0
    RETRY_FAILED_TESTS: bool = True
    MAX_RETRIES: int = 2
    MAX_BROWSERS: int = 16
    MAX_MEMORY_PER_TEST: int = 512
    MAX_CPU_PER_TEST: int = 50
    SCHEDULING_ALGORITHM: SchedulingAlgorithm = SchedulingAlgorithm.CAPABILITY_BASED

    # 실행 이력 저장소 (없으면 메모리 모드)
    REDIS_URL: Optional[str] = None
    HISTORY_MAX_RECORDS: int = 1000

    def coordinator_config(self) -> CoordinatorConfig:
        return CoordinatorConfig(
            task_distribution_interval=self.TASK_DISTRIBUTION_INTERVAL,
            heartbeat_check_interval=self.HEARTBEAT_CHECK_INTERVAL,
            heartbeat_timeout=self.HEARTBEAT_TIMEOUT,
            message_retention=self.MESSAGE_RETENTION,
            default_task_priority=self.DEFAULT_TASK_PRIORITY,
        )

    def conflict_policy(self) -> ConflictPolicy:
        return ConflictPolicy(
            default_strategy=self.DEFAULT_RESOLUTION_STRATEGY,
            max_lock_duration=self.MAX_LOCK_DURATION,
            deadlock_detection_interval=self.DEADLOCK_DETECTION_INTERVAL,
            stagger_delay=self.STAGGER_DELAY,
            victim_selection=self.VICTIM_SELECTION,
        )

    def orchestration_config(self) -> OrchestrationConfig:
        return OrchestrationConfig(
            max_parallel_tests=self.MAX_PARALLEL_TESTS,
            default_timeout=self.DEFAULT_TEST_TIMEOUT,
            retry_failed_tests=self.RETRY_FAILED_TESTS,
            max_retries=self.MAX_RETRIES,
            resource_limits=ResourceLimits(
                max_browsers=self.MAX_BROWSERS,
                max_memory_per_test=self.MAX_MEMORY_PER_TEST,
                max_cpu_per_test=self.MAX_CPU_PER_TEST,
            ),
            scheduling=SchedulingConfig(algorithm=self.SCHEDULING_ALGORITHM),
        )


# 설정 인스턴스 생성
settings = CoordinationSettings()
