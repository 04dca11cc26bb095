"""
코디네이션 코어 성능 지표 수집 모듈
"""
import logging
import prometheus_client as prom

logger = logging.getLogger(__name__)

# 프로메테우스 지표 정의
TASK_COUNTER = prom.Counter(
    'coordinator_tasks_total',
    'Total number of task state transitions',
    ['task_type', 'status']
)

TASK_DURATION = prom.Histogram(
    'coordinator_task_duration_seconds',
    'Task execution duration in seconds (start to terminal state)',
    ['task_type']
)

AGENT_EVENTS = prom.Counter(
    'coordinator_agent_events_total',
    'Agent lifecycle events',
    ['event']
)

# 리소스 중재 지표
CONFLICT_COUNTER = prom.Counter(
    'arbitration_conflicts_total',
    'Total number of resolved resource conflicts',
    ['strategy']
)

DEADLOCK_COUNTER = prom.Counter(
    'arbitration_deadlocks_total',
    'Total number of detected and broken deadlocks'
)

LOCK_EVENTS = prom.Counter(
    'arbitration_lock_events_total',
    'Resource lock events',
    ['resource_type', 'event']
)

# 테스트 오케스트레이션 지표
TEST_COUNTER = prom.Counter(
    'orchestrator_tests_total',
    'Total number of finished tests',
    ['status']
)

SUITE_DURATION = prom.Histogram(
    'orchestrator_suite_duration_seconds',
    'Test suite execution duration in seconds'
)


class MetricsCollector:
    """지표 수집 클래스"""

    @staticmethod
    def record_task(task_type: str, status: str) -> None:
        """
        태스크 상태 전이 기록

        Args:
            task_type: 태스크 유형
            status: 전이된 상태
        """
        TASK_COUNTER.labels(task_type=task_type, status=status).inc()

    @staticmethod
    def record_task_duration(task_type: str, duration: float) -> None:
        if duration >= 0:
            TASK_DURATION.labels(task_type=task_type).observe(duration)

    @staticmethod
    def record_agent_event(event: str) -> None:
        AGENT_EVENTS.labels(event=event).inc()

    @staticmethod
    def record_conflict(strategy: str) -> None:
        """
        충돌 해결 기록

        Args:
            strategy: 적용된 해결 전략
        """
        CONFLICT_COUNTER.labels(strategy=strategy).inc()

    @staticmethod
    def record_deadlock() -> None:
        DEADLOCK_COUNTER.inc()

    @staticmethod
    def record_lock_event(resource_type: str, event: str) -> None:
        """
        락 이벤트 기록

        Args:
            resource_type: 리소스 유형 (browser, url, data, file)
            event: acquired / released / expired / revoked / queued
        """
        LOCK_EVENTS.labels(resource_type=resource_type, event=event).inc()

    @staticmethod
    def record_test(status: str) -> None:
        TEST_COUNTER.labels(status=status).inc()

    @staticmethod
    def record_suite_duration(duration: float) -> None:
        SUITE_DURATION.observe(duration)

    @staticmethod
    def export_latest() -> bytes:
        """프로메테우스 텍스트 포맷으로 현재 지표 반환"""
        return prom.generate_latest()
