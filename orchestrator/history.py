"""
테스트 실행 이력 저장소

Redis 가 설정되어 있고 연결 가능하면 Redis 리스트에, 아니면 메모리 링 버퍼에 저장한다.
"""
import json
import logging
import threading
import time
from collections import deque
from typing import Deque, List, Optional

import redis
from pydantic import BaseModel, Field

from .models import TestStatus

logger = logging.getLogger(__name__)

HISTORY_KEY = "orchestrator:executions"


class ExecutionRecord(BaseModel):
    suite_id: str
    test_name: str
    status: TestStatus
    duration: float = 0.0  # 초
    agent_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class HistoryStats(BaseModel):
    total_executions: int = 0
    passed: int = 0
    failed: int = 0
    success_rate: float = 0.0  # 0~1 (passed / (passed + failed))
    average_duration: float = 0.0  # 초


class ExecutionHistory:
    def __init__(self, redis_url: Optional[str] = None, max_records: int = 1000):
        """
        실행 이력 저장소 초기화

        Args:
            redis_url: Redis 연결 URL (없으면 메모리 모드)
            max_records: 보관할 최대 기록 수
        """
        self.max_records = max_records
        self._memory: Deque[ExecutionRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()
        self.redis = None

        if redis_url:
            try:
                client = redis.Redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=2)
                # 연결 시험
                client.ping()
                self.redis = client
                logger.info(f"실행 이력 Redis 연결 성공: {redis_url}")
            except Exception as e:
                logger.warning(f"Redis 연결 실패, 메모리 모드로 전환: {str(e)}")

    @property
    def backend(self) -> str:
        return "redis" if self.redis is not None else "memory"

    def record(self, record: ExecutionRecord) -> bool:
        """실행 기록 추가 (최신 기록이 앞)"""
        if self.redis is None:
            with self._lock:
                self._memory.appendleft(record)
            return True

        try:
            pipeline = self.redis.pipeline()
            pipeline.lpush(HISTORY_KEY, record.model_dump_json())
            pipeline.ltrim(HISTORY_KEY, 0, self.max_records - 1)
            pipeline.execute()
            return True
        except redis.RedisError as e:
            logger.error(f"실행 이력 저장 실패: {str(e)}")
            return False

    def get_recent_executions(self, limit: int = 50) -> List[ExecutionRecord]:
        """최근 실행 기록 (최신순)"""
        if limit <= 0:
            return []

        if self.redis is None:
            with self._lock:
                return list(self._memory)[:limit]

        try:
            raw = self.redis.lrange(HISTORY_KEY, 0, limit - 1)
        except redis.RedisError as e:
            logger.error(f"실행 이력 조회 실패: {str(e)}")
            return []

        records = []
        for item in raw:
            try:
                records.append(ExecutionRecord.model_validate(json.loads(item)))
            except (ValueError, TypeError) as e:
                logger.warning(f"잘못된 실행 이력 항목 무시: {str(e)}")
        return records

    def get_test_reliability(self, test_name: str, window: int = 100) -> Optional[float]:
        """
        최근 window 개 기록 중 해당 테스트의 성공률

        Returns:
            0~1 사이 성공률, 기록이 없으면 None
        """
        history = [r for r in self.get_recent_executions(window) if r.test_name == test_name]
        if not history:
            return None
        passed = sum(1 for r in history if r.status == TestStatus.PASSED)
        return passed / len(history)

    def get_stats(self) -> HistoryStats:
        records = self.get_recent_executions(self.max_records)
        finished = [r for r in records if r.status in (TestStatus.PASSED, TestStatus.FAILED)]
        passed = sum(1 for r in finished if r.status == TestStatus.PASSED)

        return HistoryStats(
            total_executions=len(records),
            passed=passed,
            failed=len(finished) - passed,
            success_rate=passed / len(finished) if finished else 0.0,
            average_duration=sum(r.duration for r in finished) / len(finished) if finished else 0.0,
        )

    def clear(self) -> None:
        if self.redis is None:
            with self._lock:
                self._memory.clear()
            return
        try:
            self.redis.delete(HISTORY_KEY)
        except redis.RedisError as e:
            logger.error(f"실행 이력 삭제 실패: {str(e)}")
