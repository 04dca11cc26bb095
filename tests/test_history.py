import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import redis

from orchestrator.history import HISTORY_KEY, ExecutionHistory, ExecutionRecord
from orchestrator.models import TestStatus

# 로깅 설정
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def record(name, status=TestStatus.PASSED, duration=1.0, timestamp=0.0):
    return ExecutionRecord(suite_id="suite-1", test_name=name, status=status, duration=duration, timestamp=timestamp)


def test_memory_history_keeps_latest_records():
    """메모리 모드는 최신 기록부터 max_records 개만 보관"""
    history = ExecutionHistory(max_records=3)
    assert history.backend == "memory"

    for i in range(5):
        history.record(record(f"t{i}", timestamp=float(i)))

    recent = history.get_recent_executions()
    assert [r.test_name for r in recent] == ["t4", "t3", "t2"]
    assert [r.test_name for r in history.get_recent_executions(limit=1)] == ["t4"]
    assert history.get_recent_executions(limit=0) == []


def test_stats_and_reliability():
    history = ExecutionHistory()
    history.record(record("login", TestStatus.PASSED, duration=2.0))
    history.record(record("login", TestStatus.FAILED, duration=4.0))
    history.record(record("search", TestStatus.PASSED, duration=3.0))

    stats = history.get_stats()
    assert stats.total_executions == 3
    assert stats.passed == 2
    assert stats.failed == 1
    assert stats.success_rate == pytest.approx(2 / 3)
    assert stats.average_duration == pytest.approx(3.0)

    assert history.get_test_reliability("login") == pytest.approx(0.5)
    assert history.get_test_reliability("unknown") is None

    history.clear()
    assert history.get_stats().total_executions == 0


@patch("redis.Redis.from_url")
def test_redis_backend_uses_list(mock_from_url):
    """Redis 모드는 LPUSH + LTRIM 으로 기록하고 LRANGE 로 조회"""
    client = MagicMock()
    pipeline = MagicMock()
    client.pipeline.return_value = pipeline
    client.lrange.return_value = [record("login").model_dump_json(), "not-json"]
    mock_from_url.return_value = client

    history = ExecutionHistory(redis_url="redis://localhost:6379/0", max_records=50)
    assert history.backend == "redis"
    client.ping.assert_called_once()

    assert history.record(record("login")) is True
    key, payload = pipeline.lpush.call_args[0]
    assert key == HISTORY_KEY
    assert json.loads(payload)["test_name"] == "login"
    pipeline.ltrim.assert_called_once_with(HISTORY_KEY, 0, 49)
    pipeline.execute.assert_called_once()

    recent = history.get_recent_executions(limit=10)
    client.lrange.assert_called_with(HISTORY_KEY, 0, 9)
    assert [r.test_name for r in recent] == ["login"]

    history.clear()
    client.delete.assert_called_once_with(HISTORY_KEY)


@patch("redis.Redis.from_url")
def test_redis_errors_are_reported_not_raised(mock_from_url):
    client = MagicMock()
    client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")
    client.lrange.side_effect = redis.ConnectionError("down")
    mock_from_url.return_value = client

    history = ExecutionHistory(redis_url="redis://localhost:6379/0")

    assert history.record(record("login")) is False
    assert history.get_recent_executions() == []


@patch("redis.Redis.from_url")
def test_falls_back_to_memory_when_ping_fails(mock_from_url):
    mock_from_url.return_value.ping.side_effect = redis.ConnectionError("connection refused")

    history = ExecutionHistory(redis_url="redis://unreachable:6379/0")

    assert history.backend == "memory"
    assert history.record(record("login")) is True
    assert len(history.get_recent_executions()) == 1
