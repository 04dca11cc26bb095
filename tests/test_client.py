import asyncio
import logging

import httpx
import pytest
from tenacity import wait_none

from server.client import CoordinatorClient
from server.config import CoordinationSettings
from server.main import create_app

# 로깅 설정
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@pytest.fixture
def app():
    app = create_app(CoordinationSettings(REDIS_URL=None), run_background_loops=False)
    yield app
    app.state.orchestrator.cleanup()
    app.state.coordinator.cleanup()
    app.state.resolver.cleanup()


def make_client(app, agent_id):
    return CoordinatorClient(agent_id, base_url="http://coordinator", transport=httpx.ASGITransport(app=app))


async def test_worker_flow(app):
    """워커 클라이언트로 등록 -> 태스크 수신 -> 시작/완료 보고"""
    async with make_client(app, "worker-1") as worker, httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://coordinator",
    ) as operator:
        registered = await worker.register([{"type": "navigation", "proficiency": 0.9}], name="Chromium worker")
        assert registered["name"] == "Chromium worker"
        assert await worker.heartbeat() is True

        response = await operator.post("/suites", json={"name": "smoke", "tests": [{"name": "home"}]})
        suite_id = response.json()["data"]["suite_id"]
        assert (await operator.post(f"/suites/{suite_id}/execute")).status_code == 202

        tasks = []
        for _ in range(100):
            await operator.post("/tasks/distribute")
            tasks = await worker.poll_tasks()
            if tasks:
                break
            await asyncio.sleep(0.01)

        assert len(tasks) == 1
        task = tasks[0]
        assert task["type"] == "test-execution"
        assert task["payload"]["suite_id"] == suite_id

        assert await worker.start_task(task["task_id"]) is True
        assert await worker.complete_task(task["task_id"], {"success": True, "duration": 0.7}) is True
        assert await worker.complete_task(task["task_id"], {"success": True}) is False

        for _ in range(100):
            if not app.state.orchestrator.is_active(suite_id):
                break
            await asyncio.sleep(0.01)

        results = app.state.orchestrator.get_suite_results(suite_id)
        assert results.passed == 1
        assert results.results[0].agent_id == "worker-1"

        assert await worker.unregister() is True


async def test_lock_calls(app):
    async with make_client(app, "A") as a, make_client(app, "B") as b:
        await a.register([{"type": "navigation", "proficiency": 0.5}])
        await b.register([{"type": "navigation", "proficiency": 0.5}])

        assert await a.acquire_lock("ctx-1", "browser") is True
        assert await b.acquire_lock("ctx-1", "browser") is False
        assert await b.release_lock("ctx-1", "browser") is False
        assert await a.release_lock("ctx-1", "browser") is True
        assert app.state.resolver.get_lock("ctx-1", "browser").locked_by == "B"


async def test_rejections_return_false_and_errors_raise(app):
    async with make_client(app, "ghost") as ghost:
        assert await ghost.heartbeat() is False
        assert await ghost.start_task("task-missing") is False
        with pytest.raises(httpx.HTTPStatusError):
            await ghost.get_messages()


async def test_request_errors_are_retried():
    """통신 오류는 재시도 후 성공하면 응답을 돌려준다"""
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"status": "healthy"})

    client = CoordinatorClient("worker-1", base_url="http://coordinator", transport=httpx.MockTransport(handler))
    try:
        response = await client._request.retry_with(wait=wait_none())(client, "GET", "/health")
        assert response.status_code == 200
        assert calls == ["/health", "/health"]
    finally:
        await client.aclose()


async def test_request_errors_are_reraised_after_attempts():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = CoordinatorClient("worker-1", base_url="http://coordinator", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(httpx.ConnectError):
            await client._request.retry_with(wait=wait_none())(client, "GET", "/health")
    finally:
        await client.aclose()


async def test_heartbeat_loop_keeps_running(app):
    async with make_client(app, "worker-1") as worker:
        await worker.register([])
        worker.heartbeat_interval = 0.01
        worker.start_heartbeat()
        await asyncio.sleep(0.05)
        assert worker._heartbeat_task is not None and not worker._heartbeat_task.done()
        worker.stop_heartbeat()
        assert worker._heartbeat_task is None
