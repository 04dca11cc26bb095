"""
워커 에이전트용 코디네이션 서비스 HTTP 클라이언트
"""
import asyncio
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

logger = logging.getLogger(__name__)

RETRY_ATTEMPTS = 3
RETRY_WAIT_SECONDS = 2


class CoordinatorClient:
    """
    코디네이션 서비스 클라이언트

    통신 오류(httpx.RequestError)는 재시도하고, HTTP 오류 응답은 재시도하지 않는다.
    """

    def __init__(
        self,
        agent_id: str,
        base_url: Optional[str] = None,
        heartbeat_interval: float = 10.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        클라이언트 초기화

        Args:
            agent_id: 이 워커의 에이전트 ID
            base_url: 코디네이션 서비스 주소 (기본값: COORDINATOR_URL 환경 변수)
            heartbeat_interval: 하트비트 전송 주기 (초)
            timeout: 요청 타임아웃 (초)
            transport: 테스트용 httpx 전송 계층
        """
        self.agent_id = agent_id
        self.base_url = base_url or os.getenv("COORDINATOR_URL", "http://coordinator:8010")
        self.heartbeat_interval = heartbeat_interval
        self.http_client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        self._heartbeat_task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "CoordinatorClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.stop_heartbeat()
        await self.http_client.aclose()

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_fixed(RETRY_WAIT_SECONDS),
        retry=retry_if_exception_type(httpx.RequestError),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.http_client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.warning(f"코디네이터 요청 중 통신 오류 ({method} {path}): {str(e)}")
            raise

    async def _data(self, method: str, path: str, **kwargs) -> Any:
        """요청 후 응답 envelope 의 data 반환 (HTTP 오류는 예외)"""
        response = await self._request(method, path, **kwargs)
        response.raise_for_status()
        return response.json().get("data")

    async def _accepted(self, method: str, path: str, **kwargs) -> bool:
        """거부(404/409)는 False, 그 외 HTTP 오류는 예외"""
        response = await self._request(method, path, **kwargs)
        if response.status_code in (404, 409):
            logger.info(f"코디네이터가 요청을 거부함 ({method} {path}): {response.status_code}")
            return False
        response.raise_for_status()
        return True

    # ------------------------------------------------------------------
    # 등록 / 하트비트
    # ------------------------------------------------------------------
    async def register(
        self,
        capabilities: Iterable[Dict[str, Any]],
        name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """에이전트 등록 후 등록된 에이전트 정보 반환"""
        data = await self._data("POST", "/agents", json={
            "id": self.agent_id,
            "name": name,
            "capabilities": list(capabilities),
            "metadata": metadata or {},
        })
        logger.info(f"코디네이터에 에이전트 등록 완료: {self.agent_id}")
        return data

    async def unregister(self) -> bool:
        return await self._accepted("DELETE", f"/agents/{self.agent_id}")

    async def heartbeat(self, status: Optional[str] = None) -> bool:
        body = {"status": status} if status else {}
        return await self._accepted("POST", f"/agents/{self.agent_id}/heartbeat", json=body)

    async def heartbeat_loop(self) -> None:
        """주기적으로 하트비트 전송 (실패는 로깅만 하고 계속 시도)"""
        while True:
            try:
                await self.heartbeat()
            except Exception as e:
                logger.error(f"하트비트 전송 실패 후 재시도 대기: {str(e)}")
            await asyncio.sleep(self.heartbeat_interval)

    def start_heartbeat(self) -> None:
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self.heartbeat_loop())

    def stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    # ------------------------------------------------------------------
    # 메시지 / 태스크 보고
    # ------------------------------------------------------------------
    async def get_messages(self, limit: int = 10) -> List[Dict[str, Any]]:
        return await self._data("GET", f"/agents/{self.agent_id}/messages", params={"limit": limit}) or []

    async def poll_tasks(self, limit: int = 10) -> List[Dict[str, Any]]:
        """받은 메시지 중 태스크 배정 메시지의 payload 목록"""
        messages = await self.get_messages(limit)
        return [m["payload"] for m in messages if m.get("type") == "task"]

    async def start_task(self, task_id: str) -> bool:
        return await self._accepted("POST", f"/tasks/{task_id}/start", json={"agent_id": self.agent_id})

    async def complete_task(self, task_id: str, result: Any = None) -> bool:
        return await self._accepted(
            "POST", f"/tasks/{task_id}/complete", json={"agent_id": self.agent_id, "result": result}
        )

    async def fail_task(self, task_id: str, error: str) -> bool:
        return await self._accepted(
            "POST", f"/tasks/{task_id}/fail", json={"agent_id": self.agent_id, "error": error}
        )

    # ------------------------------------------------------------------
    # 리소스 락
    # ------------------------------------------------------------------
    async def acquire_lock(
        self,
        resource_id: str,
        resource_type: str,
        mode: str = "write",
        timeout: Optional[float] = None,
    ) -> bool:
        data = await self._data("POST", "/locks/acquire", json={
            "agent_id": self.agent_id,
            "resource_id": resource_id,
            "resource_type": resource_type,
            "mode": mode,
            "timeout": timeout,
        })
        return bool(data and data.get("granted"))

    async def release_lock(self, resource_id: str, resource_type: str) -> bool:
        data = await self._data("POST", "/locks/release", json={
            "agent_id": self.agent_id,
            "resource_id": resource_id,
            "resource_type": resource_type,
        })
        return bool(data and data.get("released"))
