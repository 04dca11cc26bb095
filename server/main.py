"""
브라우저 에이전트 코디네이션 HTTP 서비스

외부 워커 에이전트가 등록/하트비트/태스크 보고/리소스 락을 수행하고,
운영자가 테스트 스위트를 등록/실행/취소하는 API 를 제공한다.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import prometheus_client as prom
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from arbitration.resolver import ConflictResolver
from common.errors import DuplicateAgentError, InvalidSuiteError
from common.metrics import MetricsCollector
from coordinator.coordinator import AgentCoordinator
from coordinator.models import AgentStatus, KnowledgeType, TaskStatus
from orchestrator.history import ExecutionHistory
from orchestrator.models import TestSuite
from orchestrator.orchestrator import TestOrchestrator

from .config import CoordinationSettings, settings as default_settings
from .schemas import (
    AgentRegistration,
    ApiResponse,
    HeartbeatRequest,
    KnowledgeShareRequest,
    KnowledgeUsageRequest,
    LockReleaseRequest,
    LockRequest,
    SuiteExecuteRequest,
    TaskCompleteRequest,
    TaskCreateRequest,
    TaskFailRequest,
    TaskReport,
)

# 로깅 설정
logging.basicConfig(
    level=getattr(logging, default_settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _ok(message: str, data=None) -> ApiResponse:
    return ApiResponse(status="success", message=message, data=data)


def create_app(
    settings: Optional[CoordinationSettings] = None,
    coordinator: Optional[AgentCoordinator] = None,
    resolver: Optional[ConflictResolver] = None,
    orchestrator: Optional[TestOrchestrator] = None,
    run_background_loops: bool = True,
) -> FastAPI:
    """
    FastAPI 앱 생성

    Args:
        settings: 서비스 설정 (기본값: 환경 변수 기반 설정)
        coordinator / resolver / orchestrator: 미리 구성된 컴포넌트 (테스트용)
        run_background_loops: lifespan 에서 주기 작업을 시작할지 여부

    Returns:
        FastAPI: 컴포넌트가 app.state 에 연결된 앱
    """
    settings = settings or default_settings
    resolver = resolver or ConflictResolver(policy=settings.conflict_policy())
    if coordinator is None:
        coordinator = AgentCoordinator(config=settings.coordinator_config(), resolver=resolver)
    elif coordinator.resolver is None:
        coordinator.attach_resolver(resolver)
    resolver = coordinator.resolver
    orchestrator = orchestrator or TestOrchestrator(
        coordinator,
        config=settings.orchestration_config(),
        history=ExecutionHistory(settings.REDIS_URL, max_records=settings.HISTORY_MAX_RECORDS),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """애플리케이션 시작/종료 시 주기 작업 관리"""
        if run_background_loops:
            resolver.start()
            coordinator.start()
        logger.info(f"{settings.APP_NAME} 서비스가 시작되었습니다.")
        yield
        for task in list(app.state.suite_runs.values()):
            task.cancel()
        coordinator.stop()
        resolver.stop()
        logger.info(f"{settings.APP_NAME} 서비스가 종료되었습니다.")

    app = FastAPI(
        title="Browser Agent Coordination API",
        description="브라우저 자동화 에이전트 조정, 리소스 중재, 테스트 오케스트레이션 API 서비스",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # CORS 설정
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.resolver = resolver
    app.state.orchestrator = orchestrator
    app.state.suite_runs = {}

    # ------------------------------------------------------------------
    # 에이전트
    # ------------------------------------------------------------------
    @app.post("/agents", status_code=201, response_model=ApiResponse)
    async def register_agent(request: AgentRegistration):
        """새 에이전트 등록"""
        try:
            agent = coordinator.register_agent(
                request.id, request.capabilities, name=request.name, metadata=request.metadata
            )
        except DuplicateAgentError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _ok(f"에이전트 '{agent.id}' 등록 완료", agent.model_dump(mode="json"))

    @app.delete("/agents/{agent_id}", response_model=ApiResponse)
    async def unregister_agent(agent_id: str):
        if not coordinator.unregister_agent(agent_id):
            raise HTTPException(status_code=404, detail=f"에이전트를 찾을 수 없습니다: {agent_id}")
        return _ok(f"에이전트 '{agent_id}' 등록 해제 완료")

    @app.post("/agents/{agent_id}/heartbeat", response_model=ApiResponse)
    async def agent_heartbeat(agent_id: str, request: Optional[HeartbeatRequest] = None):
        status = request.status if request else None
        if not coordinator.heartbeat(agent_id, status):
            raise HTTPException(status_code=404, detail=f"에이전트를 찾을 수 없습니다: {agent_id}")
        return _ok("하트비트 갱신 완료")

    @app.get("/agents", response_model=ApiResponse)
    async def list_agents(status: Optional[AgentStatus] = Query(None)):
        agents = coordinator.get_agents(status)
        return _ok(f"에이전트 {len(agents)}개", [a.model_dump(mode="json") for a in agents])

    @app.get("/agents/{agent_id}", response_model=ApiResponse)
    async def get_agent(agent_id: str):
        agent = coordinator.get_agent(agent_id)
        if agent is None:
            raise HTTPException(status_code=404, detail=f"에이전트를 찾을 수 없습니다: {agent_id}")
        return _ok("에이전트 조회 완료", agent.model_dump(mode="json"))

    @app.get("/agents/{agent_id}/messages", response_model=ApiResponse)
    async def get_messages(agent_id: str, limit: int = Query(10, ge=1)):
        if coordinator.get_agent(agent_id) is None:
            raise HTTPException(status_code=404, detail=f"에이전트를 찾을 수 없습니다: {agent_id}")
        messages = coordinator.get_messages(agent_id, limit)
        return _ok(f"메시지 {len(messages)}개", [m.model_dump(mode="json") for m in messages])

    # ------------------------------------------------------------------
    # 태스크
    # ------------------------------------------------------------------
    @app.post("/tasks", status_code=201, response_model=ApiResponse)
    async def create_task(request: TaskCreateRequest):
        task_id = coordinator.create_task(
            request.type,
            payload=request.payload,
            priority=request.priority,
            dependencies=request.dependencies,
            required_capabilities=request.required_capabilities,
        )
        return _ok("태스크 생성 완료", {"task_id": task_id})

    @app.get("/tasks", response_model=ApiResponse)
    async def list_tasks(status: Optional[TaskStatus] = Query(None), assigned_to: Optional[str] = Query(None)):
        tasks = coordinator.get_tasks(status, assigned_to)
        return _ok(f"태스크 {len(tasks)}개", [t.model_dump(mode="json") for t in tasks])

    @app.post("/tasks/distribute", response_model=ApiResponse)
    async def distribute_tasks():
        """스케줄링 주기를 즉시 한 번 실행"""
        assigned = coordinator.distribute_tasks()
        return _ok(f"태스크 {assigned}개 배정", {"assigned": assigned})

    @app.get("/tasks/{task_id}", response_model=ApiResponse)
    async def get_task(task_id: str):
        task = coordinator.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"태스크를 찾을 수 없습니다: {task_id}")
        return _ok("태스크 조회 완료", task.model_dump(mode="json"))

    def _require_task(task_id: str) -> None:
        if coordinator.get_task(task_id) is None:
            raise HTTPException(status_code=404, detail=f"태스크를 찾을 수 없습니다: {task_id}")

    @app.post("/tasks/{task_id}/start", response_model=ApiResponse)
    async def start_task(task_id: str, request: Optional[TaskReport] = None):
        _require_task(task_id)
        if not coordinator.start_task(task_id, request.agent_id if request else None):
            raise HTTPException(status_code=409, detail=f"태스크를 시작할 수 없는 상태입니다: {task_id}")
        return _ok("태스크 시작")

    @app.post("/tasks/{task_id}/complete", response_model=ApiResponse)
    async def complete_task(task_id: str, request: TaskCompleteRequest):
        _require_task(task_id)
        if not coordinator.complete_task(task_id, request.result, agent_id=request.agent_id):
            raise HTTPException(status_code=409, detail=f"태스크를 완료 처리할 수 없습니다: {task_id}")
        return _ok("태스크 완료")

    @app.post("/tasks/{task_id}/fail", response_model=ApiResponse)
    async def fail_task(task_id: str, request: TaskFailRequest):
        _require_task(task_id)
        if not coordinator.fail_task(task_id, request.error, agent_id=request.agent_id):
            raise HTTPException(status_code=409, detail=f"태스크를 실패 처리할 수 없습니다: {task_id}")
        return _ok("태스크 실패 처리")

    # ------------------------------------------------------------------
    # 리소스 락
    # ------------------------------------------------------------------
    @app.post("/locks/acquire", response_model=ApiResponse)
    async def acquire_lock(request: LockRequest):
        """
        리소스 락 획득 시도

        granted 가 False 면 대기열에 들어갔거나 취소된 것이다 (conflicts 조회로 확인).
        """
        granted = coordinator.acquire_resource(
            request.agent_id,
            request.resource_id,
            request.resource_type,
            mode=request.mode,
            timeout=request.timeout,
            strategy=request.strategy,
        )
        return _ok("락 획득" if granted else "락 대기", {
            "granted": granted,
            "queue": resolver.get_wait_queue(request.resource_id, request.resource_type),
        })

    @app.post("/locks/release", response_model=ApiResponse)
    async def release_lock(request: LockReleaseRequest):
        released = resolver.release_lock(request.resource_id, request.resource_type, request.agent_id)
        return _ok("락 해제" if released else "보유하지 않은 락", {"released": released})

    @app.get("/locks", response_model=ApiResponse)
    async def list_locks():
        locks = resolver.get_active_locks()
        return _ok(f"활성 락 {len(locks)}개", [lock.model_dump(mode="json") for lock in locks])

    @app.get("/conflicts", response_model=ApiResponse)
    async def list_conflicts(resolved: Optional[bool] = Query(None)):
        conflicts = resolver.get_conflicts(resolved)
        return _ok(f"충돌 {len(conflicts)}개", [c.model_dump(mode="json") for c in conflicts])

    @app.get("/conflicts/stats", response_model=ApiResponse)
    async def conflict_stats():
        return _ok("충돌 통계", resolver.get_conflict_stats().model_dump(mode="json"))

    # ------------------------------------------------------------------
    # 공유 지식
    # ------------------------------------------------------------------
    @app.post("/knowledge", status_code=201, response_model=ApiResponse)
    async def share_knowledge(request: KnowledgeShareRequest):
        knowledge_id = coordinator.share_knowledge(
            request.type,
            contributed_by=request.contributed_by,
            content=request.content,
            confidence=request.confidence,
            success_rate=request.success_rate,
        )
        return _ok("지식 공유 완료", {"knowledge_id": knowledge_id})

    @app.get("/knowledge", response_model=ApiResponse)
    async def query_knowledge(
        type: Optional[KnowledgeType] = Query(None),
        min_confidence: Optional[float] = Query(None, ge=0.0, le=1.0),
        contributed_by: Optional[str] = Query(None),
        limit: Optional[int] = Query(None, ge=1),
    ):
        entries = coordinator.query_knowledge(type, min_confidence, contributed_by, limit)
        return _ok(f"지식 {len(entries)}개", [k.model_dump(mode="json") for k in entries])

    @app.post("/knowledge/{knowledge_id}/usage", response_model=ApiResponse)
    async def record_knowledge_usage(knowledge_id: str, request: KnowledgeUsageRequest):
        if not coordinator.record_knowledge_usage(knowledge_id, request.success):
            raise HTTPException(status_code=404, detail=f"지식을 찾을 수 없습니다: {knowledge_id}")
        return _ok("지식 사용 결과 반영")

    # ------------------------------------------------------------------
    # 테스트 스위트
    # ------------------------------------------------------------------
    @app.post("/suites", status_code=201, response_model=ApiResponse)
    async def register_suite(suite: TestSuite):
        try:
            suite_id = orchestrator.register_suite(suite)
        except InvalidSuiteError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return _ok(f"테스트 스위트 '{suite.name}' 등록 완료", {"suite_id": suite_id})

    @app.post("/suites/{suite_id}/execute", status_code=202, response_model=ApiResponse)
    async def execute_suite(suite_id: str, request: Request, body: Optional[SuiteExecuteRequest] = None):
        """스위트를 백그라운드에서 실행 (결과는 /suites/{id}/results 로 조회)"""
        if orchestrator.get_suite(suite_id) is None:
            raise HTTPException(status_code=404, detail=f"테스트 스위트를 찾을 수 없습니다: {suite_id}")
        runs = request.app.state.suite_runs
        if orchestrator.is_active(suite_id) or suite_id in runs:
            raise HTTPException(status_code=409, detail=f"이미 실행 중인 스위트입니다: {suite_id}")
        if not [a for a in coordinator.get_agents() if a.status != AgentStatus.OFFLINE]:
            raise HTTPException(status_code=503, detail="테스트 실행에 사용할 수 있는 에이전트가 없습니다")

        task = asyncio.create_task(orchestrator.execute_suite(suite_id, body.options if body else None))
        runs[suite_id] = task

        def _done(finished: asyncio.Task) -> None:
            if runs.get(suite_id) is finished:
                del runs[suite_id]
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(f"테스트 스위트 실행 실패: {suite_id} ({finished.exception()})")

        task.add_done_callback(_done)
        return _ok("테스트 스위트 실행 시작", {"suite_id": suite_id})

    @app.get("/suites/{suite_id}/results", response_model=ApiResponse)
    async def get_suite_results(suite_id: str):
        results = orchestrator.get_suite_results(suite_id)
        if results is None:
            raise HTTPException(status_code=404, detail=f"실행 결과가 없습니다: {suite_id}")
        return _ok("실행 결과 조회 완료", {
            "active": orchestrator.is_active(suite_id),
            "results": results.model_dump(mode="json"),
        })

    @app.post("/suites/{suite_id}/cancel", response_model=ApiResponse)
    async def cancel_suite(suite_id: str):
        if not orchestrator.cancel_suite(suite_id):
            raise HTTPException(status_code=409, detail=f"실행 중인 스위트가 아닙니다: {suite_id}")
        return _ok("테스트 스위트 취소")

    # ------------------------------------------------------------------
    # 지표 / 상태
    # ------------------------------------------------------------------
    @app.get("/metrics", response_model=ApiResponse)
    async def get_metrics():
        return _ok("지표 조회 완료", {
            "orchestrator": orchestrator.get_metrics().model_dump(mode="json"),
            "conflicts": resolver.get_conflict_stats().model_dump(mode="json"),
        })

    @app.get("/metrics/prometheus")
    async def prometheus_metrics():
        return Response(content=MetricsCollector.export_latest(), media_type=prom.CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "running": coordinator.is_running,
            "history_backend": orchestrator.history.backend,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)
