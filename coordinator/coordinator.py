"""
에이전트 코디네이터

에이전트 레지스트리, 태스크 큐, 스케줄링/생존 확인 주기 작업, 메시지 채널과
공유 지식 저장소를 관리한다. 리소스 락이 필요한 경우 연결된 ConflictResolver 에
위임한다.
"""
import asyncio
import itertools
import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from common.errors import DuplicateAgentError
from common.events import EventEmitter
from common.metrics import MetricsCollector

from .models import (
    IN_FLIGHT_STATUSES,
    Agent,
    AgentCapability,
    AgentMessage,
    AgentStatus,
    AgentTask,
    CapabilityType,
    CoordinationMetrics,
    CoordinatorConfig,
    KnowledgeType,
    MessageType,
    SharedKnowledge,
    TaskStatus,
)
from .scoring import AgentScorer, CapabilityLoadScorer, capabilities_for_task_type, select_best_agent

logger = logging.getLogger(__name__)

PendingEvents = List[Tuple[str, tuple]]

# 태스크 배정이 불가능한 에이전트 상태
UNAVAILABLE_STATUSES = (AgentStatus.OFFLINE, AgentStatus.ERROR)


class AgentCoordinator:
    """
    에이전트 코디네이터

    레지스트리 변경은 하나의 RLock 아래에서 원자적으로 처리되고, 이벤트 발행과
    ConflictResolver 호출은 락을 놓은 뒤에 수행한다.
    """

    def __init__(
        self,
        config: Optional[CoordinatorConfig] = None,
        scorer: Optional[AgentScorer] = None,
        resolver=None,
        clock: Callable[[], float] = time.time,
    ):
        """
        코디네이터 초기화

        Args:
            config: 코디네이터 설정
            scorer: 태스크-에이전트 점수 계산기 (기본값: 능력/부하 기반)
            resolver: 리소스 락에 사용할 ConflictResolver (선택)
            clock: 현재 시각 함수 (테스트에서 교체 가능)
        """
        self.config = config or CoordinatorConfig()
        self.scorer = scorer or CapabilityLoadScorer()
        self.clock = clock
        self.events = EventEmitter()
        self.resolver = None

        self._agents: Dict[str, Agent] = {}  # 삽입 순서 = 등록 순서
        self._tasks: Dict[str, AgentTask] = {}
        self._inboxes: Dict[str, Deque[AgentMessage]] = {}
        self._knowledge: Dict[str, SharedKnowledge] = {}
        self._waiters: Dict[str, List[asyncio.Future]] = {}
        self._sequence = itertools.count()
        self._lock = threading.RLock()
        self._tick_tasks: List[asyncio.Task] = []

        if resolver is not None:
            self.attach_resolver(resolver)

    # ------------------------------------------------------------------
    # 생명주기
    # ------------------------------------------------------------------
    def attach_resolver(self, resolver) -> None:
        """ConflictResolver 연결 (취소 이벤트 구독, 에이전트 우선순위 제공)"""
        self.resolver = resolver
        resolver.set_agent_priority_provider(self._agent_priority)
        resolver.events.on("task:cancelled", self._on_task_cancelled)

    def start(self) -> None:
        """스케줄링/생존 확인 주기 작업 시작 (실행 중인 이벤트 루프 필요)"""
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._tick_tasks = [
            loop.create_task(self._periodic(self.config.task_distribution_interval, self.distribute_tasks)),
            loop.create_task(self._periodic(self.config.heartbeat_check_interval, self.check_agent_heartbeats)),
        ]
        logger.info(
            f"코디네이터 시작 (분배 주기: {self.config.task_distribution_interval}초, "
            f"하트비트 확인 주기: {self.config.heartbeat_check_interval}초)"
        )
        self.events.emit("coordinator:started")

    def stop(self) -> None:
        if not self._tick_tasks:
            return
        for task in self._tick_tasks:
            task.cancel()
        self._tick_tasks = []
        self.broadcast(MessageType.STATUS, {"status": "coordinator-stopping"}, priority=10)
        logger.info("코디네이터 중지")
        self.events.emit("coordinator:stopped")

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tick_tasks)

    async def _periodic(self, interval: float, action: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                action()
            except Exception:
                logger.exception(f"주기 작업 실행 중 오류: {action.__name__}")

    def cleanup(self) -> None:
        """주기 작업 중지 및 모든 상태 초기화"""
        self.stop()
        with self._lock:
            waiters = [f for futures in self._waiters.values() for f in futures]
            self._agents.clear()
            self._tasks.clear()
            self._inboxes.clear()
            self._knowledge.clear()
            self._waiters.clear()
        for future in waiters:
            try:
                future.get_loop().call_soon_threadsafe(future.cancel)
            except RuntimeError:
                logger.debug("이벤트 루프가 닫혀 대기 취소를 전달하지 못함")
        if self.resolver is not None:
            self.resolver.events.off("task:cancelled", self._on_task_cancelled)
        self.events.remove_all_listeners()

    # ------------------------------------------------------------------
    # 에이전트 관리
    # ------------------------------------------------------------------
    def register_agent(
        self,
        agent_id: str,
        capabilities: Iterable[Any] = (),
        name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Agent:
        """
        에이전트 등록

        Args:
            agent_id: 에이전트 ID
            capabilities: AgentCapability 또는 {"type", "proficiency"} 딕셔너리 목록
            name: 표시 이름 (기본값: agent_id)
            metadata: 부가 정보

        Returns:
            등록된 에이전트 정보 (복사본)

        Raises:
            DuplicateAgentError: 이미 등록된 ID 인 경우
        """
        caps = [c if isinstance(c, AgentCapability) else AgentCapability.model_validate(c) for c in capabilities]

        with self._lock:
            if agent_id in self._agents:
                raise DuplicateAgentError(agent_id)
            agent = Agent(
                id=agent_id,
                name=name or agent_id,
                capabilities=caps,
                last_heartbeat=self.clock(),
                metadata=metadata or {},
            )
            self._agents[agent_id] = agent
            self._inboxes[agent_id] = deque(maxlen=self.config.message_retention)
            snapshot = agent.model_copy(deep=True)

        logger.info(f"에이전트 등록 완료: {agent_id} (능력: {[c.type.value for c in caps]})")
        MetricsCollector.record_agent_event("registered")
        self.events.emit("agent:registered", snapshot)
        return snapshot

    def unregister_agent(self, agent_id: str) -> bool:
        """
        에이전트 제거 (진행 중 태스크는 pending 으로 되돌린다)

        Returns:
            제거했으면 True, 알 수 없는 ID 면 False
        """
        events: PendingEvents = []
        with self._lock:
            agent = self._agents.pop(agent_id, None)
            if agent is None:
                return False
            self._inboxes.pop(agent_id, None)
            self._requeue_agent_tasks(agent_id, events)
            events.append(("agent:unregistered", (agent_id,)))

        self._release_agent_locks(agent_id)
        logger.info(f"에이전트 제거 완료: {agent_id}")
        MetricsCollector.record_agent_event("unregistered")
        self._emit_all(events)
        return True

    def heartbeat(self, agent_id: str, status: Optional[AgentStatus] = None) -> bool:
        """
        에이전트 생존 신호 갱신

        Args:
            agent_id: 에이전트 ID
            status: 명시적 상태 변경 (없으면 offline 에이전트만 idle 로 복구).
                진행 중 태스크가 있는 동안의 idle 요청은 무시하고, offline 요청은
                하트비트 시간 초과와 같이 태스크를 pending 으로 되돌린다.

        Returns:
            알 수 없는 ID 면 False
        """
        events: PendingEvents = []
        with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return False
            previous = agent.status
            agent.last_heartbeat = self.clock()
            if status is not None:
                status = AgentStatus(status)
                if status == AgentStatus.IDLE and self._has_in_flight(agent_id):
                    logger.debug(f"진행 중 태스크가 있어 idle 상태 요청 무시: {agent_id}")
                    status = AgentStatus.BUSY
                agent.status = status
            elif agent.status == AgentStatus.OFFLINE:
                agent.status = AgentStatus.IDLE
            current = agent.status

            went_offline = current == AgentStatus.OFFLINE and previous != AgentStatus.OFFLINE
            if went_offline:
                agent.current_task = None
                self._requeue_agent_tasks(agent_id, events)
                events.append(("agent:offline", (agent_id,)))

        if went_offline:
            logger.warning(f"에이전트가 offline 상태를 보고함: {agent_id}")
            MetricsCollector.record_agent_event("offline")
            self._release_agent_locks(agent_id)
        elif previous == AgentStatus.OFFLINE and current != AgentStatus.OFFLINE:
            logger.info(f"에이전트 복구: {agent_id} ({current.value})")
        self._emit_all(events)
        self.events.emit("agent:heartbeat", agent_id, current)
        return True

    def check_agent_heartbeats(self) -> List[str]:
        """
        하트비트 시간 초과 에이전트를 offline 으로 전환하고 태스크를 재배정 대기로 되돌린다.

        Returns:
            이번에 offline 으로 전환된 에이전트 ID 목록
        """
        events: PendingEvents = []
        offline: List[str] = []

        with self._lock:
            now = self.clock()
            for agent in self._agents.values():
                if agent.status == AgentStatus.OFFLINE:
                    continue
                if now - agent.last_heartbeat <= self.config.heartbeat_timeout:
                    continue
                agent.status = AgentStatus.OFFLINE
                agent.current_task = None
                offline.append(agent.id)
                self._requeue_agent_tasks(agent.id, events)
                events.append(("agent:offline", (agent.id,)))

        for agent_id in offline:
            logger.warning(f"에이전트 하트비트 시간 초과, offline 처리: {agent_id}")
            MetricsCollector.record_agent_event("offline")
            self._release_agent_locks(agent_id)
        self._emit_all(events)
        return offline

    # ------------------------------------------------------------------
    # 태스크 관리
    # ------------------------------------------------------------------
    def create_task(
        self,
        task_type: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[float] = None,
        dependencies: Optional[Iterable[str]] = None,
        required_capabilities: Optional[Iterable[CapabilityType]] = None,
    ) -> str:
        """
        태스크 생성

        Args:
            task_type: 태스크 유형 (예: 'navigation-test')
            payload: 워커에게 전달할 데이터
            priority: 우선순위 (높을수록 먼저, 기본값은 설정값)
            dependencies: 먼저 완료되어야 하는 태스크 ID 목록
            required_capabilities: 필요한 능력 (없으면 유형 문자열에서 추론)

        Returns:
            생성된 태스크 ID
        """
        if required_capabilities is None:
            required = capabilities_for_task_type(task_type)
        else:
            required = {CapabilityType(c) for c in required_capabilities}

        with self._lock:
            task = AgentTask(
                type=task_type,
                priority=self.config.default_task_priority if priority is None else priority,
                payload=payload or {},
                dependencies=list(dependencies or ()),
                required_capabilities=required,
                sequence=next(self._sequence),
                created_at=self.clock(),
            )
            self._tasks[task.id] = task
            snapshot = task.model_copy(deep=True)

        logger.debug(f"태스크 생성: {task.id} (유형: {task_type}, 우선순위: {task.priority})")
        MetricsCollector.record_task(task_type, TaskStatus.PENDING.value)
        self.events.emit("task:created", snapshot)
        return task.id

    def distribute_tasks(self) -> int:
        """
        스케줄링 한 주기: 대기 태스크를 우선순위 순으로 유휴 에이전트에 배정

        Returns:
            이번 주기에 배정된 태스크 수
        """
        events: PendingEvents = []
        assigned = 0

        with self._lock:
            pool = [a for a in self._agents.values() if a.status == AgentStatus.IDLE]
            if not pool:
                return 0
            ready = [
                t for t in self._tasks.values()
                if t.status == TaskStatus.PENDING and self._dependencies_met(t)
            ]
            ready.sort(key=lambda t: (-t.priority, t.sequence))

            for task in ready:
                if not pool:
                    break
                agent = select_best_agent(task, pool, self.scorer)
                if agent is None:
                    continue
                pool.remove(agent)
                self._assign(task, agent, events)
                assigned += 1

        if assigned:
            logger.info(f"태스크 {assigned}개 배정 완료")
        self._emit_all(events)
        return assigned

    def assign_task(self, task_id: str, agent_id: str) -> bool:
        """
        태스크를 특정 에이전트에 직접 배정

        Returns:
            태스크가 pending 이 아니거나 에이전트가 없거나 offline/error 이면 False
        """
        events: PendingEvents = []
        with self._lock:
            task = self._tasks.get(task_id)
            agent = self._agents.get(agent_id)
            if task is None or agent is None:
                return False
            if task.status != TaskStatus.PENDING or agent.status in UNAVAILABLE_STATUSES:
                return False
            self._assign(task, agent, events)

        self._emit_all(events)
        return True

    def start_task(self, task_id: str, agent_id: Optional[str] = None) -> bool:
        """assigned 태스크를 in-progress 로 전환 (워커의 시작 보고)"""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.ASSIGNED:
                return False
            if agent_id is not None and task.assigned_to != agent_id:
                return False
            task.status = TaskStatus.IN_PROGRESS
            task.started_at = self.clock()
            snapshot = task.model_copy(deep=True)

        MetricsCollector.record_task(task.type, TaskStatus.IN_PROGRESS.value)
        self.events.emit("task:started", snapshot)
        return True

    def complete_task(self, task_id: str, result: Any = None, agent_id: Optional[str] = None) -> bool:
        """
        태스크 완료 처리

        Args:
            task_id: 태스크 ID
            result: 실행 결과
            agent_id: 보고한 에이전트 (지정 시 현재 담당자와 다르면 거부)

        Returns:
            처리했으면 True
        """
        return self._finish(task_id, TaskStatus.COMPLETED, result=result, agent_id=agent_id)

    def fail_task(self, task_id: str, error: str, agent_id: Optional[str] = None) -> bool:
        """태스크 실패 처리 (종료 상태, 코디네이터는 재시도하지 않는다)"""
        return self._finish(task_id, TaskStatus.FAILED, error=error, agent_id=agent_id)

    def cancel_agent_tasks(self, agent_id: str, reason: str) -> List[str]:
        """
        에이전트의 진행 중 태스크를 모두 실패 처리하고 락을 해제한다.

        Returns:
            실패 처리된 태스크 ID 목록
        """
        with self._lock:
            task_ids = [
                t.id for t in self._tasks.values()
                if t.assigned_to == agent_id and t.status in IN_FLIGHT_STATUSES
            ]

        cancelled = [task_id for task_id in task_ids if self.fail_task(task_id, reason)]
        self._release_agent_locks(agent_id)
        if cancelled:
            logger.warning(f"에이전트 {agent_id}의 태스크 {len(cancelled)}개 취소: {reason}")
        return cancelled

    def _finish(
        self,
        task_id: str,
        status: TaskStatus,
        result: Any = None,
        error: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.is_terminal:
                return False
            # pending 태스크는 취소(실패)만 가능
            if status == TaskStatus.COMPLETED and task.status not in IN_FLIGHT_STATUSES:
                return False
            if agent_id is not None and task.assigned_to != agent_id:
                logger.warning(f"담당자가 아닌 에이전트의 보고 무시: {task_id} (보고: {agent_id}, 담당: {task.assigned_to})")
                return False

            now = self.clock()
            task.status = status
            task.completed_at = now
            if status == TaskStatus.COMPLETED:
                task.result = result
            else:
                task.error = error

            agent = self._agents.get(task.assigned_to) if task.assigned_to else None
            if agent is not None:
                if status == TaskStatus.COMPLETED:
                    agent.tasks_completed += 1
                agent.success_rate = agent.tasks_completed / max(1, agent.tasks_assigned)
                if agent.current_task == task_id:
                    agent.current_task = None
                if agent.status != AgentStatus.OFFLINE:
                    agent.status = AgentStatus.IDLE

            snapshot = task.model_copy(deep=True)
            waiters = self._waiters.pop(task_id, [])

        MetricsCollector.record_task(snapshot.type, status.value)
        if snapshot.duration is not None:
            MetricsCollector.record_task_duration(snapshot.type, snapshot.duration)

        for future in waiters:
            self._settle(future, snapshot)

        if status == TaskStatus.COMPLETED:
            logger.debug(f"태스크 완료: {task_id}")
            self.events.emit("task:completed", snapshot)
        else:
            logger.info(f"태스크 실패: {task_id} ({error})")
            self.events.emit("task:failed", snapshot, error)
        return True

    async def wait_for_task(self, task_id: str, timeout: Optional[float] = None) -> Optional[AgentTask]:
        """
        태스크가 종료 상태가 될 때까지 대기 (폴링 없이 완료/실패 통지로 깨어난다)

        Returns:
            종료된 태스크 (복사본), 알 수 없는 ID 면 None

        Raises:
            asyncio.TimeoutError: timeout 안에 종료되지 않은 경우
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            if task.is_terminal:
                return task.model_copy(deep=True)
            self._waiters.setdefault(task_id, []).append(future)

        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            with self._lock:
                futures = self._waiters.get(task_id)
                if futures and future in futures:
                    futures.remove(future)
                    if not futures:
                        del self._waiters[task_id]

    # ------------------------------------------------------------------
    # 메시지
    # ------------------------------------------------------------------
    def send_message(
        self,
        to: Optional[str],
        message_type: MessageType,
        payload: Any = None,
        priority: float = 5,
    ) -> Optional[AgentMessage]:
        """
        에이전트 메시지 전송 (to 가 None 이면 모든 에이전트에게 브로드캐스트)

        Returns:
            전송된 메시지, 수신 에이전트가 없으면 None
        """
        message = AgentMessage(
            to=to,
            type=MessageType(message_type),
            payload=payload,
            priority=priority,
            timestamp=self.clock(),
        )
        with self._lock:
            if not self._deliver(message):
                logger.warning(f"알 수 없는 에이전트에게 메시지 전송 시도: {to}")
                return None

        self.events.emit("message:sent", message.model_copy(deep=True))
        return message

    def broadcast(self, message_type: MessageType, payload: Any = None, priority: float = 5) -> AgentMessage:
        message = AgentMessage(type=MessageType(message_type), payload=payload, priority=priority, timestamp=self.clock())
        with self._lock:
            self._deliver(message)
        self.events.emit("message:sent", message.model_copy(deep=True))
        return message

    def get_messages(self, agent_id: str, limit: int = 10) -> List[AgentMessage]:
        """에이전트가 받은 최근 메시지 (오래된 것부터)"""
        with self._lock:
            inbox = self._inboxes.get(agent_id)
            if not inbox or limit <= 0:
                return []
            return [m.model_copy(deep=True) for m in list(inbox)[-limit:]]

    # ------------------------------------------------------------------
    # 공유 지식
    # ------------------------------------------------------------------
    def share_knowledge(
        self,
        knowledge_type: KnowledgeType,
        contributed_by: str,
        content: Any,
        confidence: float,
        success_rate: float = 1.0,
    ) -> str:
        """
        지식 등록 후 모든 에이전트에게 브로드캐스트

        Returns:
            등록된 지식 ID
        """
        now = self.clock()
        knowledge = SharedKnowledge(
            type=KnowledgeType(knowledge_type),
            contributed_by=contributed_by,
            content=content,
            confidence=confidence,
            success_rate=success_rate,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._knowledge[knowledge.id] = knowledge
            snapshot = knowledge.model_copy(deep=True)

        self.broadcast(MessageType.KNOWLEDGE_SHARE, snapshot.model_dump(mode="json"))
        logger.info(f"지식 공유: {knowledge.id} (유형: {knowledge.type.value}, 기여자: {contributed_by})")
        self.events.emit("knowledge:shared", snapshot)
        return knowledge.id

    def query_knowledge(
        self,
        knowledge_type: Optional[KnowledgeType] = None,
        min_confidence: Optional[float] = None,
        contributed_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SharedKnowledge]:
        """confidence * success_rate 내림차순으로 지식 조회"""
        with self._lock:
            results = [k.model_copy(deep=True) for k in self._knowledge.values()]

        if knowledge_type is not None:
            results = [k for k in results if k.type == KnowledgeType(knowledge_type)]
        if min_confidence is not None:
            results = [k for k in results if k.confidence >= min_confidence]
        if contributed_by:
            results = [k for k in results if k.contributed_by == contributed_by]

        results.sort(key=lambda k: k.rank_score, reverse=True)
        if limit:
            results = results[:limit]
        return results

    def record_knowledge_usage(self, knowledge_id: str, success: bool) -> bool:
        """지식 사용 결과 반영 (사용/성공 횟수와 성공률 갱신)"""
        with self._lock:
            knowledge = self._knowledge.get(knowledge_id)
            if knowledge is None:
                return False
            knowledge.usage_count += 1
            if success:
                knowledge.success_count += 1
            knowledge.success_rate = knowledge.success_count / knowledge.usage_count
            knowledge.updated_at = self.clock()
        return True

    # ------------------------------------------------------------------
    # 리소스 락
    # ------------------------------------------------------------------
    def acquire_resource(
        self,
        agent_id: str,
        resource_id: str,
        resource_type,
        mode=None,
        timeout: Optional[float] = None,
        strategy=None,
    ) -> bool:
        """
        연결된 ConflictResolver 를 통해 리소스 락 획득

        에이전트의 현재 태스크 우선순위를 함께 전달한다.
        """
        if self.resolver is None:
            raise RuntimeError("ConflictResolver 가 연결되지 않았습니다")

        kwargs = {
            "timeout": timeout,
            "task_priority": self._current_task_priority(agent_id),
            "strategy": strategy,
        }
        if mode is not None:
            kwargs["mode"] = mode
        return self.resolver.acquire_lock(resource_id, resource_type, agent_id, **kwargs)

    def release_resource(self, agent_id: str, resource_id: str, resource_type) -> bool:
        if self.resolver is None:
            raise RuntimeError("ConflictResolver 가 연결되지 않았습니다")
        return self.resolver.release_lock(resource_id, resource_type, agent_id)

    def _current_task_priority(self, agent_id: str) -> float:
        with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None or agent.current_task is None:
                return 0.0
            task = self._tasks.get(agent.current_task)
            return float(task.priority) if task else 0.0

    def _agent_priority(self, agent_id: str) -> float:
        with self._lock:
            agent = self._agents.get(agent_id)
            return agent.success_rate if agent else 0.5

    def _on_task_cancelled(self, agent_id: str, reason: str) -> None:
        self.cancel_agent_tasks(agent_id, reason)

    def _release_agent_locks(self, agent_id: str) -> None:
        if self.resolver is not None:
            self.resolver.release_agent(agent_id)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------
    def get_metrics(self) -> CoordinationMetrics:
        with self._lock:
            agents = list(self._agents.values())
            tasks = list(self._tasks.values())
            knowledge_size = len(self._knowledge)

        def count_agents(status: AgentStatus) -> int:
            return sum(1 for a in agents if a.status == status)

        def count_tasks(status: TaskStatus) -> int:
            return sum(1 for t in tasks if t.status == status)

        durations = [
            t.duration for t in tasks
            if t.status == TaskStatus.COMPLETED and t.duration is not None
        ]
        busy = count_agents(AgentStatus.BUSY)

        return CoordinationMetrics(
            total_agents=len(agents),
            active_agents=busy,
            idle_agents=count_agents(AgentStatus.IDLE),
            offline_agents=count_agents(AgentStatus.OFFLINE),
            error_agents=count_agents(AgentStatus.ERROR),
            total_tasks=len(tasks),
            pending_tasks=count_tasks(TaskStatus.PENDING),
            assigned_tasks=count_tasks(TaskStatus.ASSIGNED),
            in_progress_tasks=count_tasks(TaskStatus.IN_PROGRESS),
            completed_tasks=count_tasks(TaskStatus.COMPLETED),
            failed_tasks=count_tasks(TaskStatus.FAILED),
            average_task_duration=sum(durations) / len(durations) if durations else 0.0,
            system_utilization=(busy / len(agents)) * 100 if agents else 0.0,
            knowledge_base_size=knowledge_size,
        )

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            return agent.model_copy(deep=True) if agent else None

    def get_agents(self, status: Optional[AgentStatus] = None) -> List[Agent]:
        with self._lock:
            return [
                a.model_copy(deep=True) for a in self._agents.values()
                if status is None or a.status == AgentStatus(status)
            ]

    def get_task(self, task_id: str) -> Optional[AgentTask]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def get_tasks(self, status: Optional[TaskStatus] = None, assigned_to: Optional[str] = None) -> List[AgentTask]:
        with self._lock:
            tasks = list(self._tasks.values())
            if status is not None:
                tasks = [t for t in tasks if t.status == TaskStatus(status)]
            if assigned_to:
                tasks = [t for t in tasks if t.assigned_to == assigned_to]
            return [t.model_copy(deep=True) for t in tasks]

    # ------------------------------------------------------------------
    # 내부 헬퍼 (self._lock 보유 상태에서 호출)
    # ------------------------------------------------------------------
    def _dependencies_met(self, task: AgentTask) -> bool:
        for dep_id in task.dependencies:
            dep = self._tasks.get(dep_id)
            if dep is None or dep.status != TaskStatus.COMPLETED:
                return False
        return True

    def _has_in_flight(self, agent_id: str) -> bool:
        return any(t.assigned_to == agent_id and t.status in IN_FLIGHT_STATUSES for t in self._tasks.values())

    def _assign(self, task: AgentTask, agent: Agent, events: PendingEvents) -> None:
        task.status = TaskStatus.ASSIGNED
        task.assigned_to = agent.id
        task.assigned_at = self.clock()
        agent.status = AgentStatus.BUSY
        agent.current_task = task.id
        agent.tasks_assigned += 1

        message = AgentMessage(
            to=agent.id,
            type=MessageType.TASK,
            payload={
                "task_id": task.id,
                "type": task.type,
                "payload": task.payload,
                "priority": task.priority,
            },
            priority=task.priority,
            timestamp=self.clock(),
        )
        self._deliver(message)

        logger.debug(f"태스크 배정: {task.id} -> {agent.id}")
        MetricsCollector.record_task(task.type, TaskStatus.ASSIGNED.value)
        events.append(("task:assigned", (task.model_copy(deep=True), agent.id)))
        events.append(("message:sent", (message.model_copy(deep=True),)))

    def _deliver(self, message: AgentMessage) -> bool:
        if message.to is None:
            for inbox in self._inboxes.values():
                inbox.append(message)
            return True
        inbox = self._inboxes.get(message.to)
        if inbox is None:
            return False
        inbox.append(message)
        return True

    def _requeue_agent_tasks(self, agent_id: str, events: PendingEvents) -> None:
        """에이전트 유실 시 진행 중 태스크를 pending 으로 되돌린다 (실패 처리하지 않음)"""
        for task in self._tasks.values():
            if task.assigned_to != agent_id or task.status not in IN_FLIGHT_STATUSES:
                continue
            task.status = TaskStatus.PENDING
            task.assigned_to = None
            task.assigned_at = None
            task.started_at = None
            logger.info(f"태스크 재배정 대기: {task.id} (이전 담당: {agent_id})")
            events.append(("task:reassigned", (task.model_copy(deep=True), agent_id)))

    @staticmethod
    def _settle(future: asyncio.Future, task: AgentTask) -> None:
        """대기 중인 코루틴에 종료된 태스크 전달 (다른 스레드에서 호출되어도 안전)"""
        def _set() -> None:
            if not future.done():
                future.set_result(task)

        try:
            future.get_loop().call_soon_threadsafe(_set)
        except RuntimeError:
            logger.debug(f"이벤트 루프가 닫혀 태스크 결과를 전달하지 못함: {task.id}")

    def _emit_all(self, events: PendingEvents) -> None:
        for name, args in events:
            self.events.emit(name, *args)
