"""
리소스 락 관리와 에이전트 간 충돌 해결

브라우저 컨텍스트, URL, 데이터, 파일 같은 공유 리소스에 대한 락을 관리하고,
경합이 생기면 정책에 따른 전략으로 해결하며, 주기적으로 만료 락 정리와
데드락 탐지를 수행한다.
"""
import asyncio
import logging
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Tuple

from common.events import EventEmitter
from common.metrics import MetricsCollector

from .deadlock import VictimSelector, build_wait_for_graph, describe_cycle, find_cycle, make_victim_selector
from .models import (
    AgentAction,
    Conflict,
    ConflictPolicy,
    ConflictResolution,
    ConflictStats,
    ConflictType,
    LockMode,
    ResolutionAction,
    ResolutionStrategy,
    ResourceLock,
    ResourceType,
    lock_key,
)
from .strategies import (
    Contender,
    PriorityScorer,
    WeightedPriorityScorer,
    rank_contenders,
    resolve_by_cancel,
    resolve_by_merge,
    resolve_by_priority,
    resolve_by_queue,
    resolve_by_split,
)

logger = logging.getLogger(__name__)

PendingEvents = List[Tuple[str, tuple]]


@dataclass
class _LockWaiter:
    """FIFO 대기열 항목"""
    agent_id: str
    resource_id: str
    resource_type: ResourceType
    mode: LockMode
    duration: float
    task_priority: float
    enqueued_at: float
    future: Optional[asyncio.Future] = None


class ConflictResolver:
    """
    리소스 락 관리자 및 충돌 해결기

    모든 락 테이블/대기열 변경은 하나의 RLock 아래에서 원자적으로 처리되고,
    이벤트는 락을 놓은 뒤에 발행된다.
    """

    def __init__(
        self,
        policy: Optional[ConflictPolicy] = None,
        scorer: Optional[PriorityScorer] = None,
        victim_selector: Optional[VictimSelector] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        충돌 해결기 초기화

        Args:
            policy: 충돌 해결 정책 (기본값: queue 전략)
            scorer: 경합자 우선순위 점수 계산기 (기본값: 정책 가중치 기반)
            victim_selector: 데드락 희생자 선택 전략 (기본값: 정책의 victim_selection)
            clock: 현재 시각 함수 (테스트에서 교체 가능)
        """
        self.policy = policy or ConflictPolicy()
        self.scorer = scorer or WeightedPriorityScorer(
            weights=self.policy.priority_weights,
            max_lock_duration=self.policy.max_lock_duration,
        )
        self.victim_selector = victim_selector or make_victim_selector(self.policy.victim_selection)
        self.clock = clock
        self.events = EventEmitter()

        self._locks: Dict[str, List[ResourceLock]] = {}
        self._queues: Dict[str, Deque[_LockWaiter]] = {}
        self._conflicts: "OrderedDict[str, Conflict]" = OrderedDict()
        self._lock = threading.RLock()
        self._detection_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # 생명주기
    # ------------------------------------------------------------------
    def start(self) -> None:
        """데드락 탐지/만료 락 정리 루프 시작 (실행 중인 이벤트 루프 필요)"""
        if self._detection_task and not self._detection_task.done():
            return
        loop = asyncio.get_running_loop()
        self._detection_task = loop.create_task(self._detection_loop())
        logger.info(f"충돌 해결기 시작 (탐지 주기: {self.policy.deadlock_detection_interval}초)")

    def stop(self) -> None:
        if self._detection_task:
            self._detection_task.cancel()
            self._detection_task = None
            logger.info("충돌 해결기 중지")

    async def _detection_loop(self) -> None:
        while True:
            await asyncio.sleep(self.policy.deadlock_detection_interval)
            try:
                self.run_maintenance()
            except Exception:
                logger.exception("데드락 탐지 주기 작업 중 오류")

    def run_maintenance(self) -> List[Conflict]:
        """만료 락 정리 후 데드락 탐지 (한 번의 주기 작업)"""
        self.cleanup_expired_locks()
        return self.detect_deadlocks()

    def set_agent_priority_provider(self, provider: Callable[[str], float]) -> None:
        """에이전트 우선순위 조회 함수 연결 (코디네이터가 성공률을 제공)"""
        if isinstance(self.scorer, WeightedPriorityScorer):
            self.scorer.agent_priority_provider = provider

    # ------------------------------------------------------------------
    # 락 획득/해제
    # ------------------------------------------------------------------
    def acquire_lock(
        self,
        resource_id: str,
        resource_type: ResourceType,
        agent_id: str,
        mode: LockMode = LockMode.WRITE,
        timeout: Optional[float] = None,
        task_priority: float = 0.0,
        strategy: Optional[ResolutionStrategy] = None,
    ) -> bool:
        """
        리소스 락 획득 시도

        Args:
            resource_id: 리소스 ID (예: 브라우저 컨텍스트 ID, URL)
            resource_type: 리소스 유형
            agent_id: 요청 에이전트 ID
            mode: 락 모드 (read 는 공유, write/exclusive 는 단독)
            timeout: 락 유지 시간(초), 기본값은 정책의 max_lock_duration
            task_priority: 요청 에이전트의 현재 태스크 우선순위
            strategy: 이번 요청에만 적용할 해결 전략

        Returns:
            True 면 바로 진행, False 면 대기/재시도/취소 (기록된 Conflict 의 action 참고)
        """
        granted, _waiter = self._acquire(
            resource_id, resource_type, agent_id, mode, timeout, task_priority, strategy
        )
        return granted

    async def acquire_lock_wait(
        self,
        resource_id: str,
        resource_type: ResourceType,
        agent_id: str,
        mode: LockMode = LockMode.WRITE,
        timeout: Optional[float] = None,
        task_priority: float = 0.0,
        wait_timeout: Optional[float] = None,
        strategy: Optional[ResolutionStrategy] = None,
    ) -> bool:
        """
        락 획득 시도 후 대기열에 들어가면 부여될 때까지 기다린다.

        Returns:
            락을 받으면 True, 취소되거나 wait_timeout 이 지나면 False
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        granted, waiter = self._acquire(
            resource_id, resource_type, agent_id, mode, timeout, task_priority, strategy, future
        )
        if granted:
            return True
        if waiter is None:
            return False

        key = lock_key(resource_type, resource_id)
        try:
            return await asyncio.wait_for(future, wait_timeout)
        except asyncio.TimeoutError:
            with self._lock:
                if self._holder_lock(key, agent_id) is not None:
                    return True
                self._remove_waiter(key, waiter)
            logger.info(f"락 대기 시간 초과: {key} (에이전트: {agent_id})")
            return False

    def _acquire(
        self,
        resource_id: str,
        resource_type: ResourceType,
        agent_id: str,
        mode: LockMode,
        timeout: Optional[float],
        task_priority: float,
        strategy: Optional[ResolutionStrategy],
        future: Optional[asyncio.Future] = None,
    ) -> Tuple[bool, Optional[_LockWaiter]]:
        resource_type = ResourceType(resource_type)
        mode = LockMode(mode)
        key = lock_key(resource_type, resource_id)
        duration = timeout if timeout is not None else self.policy.max_lock_duration
        events: PendingEvents = []

        with self._lock:
            now = self.clock()
            holders = self._locks.get(key, [])
            others = [h for h in holders if h.locked_by != agent_id]

            # 1. 보유자 없음, 2. 읽기 공유, 3. 본인만 보유 (재진입/업그레이드)
            shared_read = mode == LockMode.READ and all(h.lock_type == LockMode.READ for h in others)
            if not others or shared_read:
                self._grant(key, resource_id, resource_type, agent_id, mode, duration, task_priority, now, events)
                outcome = True
            elif self._find_waiter(key, agent_id) is not None:
                # 이미 대기 중이면 새 충돌을 만들지 않는다 (폴링 안전)
                return False, None
            else:
                outcome = self._resolve_contention(
                    key, resource_id, resource_type, agent_id, mode, duration,
                    task_priority, strategy, others, now, future, events,
                )

        self._emit_all(events)
        if isinstance(outcome, _LockWaiter):
            return False, outcome
        return outcome, None

    def _resolve_contention(
        self,
        key: str,
        resource_id: str,
        resource_type: ResourceType,
        agent_id: str,
        mode: LockMode,
        duration: float,
        task_priority: float,
        strategy: Optional[ResolutionStrategy],
        others: List[ResourceLock],
        now: float,
        future: Optional[asyncio.Future],
        events: PendingEvents,
    ):
        """
        충돌 기록 및 전략 적용 (self._lock 보유 상태에서 호출)

        Returns:
            True/False (즉시 결과) 또는 대기열에 들어간 _LockWaiter
        """
        strategy = ResolutionStrategy(strategy) if strategy else self.policy.strategy_for(resource_type)
        contenders = [
            Contender(
                agent_id=h.locked_by,
                is_holder=True,
                task_priority=float(h.metadata.get("task_priority", 0.0)),
                since=h.acquired_at,
            )
            for h in others
        ]
        requester = Contender(agent_id=agent_id, is_holder=False, task_priority=task_priority, since=now)
        contenders.append(requester)

        if strategy in (ResolutionStrategy.PRIORITIZE, ResolutionStrategy.CANCEL):
            ranked = rank_contenders(contenders, self.scorer, resource_type, now)
        else:
            ranked = [(c, 0.0) for c in contenders]

        if strategy == ResolutionStrategy.PRIORITIZE:
            resolution = resolve_by_priority(ranked, self.policy.stagger_delay)
        elif strategy == ResolutionStrategy.SPLIT:
            resolution = resolve_by_split(contenders)
        elif strategy == ResolutionStrategy.MERGE:
            resolution = resolve_by_merge(contenders)
        elif strategy == ResolutionStrategy.CANCEL:
            resolution = resolve_by_cancel(ranked)
        else:
            resolution = resolve_by_queue(contenders)

        conflict = self._record_conflict(
            ConflictType.RESOURCE, [c.agent_id for c in contenders], [key], resolution, now, events
        )
        logger.info(
            f"충돌 해결: {key} 전략={resolution.strategy.value} "
            f"참여자={conflict.agents} 사유={resolution.reason}"
        )

        requester_action = resolution.action_for(agent_id)
        requester_wins = resolution.winner == agent_id

        if strategy == ResolutionStrategy.SPLIT:
            partition_id = f"{resource_id}#{agent_id}"
            self._grant(
                lock_key(resource_type, partition_id), partition_id, resource_type, agent_id,
                mode, duration, task_priority, now, events, partition_of=resource_id,
            )
            return True

        if strategy == ResolutionStrategy.PRIORITIZE:
            if requester_wins:
                # 요청자가 모든 보유자보다 우선: 보유자 선점 후 대기열 맨 앞으로
                preempted = [c for c, _ in ranked if c.is_holder]
                for contender in reversed(preempted):
                    revoked = self._revoke(key, contender.agent_id, events)
                    if revoked is not None:
                        self._queue_for(key).appendleft(_LockWaiter(
                            agent_id=revoked.locked_by,
                            resource_id=revoked.resource_id,
                            resource_type=revoked.resource_type,
                            mode=revoked.lock_type,
                            duration=max(revoked.expires_at - revoked.acquired_at, 0.0),
                            task_priority=float(revoked.metadata.get("task_priority", 0.0)),
                            enqueued_at=now,
                        ))
                self._grant(key, resource_id, resource_type, agent_id, mode, duration, task_priority, now, events)
                return True
            return self._enqueue(key, resource_id, resource_type, agent_id, mode, duration, task_priority, now, future, events)

        if strategy == ResolutionStrategy.CANCEL:
            for action in resolution.actions:
                if action.action != ResolutionAction.CANCEL:
                    continue
                if action.agent_id != agent_id:
                    self._revoke(key, action.agent_id, events)
                events.append(("task:cancelled", (action.agent_id, f"Conflict on {key}: {resolution.reason}")))
            if requester_wins:
                self._grant(key, resource_id, resource_type, agent_id, mode, duration, task_priority, now, events)
                self._grant_waiters(key, now, events)
                return True
            self._grant_waiters(key, now, events)
            return False

        if strategy == ResolutionStrategy.MERGE:
            events.append(("task:cancelled", (agent_id, f"Conflict on {key}: {resolution.reason}")))
            return False

        # queue (기본)
        if requester_action is not None and requester_action.action == ResolutionAction.WAIT:
            return self._enqueue(key, resource_id, resource_type, agent_id, mode, duration, task_priority, now, future, events)
        return False

    def release_lock(self, resource_id: str, resource_type: ResourceType, agent_id: str) -> bool:
        """
        락 해제 (보유자만 가능)

        Returns:
            해제했으면 True, 보유하지 않은 락이면 False (락 테이블 변화 없음)
        """
        resource_type = ResourceType(resource_type)
        key = lock_key(resource_type, resource_id)
        events: PendingEvents = []

        with self._lock:
            now = self.clock()
            if self._holder_lock(key, agent_id) is None:
                # split 전략으로 받은 파티션 락
                key = lock_key(resource_type, f"{resource_id}#{agent_id}")
                if self._holder_lock(key, agent_id) is None:
                    return False

            lock = self._remove_holder(key, agent_id)
            events.append(("lock:released", (lock,)))
            MetricsCollector.record_lock_event(lock.resource_type.value, "released")
            self._grant_waiters(key, now, events)

        self._emit_all(events)
        return True

    def release_agent(self, agent_id: str) -> int:
        """
        에이전트의 모든 락과 대기열 항목 제거 (취소/에이전트 유실 시)

        Returns:
            해제된 락 수
        """
        events: PendingEvents = []
        with self._lock:
            released = self._drop_agent(agent_id, self.clock(), events)
        self._emit_all(events)
        if released:
            logger.info(f"에이전트 {agent_id}의 락 {released}개 해제")
        return released

    # ------------------------------------------------------------------
    # 주기 작업
    # ------------------------------------------------------------------
    def cleanup_expired_locks(self) -> List[ResourceLock]:
        """만료된 락을 강제 해제하고 대기자에게 부여"""
        events: PendingEvents = []
        expired: List[ResourceLock] = []

        with self._lock:
            now = self.clock()
            for key in list(self._locks.keys()):
                holders = self._locks[key]
                stale = [h for h in holders if h.is_expired(now)]
                if not stale:
                    continue
                for lock in stale:
                    holders.remove(lock)
                    expired.append(lock.model_copy(deep=True))
                    events.append(("lock:expired", (lock,)))
                    MetricsCollector.record_lock_event(lock.resource_type.value, "expired")
                if not holders:
                    del self._locks[key]
                self._grant_waiters(key, now, events)

        self._emit_all(events)
        if expired:
            logger.warning(f"만료된 락 {len(expired)}개 강제 해제")
        return expired

    def detect_deadlocks(self) -> List[Conflict]:
        """
        대기 그래프의 순환을 찾아 희생자 하나씩 취소하며 모두 해소한다.

        Returns:
            이번 탐지에서 기록된 데드락 Conflict 목록
        """
        detected: List[Conflict] = []

        while True:
            events: PendingEvents = []
            with self._lock:
                now = self.clock()
                holders = {key: [h.locked_by for h in locks] for key, locks in self._locks.items()}
                waiters = {key: [w.agent_id for w in queue] for key, queue in self._queues.items()}
                cycle = find_cycle(build_wait_for_graph(holders, waiters))
                if not cycle:
                    break

                victim = self.victim_selector.select(cycle)
                self.victim_selector.record(victim)

                members = set(cycle)
                resources = sorted(
                    key for key in set(holders) | set(waiters)
                    if members & set(holders.get(key, ())) and members & set(waiters.get(key, ()))
                )
                reason = f"Deadlock detected ({describe_cycle(cycle)}); cancelled agent {victim} to break the cycle"
                resolution = ConflictResolution(
                    strategy=ResolutionStrategy.CANCEL,
                    actions=[
                        AgentAction(
                            agent_id=agent,
                            action=ResolutionAction.CANCEL if agent == victim else ResolutionAction.PROCEED,
                        )
                        for agent in cycle
                    ],
                    reason=reason,
                )
                conflict = self._record_conflict(ConflictType.DEADLOCK, list(cycle), resources, resolution, now, events)
                self._drop_agent(victim, now, events)
                events.append(("deadlock:detected", (conflict,)))
                events.append(("task:cancelled", (victim, reason)))
                MetricsCollector.record_deadlock()
                detected.append(conflict)

            logger.warning(f"데드락 해소: {reason}")
            self._emit_all(events)

        return detected

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------
    def is_locked(self, resource_id: str, resource_type: ResourceType) -> bool:
        with self._lock:
            return bool(self._locks.get(lock_key(resource_type, resource_id)))

    def get_lock(self, resource_id: str, resource_type: ResourceType) -> Optional[ResourceLock]:
        """락 정보 조회 (공유 읽기 락이면 첫 번째 보유자)"""
        with self._lock:
            holders = self._locks.get(lock_key(resource_type, resource_id))
            return holders[0].model_copy(deep=True) if holders else None

    def get_locks(self, resource_id: str, resource_type: ResourceType) -> List[ResourceLock]:
        with self._lock:
            return [h.model_copy(deep=True) for h in self._locks.get(lock_key(resource_type, resource_id), [])]

    def get_active_locks(self) -> List[ResourceLock]:
        with self._lock:
            return [h.model_copy(deep=True) for holders in self._locks.values() for h in holders]

    def get_wait_queue(self, resource_id: str, resource_type: ResourceType) -> List[str]:
        with self._lock:
            return [w.agent_id for w in self._queues.get(lock_key(resource_type, resource_id), ())]

    def get_conflicts(self, resolved: Optional[bool] = None) -> List[Conflict]:
        with self._lock:
            conflicts = list(self._conflicts.values())
        if resolved is not None:
            conflicts = [c for c in conflicts if c.resolved == resolved]
        return conflicts

    def get_conflict_stats(self) -> ConflictStats:
        conflicts = self.get_conflicts()
        resolved = [c for c in conflicts if c.resolved]

        by_type: Dict[str, int] = {}
        by_strategy: Dict[str, int] = {}
        for conflict in conflicts:
            by_type[conflict.type.value] = by_type.get(conflict.type.value, 0) + 1
            if conflict.resolution:
                strategy = conflict.resolution.strategy.value
                by_strategy[strategy] = by_strategy.get(strategy, 0) + 1

        resolution_times = [
            c.resolved_at - c.detected_at for c in resolved if c.resolved_at is not None
        ]
        return ConflictStats(
            total=len(conflicts),
            resolved=len(resolved),
            unresolved=len(conflicts) - len(resolved),
            deadlocks=by_type.get(ConflictType.DEADLOCK.value, 0),
            by_type=by_type,
            by_strategy=by_strategy,
            average_resolution_time=sum(resolution_times) / len(resolution_times) if resolution_times else 0.0,
        )

    def cleanup(self) -> None:
        """루프 중지 및 모든 상태 초기화"""
        self.stop()
        with self._lock:
            for queue in self._queues.values():
                for waiter in queue:
                    self._settle(waiter, False)
            self._locks.clear()
            self._queues.clear()
            self._conflicts.clear()
        self.events.remove_all_listeners()

    # ------------------------------------------------------------------
    # 내부 헬퍼 (self._lock 보유 상태에서 호출)
    # ------------------------------------------------------------------
    def _grant(
        self,
        key: str,
        resource_id: str,
        resource_type: ResourceType,
        agent_id: str,
        mode: LockMode,
        duration: float,
        task_priority: float,
        now: float,
        events: PendingEvents,
        partition_of: Optional[str] = None,
    ) -> ResourceLock:
        holders = self._locks.setdefault(key, [])
        existing = self._holder_lock(key, agent_id)
        if existing is not None:
            holders.remove(existing)

        lock = ResourceLock(
            resource_id=resource_id,
            resource_type=resource_type,
            locked_by=agent_id,
            lock_type=mode,
            acquired_at=existing.acquired_at if existing is not None else now,
            expires_at=now + duration,
            partition_of=partition_of,
            metadata={"task_priority": task_priority},
        )
        holders.append(lock)
        events.append(("lock:acquired", (lock.model_copy(deep=True),)))
        MetricsCollector.record_lock_event(resource_type.value, "acquired")
        return lock

    def _enqueue(
        self,
        key: str,
        resource_id: str,
        resource_type: ResourceType,
        agent_id: str,
        mode: LockMode,
        duration: float,
        task_priority: float,
        now: float,
        future: Optional[asyncio.Future],
        events: PendingEvents,
    ) -> _LockWaiter:
        waiter = _LockWaiter(
            agent_id=agent_id,
            resource_id=resource_id,
            resource_type=resource_type,
            mode=mode,
            duration=duration,
            task_priority=task_priority,
            enqueued_at=now,
            future=future,
        )
        self._queue_for(key).append(waiter)
        events.append(("lock:queued", (key, agent_id)))
        MetricsCollector.record_lock_event(resource_type.value, "queued")
        return waiter

    def _grant_waiters(self, key: str, now: float, events: PendingEvents) -> None:
        """대기열 앞에서부터 호환되는 요청을 FIFO 순서로 부여"""
        queue = self._queues.get(key)
        while queue:
            head = queue[0]
            others = [h for h in self._locks.get(key, []) if h.locked_by != head.agent_id]
            compatible = not others or (
                head.mode == LockMode.READ and all(h.lock_type == LockMode.READ for h in others)
            )
            if not compatible:
                break
            queue.popleft()
            self._grant(
                key, head.resource_id, head.resource_type, head.agent_id,
                head.mode, head.duration, head.task_priority, now, events,
            )
            self._settle(head, True)

        if queue is not None and not queue:
            del self._queues[key]
        if key in self._locks and not self._locks[key]:
            del self._locks[key]

    def _revoke(self, key: str, agent_id: str, events: PendingEvents) -> Optional[ResourceLock]:
        if self._holder_lock(key, agent_id) is None:
            return None
        lock = self._remove_holder(key, agent_id)
        events.append(("lock:revoked", (lock,)))
        MetricsCollector.record_lock_event(lock.resource_type.value, "revoked")
        return lock

    def _drop_agent(self, agent_id: str, now: float, events: PendingEvents) -> int:
        for key in list(self._queues.keys()):
            queue = self._queues[key]
            for waiter in [w for w in queue if w.agent_id == agent_id]:
                queue.remove(waiter)
                self._settle(waiter, False)
            if not queue:
                del self._queues[key]

        released = 0
        for key in list(self._locks.keys()):
            if self._holder_lock(key, agent_id) is None:
                continue
            lock = self._remove_holder(key, agent_id)
            events.append(("lock:released", (lock,)))
            MetricsCollector.record_lock_event(lock.resource_type.value, "released")
            released += 1
            self._grant_waiters(key, now, events)
        return released

    def _remove_holder(self, key: str, agent_id: str) -> ResourceLock:
        holders = self._locks[key]
        lock = self._holder_lock(key, agent_id)
        holders.remove(lock)
        if not holders:
            del self._locks[key]
        return lock

    def _holder_lock(self, key: str, agent_id: str) -> Optional[ResourceLock]:
        for lock in self._locks.get(key, ()):
            if lock.locked_by == agent_id:
                return lock
        return None

    def _find_waiter(self, key: str, agent_id: str) -> Optional[_LockWaiter]:
        for waiter in self._queues.get(key, ()):
            if waiter.agent_id == agent_id:
                return waiter
        return None

    def _remove_waiter(self, key: str, waiter: _LockWaiter) -> bool:
        queue = self._queues.get(key)
        if not queue or waiter not in queue:
            return False
        queue.remove(waiter)
        if not queue:
            del self._queues[key]
        return True

    def _queue_for(self, key: str) -> Deque[_LockWaiter]:
        return self._queues.setdefault(key, deque())

    def _record_conflict(
        self,
        conflict_type: ConflictType,
        agents: List[str],
        resources: List[str],
        resolution: ConflictResolution,
        detected_at: float,
        events: PendingEvents,
    ) -> Conflict:
        conflict = Conflict(
            type=conflict_type,
            agents=agents,
            resources=resources,
            detected_at=detected_at,
            resolved_at=self.clock(),
            resolved=True,
            resolution=resolution,
        )
        self._conflicts[conflict.id] = conflict
        while len(self._conflicts) > self.policy.max_conflict_history:
            self._conflicts.popitem(last=False)

        events.append(("conflict:detected", (conflict,)))
        events.append(("conflict:resolved", (conflict, resolution)))
        MetricsCollector.record_conflict(resolution.strategy.value)
        return conflict

    @staticmethod
    def _settle(waiter: _LockWaiter, granted: bool) -> None:
        """대기 중인 코루틴에 결과 전달 (다른 스레드에서 호출되어도 안전)"""
        future = waiter.future
        if future is None or future.done():
            return

        def _set() -> None:
            if not future.done():
                future.set_result(granted)

        try:
            future.get_loop().call_soon_threadsafe(_set)
        except RuntimeError:
            logger.debug(f"이벤트 루프가 닫혀 대기 결과를 전달하지 못함: {waiter.agent_id}")

    def _emit_all(self, events: PendingEvents) -> None:
        for name, args in events:
            self.events.emit(name, *args)
