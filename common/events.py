"""
컴포넌트 간 생명주기 이벤트 전달을 위한 스레드 안전 이벤트 이미터
"""
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Any]


class EventEmitter:
    """
    이름 기반 이벤트 구독/발행

    핸들러는 emit 을 호출한 스레드에서 등록 순서대로 동기 실행된다.
    핸들러에서 발생한 예외는 로깅만 하고 발행한 컴포넌트로 전파하지 않는다.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, event: str, handler: EventHandler) -> None:
        """이벤트 핸들러 등록"""
        if not callable(handler):
            raise ValueError("핸들러는 호출 가능한 객체여야 합니다")
        with self._lock:
            self._handlers[event].append(handler)

    def off(self, event: str, handler: EventHandler) -> bool:
        """
        이벤트 핸들러 해제

        Returns:
            핸들러가 등록되어 있었으면 True
        """
        with self._lock:
            handlers = self._handlers.get(event)
            if not handlers or handler not in handlers:
                return False
            handlers.remove(handler)
            return True

    def once(self, event: str, handler: EventHandler) -> None:
        """한 번만 실행되는 핸들러 등록"""
        def _wrapper(*args: Any, **kwargs: Any) -> Any:
            self.off(event, _wrapper)
            return handler(*args, **kwargs)

        self.on(event, _wrapper)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> int:
        """
        이벤트 발행

        Args:
            event: 이벤트 이름 (예: 'task:completed')
            *args, **kwargs: 핸들러에 그대로 전달할 인자

        Returns:
            호출된 핸들러 수
        """
        with self._lock:
            handlers = list(self._handlers.get(event, ()))

        for handler in handlers:
            try:
                handler(*args, **kwargs)
            except Exception:
                logger.exception(f"이벤트 핸들러 실행 중 오류 (이벤트: {event})")
        return len(handlers)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, ()))

    def remove_all_listeners(self) -> None:
        with self._lock:
            self._handlers.clear()
