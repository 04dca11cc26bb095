"""
코디네이션 코어 공통 예외 정의

예상 가능한 경합(대기/재시도/취소)이나 조회 실패는 예외가 아니라
bool / None 결과로 돌려준다. 여기 정의된 예외는 호출자의 프로그래밍
오류처럼 즉시 드러나야 하는 경우에만 사용한다.
"""


class CoordinationError(Exception):
    """코디네이션 코어의 기본 예외"""


class DuplicateAgentError(CoordinationError):
    """이미 등록된 에이전트 ID로 다시 등록하려는 경우"""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"이미 등록된 에이전트입니다: {agent_id}")


class SuiteNotFoundError(CoordinationError):
    """등록되지 않은 테스트 스위트를 실행하려는 경우"""

    def __init__(self, suite_id: str):
        self.suite_id = suite_id
        super().__init__(f"테스트 스위트를 찾을 수 없습니다: {suite_id}")


class NoAgentsAvailableError(CoordinationError):
    """실행 계획을 세울 수 있는 (offline 이 아닌) 에이전트가 없는 경우"""

    def __init__(self, suite_id: str):
        self.suite_id = suite_id
        super().__init__(f"테스트 실행에 사용할 수 있는 에이전트가 없습니다 (스위트: {suite_id})")


class InvalidSuiteError(CoordinationError):
    """스위트 정의가 잘못된 경우 (중복 이름, 알 수 없는 의존성, 순환 의존성)"""
