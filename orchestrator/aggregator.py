"""
테스트 결과 집계 및 분석
"""
from typing import Iterable, List, Mapping, Optional

from .history import ExecutionHistory
from .models import (
    AggregatedResults,
    NamedDuration,
    NamedReliability,
    TestAnalytics,
    TestResult,
    TestStatus,
    TestSuite,
)
from .planner import make_test_id

RELIABILITY_WINDOW = 100


def ordered_results(suite: TestSuite, outcomes: Mapping[str, TestResult]) -> List[TestResult]:
    """스위트 정의 순서대로 결과 정렬 (결과가 없는 테스트는 제외)"""
    ordered = []
    for index, _test in enumerate(suite.tests):
        result = outcomes.get(make_test_id(suite.id, index))
        if result is not None:
            ordered.append(result)
    return ordered


def build_analytics(
    suite: TestSuite,
    results: Iterable[TestResult],
    history: Optional[ExecutionHistory] = None,
) -> TestAnalytics:
    """
    가장 빠른/느린 테스트와 이력상 가장 안정적/불안정한 테스트 계산

    실행 결과가 있는 (passed/failed) 테스트만 소요 시간 비교에 포함한다.
    """
    executed = [r for r in results if r.status != TestStatus.SKIPPED]
    analytics = TestAnalytics()

    if executed:
        fastest = min(executed, key=lambda r: r.duration)
        slowest = max(executed, key=lambda r: r.duration)
        analytics.fastest_test = NamedDuration(name=fastest.test_name, duration=fastest.duration)
        analytics.slowest_test = NamedDuration(name=slowest.test_name, duration=slowest.duration)

    if history is not None:
        reliability = []
        for test in suite.tests:
            rate = history.get_test_reliability(test.name, RELIABILITY_WINDOW)
            if rate is not None:
                reliability.append(NamedReliability(name=test.name, success_rate=rate))
        if reliability:
            analytics.most_reliable = max(reliability, key=lambda r: r.success_rate)
            analytics.least_reliable = min(reliability, key=lambda r: r.success_rate)

    return analytics


def aggregate_results(
    suite: TestSuite,
    outcomes: Mapping[str, TestResult],
    start_time: float,
    end_time: float,
    history: Optional[ExecutionHistory] = None,
) -> AggregatedResults:
    """
    테스트별 결과를 스위트 요약으로 집계

    Args:
        suite: 테스트 스위트
        outcomes: 테스트 ID -> 결과
        start_time: 실행 시작 시각
        end_time: 실행 종료 시각 (부분 집계이면 조회 시각)
        history: 신뢰도 계산에 사용할 실행 이력

    Returns:
        AggregatedResults: skipped 는 전체 테스트 수 - 실제 결과(passed/failed)를 낸 테스트 수
    """
    results = ordered_results(suite, outcomes)
    total = len(suite.tests)
    passed = sum(1 for r in results if r.status == TestStatus.PASSED)
    failed = sum(1 for r in results if r.status == TestStatus.FAILED)

    return AggregatedResults(
        suite_id=suite.id,
        suite_name=suite.name,
        start_time=start_time,
        end_time=end_time,
        duration=max(end_time - start_time, 0.0),
        total_tests=total,
        passed=passed,
        failed=failed,
        skipped=total - passed - failed,
        pass_rate=(passed / total) * 100 if total else 0.0,
        results=results,
        analytics=build_analytics(suite, results, history),
    )
