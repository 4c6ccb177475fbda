from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol
from chatbot_test_platform.config.logger import logger
from chatbot_test_platform.core.errors import ScenarioPersistError
from chatbot_test_platform.scenarios.model import CaseStatus, RunReport, TestCase


class RunResultStore(Protocol):
    async def save_scenario_run_result(
        self,
        scenario_id: str,
        test_cases: List[TestCase],
        report: RunReport,
        ran_at: datetime,
    ) -> None:
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_run_report(
    test_cases: List[TestCase],
    ran_at: datetime,
    cancelled: bool = False,
) -> RunReport:
    """根据执行后的用例计算汇总统计"""

    total = len(test_cases)
    passed = sum(1 for case in test_cases if case.status == CaseStatus.PASSED)
    failed = total - passed

    if total == 0:
        success_rate = 0.0
        avg_response_time = 0.0
    else:
        success_rate = passed / total * 100
        avg_response_time = sum(case.response_time_ms or 0 for case in test_cases) / total

    return RunReport(
        total_cases=total,
        passed_cases=passed,
        failed_cases=failed,
        success_rate_percent=success_rate,
        avg_response_time_ms=avg_response_time,
        ran_at=ran_at,
        cancelled=cancelled,
    )


@dataclass
class RunOutcome:
    """一次运行的结果；persist_error 不为空表示结果未保存"""

    scenario_id: str
    report: RunReport
    test_cases: List[TestCase]
    persist_error: Optional[ScenarioPersistError] = None

    @property
    def saved(self) -> bool:
        return self.persist_error is None


class RunReportAggregator:
    """汇总运行结果并一次性写回场景"""

    def __init__(
        self,
        store: RunResultStore,
        report_writer=None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.report_writer = report_writer
        self.now = now

    async def finalize(
        self,
        scenario_id: str,
        test_cases: List[TestCase],
        cancelled: bool = False,
    ) -> RunOutcome:
        ran_at = self.now()
        report = build_run_report(test_cases, ran_at, cancelled=cancelled)

        logger.info(
            "Run report computed",
            scenario_id=scenario_id,
            total=report.total_cases,
            passed=report.passed_cases,
            failed=report.failed_cases,
            success_rate=report.success_rate_percent,
        )

        outcome = RunOutcome(scenario_id=scenario_id, report=report, test_cases=test_cases)

        try:
            await self.store.save_scenario_run_result(scenario_id, test_cases, report, ran_at)
        except Exception as e:
            # 保存失败不丢报告，错误随结果一起返回
            logger.error("Failed to save run result", scenario_id=scenario_id, error=str(e))
            if isinstance(e, ScenarioPersistError):
                outcome.persist_error = e
            else:
                outcome.persist_error = ScenarioPersistError(f"Failed to save run result: {e}")
                outcome.persist_error.__cause__ = e

        if self.report_writer is not None:
            await self.report_writer.write_report(scenario_id, report, test_cases)

        return outcome
