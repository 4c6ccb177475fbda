from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from chatbot_test_platform.core.aggregator import RunOutcome
from chatbot_test_platform.scenarios.model import RunReport, Scenario, TestCase


class CaseInput(BaseModel):
    """创建/更新场景时的单条用例"""
    message: str
    expected_response: Optional[str] = None


class ScenarioCreateRequest(BaseModel):
    """创建场景请求"""
    user_id: str = Field(..., min_length=1)
    chatbot_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=1000)
    cases: List[CaseInput] = Field(default_factory=list)


class ScenarioUpdateRequest(BaseModel):
    """更新场景请求（只更新提供的字段）"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    chatbot_id: Optional[str] = None
    cases: Optional[List[CaseInput]] = None
    status: Optional[str] = Field(None, pattern="^(draft|active|archived)$")


class ImportScenarioRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    chatbot_id: Optional[str] = None


class RunScenarioRequest(BaseModel):
    """运行场景请求；chatbot_id 为空时使用场景自身的 chatbot"""
    chatbot_id: Optional[str] = None


class CaseResponse(BaseModel):
    id: str
    message: str
    expected_response: Optional[str] = None
    status: str
    actual_response: Optional[str] = None
    response_time_ms: Optional[int] = None
    executed_at: Optional[datetime] = None

    @classmethod
    def from_case(cls, case: TestCase) -> "CaseResponse":
        return cls(
            id=case.id,
            message=case.message,
            expected_response=case.expected_response,
            status=case.status.value,
            actual_response=case.actual_response,
            response_time_ms=case.response_time_ms,
            executed_at=case.executed_at,
        )


class RunReportResponse(BaseModel):
    total_cases: int
    passed_cases: int
    failed_cases: int
    success_rate_percent: float
    avg_response_time_ms: float
    ran_at: datetime
    cancelled: bool = False

    @classmethod
    def from_report(cls, report: RunReport) -> "RunReportResponse":
        return cls(
            total_cases=report.total_cases,
            passed_cases=report.passed_cases,
            failed_cases=report.failed_cases,
            success_rate_percent=report.success_rate_percent,
            avg_response_time_ms=report.avg_response_time_ms,
            ran_at=report.ran_at,
            cancelled=report.cancelled,
        )


class ScenarioResponse(BaseModel):
    """场景详情响应"""
    id: str
    user_id: str
    chatbot_id: str
    name: str
    description: str
    status: str
    test_cases: List[CaseResponse]
    last_run_at: Optional[datetime] = None
    last_run_report: Optional[RunReportResponse] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_scenario(cls, scenario: Scenario) -> "ScenarioResponse":
        return cls(
            id=scenario.id,
            user_id=scenario.user_id,
            chatbot_id=scenario.chatbot_id,
            name=scenario.name,
            description=scenario.description,
            status=scenario.status.value,
            test_cases=[CaseResponse.from_case(c) for c in scenario.test_cases],
            last_run_at=scenario.last_run_at,
            last_run_report=(
                RunReportResponse.from_report(scenario.last_run_report)
                if scenario.last_run_report
                else None
            ),
            created_at=scenario.created_at,
            updated_at=scenario.updated_at,
        )


class RunScenarioResponse(BaseModel):
    """运行结果响应；saved=False 时结果未保存，warning 说明原因"""
    scenario_id: str
    report: RunReportResponse
    test_cases: List[CaseResponse]
    saved: bool
    warning: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: RunOutcome) -> "RunScenarioResponse":
        return cls(
            scenario_id=outcome.scenario_id,
            report=RunReportResponse.from_report(outcome.report),
            test_cases=[CaseResponse.from_case(c) for c in outcome.test_cases],
            saved=outcome.saved,
            warning=(
                f"Results were not saved: {outcome.persist_error}"
                if outcome.persist_error
                else None
            ),
        )


class DeleteScenarioResponse(BaseModel):
    success: bool
    message: str
