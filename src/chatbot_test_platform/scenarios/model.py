from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional


class CaseStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class ScenarioStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    # 兼容 JS 的 toISOString() 结尾 "Z"
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class TestCase:
    """单条测试消息及其执行结果"""

    __test__ = False  # 避免 pytest 收集

    id: str
    message: str
    expected_response: Optional[str] = None
    status: CaseStatus = CaseStatus.PENDING

    # 执行结果
    actual_response: Optional[str] = None
    response_time_ms: Optional[int] = None
    executed_at: Optional[datetime] = None

    def reset(self) -> "TestCase":
        """返回清空执行结果后的副本"""
        return replace(
            self,
            status=CaseStatus.PENDING,
            actual_response=None,
            response_time_ms=None,
            executed_at=None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """序列化为 test_messages 列的存储格式"""
        data: Dict[str, Any] = {
            "id": self.id,
            "message": self.message,
            "status": self.status.value,
        }
        if self.expected_response:
            data["expectedResponse"] = self.expected_response
        if self.actual_response is not None:
            data["actualResponse"] = self.actual_response
        if self.response_time_ms is not None:
            data["responseTime"] = self.response_time_ms
        if self.executed_at is not None:
            data["timestamp"] = self.executed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestCase":
        return cls(
            id=str(data["id"]),
            message=data.get("message", ""),
            expected_response=data.get("expectedResponse") or None,
            status=CaseStatus(data.get("status", CaseStatus.PENDING.value)),
            actual_response=data.get("actualResponse"),
            response_time_ms=data.get("responseTime"),
            executed_at=_parse_datetime(data.get("timestamp")),
        )


@dataclass
class RunReport:
    """一次场景运行的汇总统计"""

    total_cases: int
    passed_cases: int
    failed_cases: int
    success_rate_percent: float
    avg_response_time_ms: float
    ran_at: datetime
    cancelled: bool = False

    def to_dict(self, test_cases: Optional[List[TestCase]] = None) -> Dict[str, Any]:
        """序列化为 last_run_results 列的存储格式"""
        data = {
            "total_tests": self.total_cases,
            "passed_tests": self.passed_cases,
            "failed_tests": self.failed_cases,
            "success_rate": self.success_rate_percent,
            "avg_response_time": self.avg_response_time_ms,
            "run_timestamp": self.ran_at.isoformat(),
            "cancelled": self.cancelled,
        }
        if test_cases is not None:
            data["test_results"] = [case.to_dict() for case in test_cases]
        return data

    @classmethod
    def from_dict(
        cls,
        data: Optional[Dict[str, Any]],
        ran_at: Optional[datetime] = None,
    ) -> Optional["RunReport"]:
        # 新建场景的 last_run_results 为 {}
        if not data or "total_tests" not in data:
            return None
        # 旧数据可能缺少 run_timestamp，退回到 last_run_at
        ran_at = _parse_datetime(data.get("run_timestamp")) or ran_at
        if ran_at is None:
            return None
        return cls(
            total_cases=int(data["total_tests"]),
            passed_cases=int(data["passed_tests"]),
            failed_cases=int(data["failed_tests"]),
            success_rate_percent=float(data.get("success_rate", 0)),
            avg_response_time_ms=float(data.get("avg_response_time", 0)),
            ran_at=ran_at,
            cancelled=bool(data.get("cancelled", False)),
        )


@dataclass
class Scenario:
    """测试场景：面向单个 chatbot 的有序测试消息集合"""

    id: str
    user_id: str
    chatbot_id: str
    name: str
    description: str = ""
    test_cases: List[TestCase] = field(default_factory=list)
    status: ScenarioStatus = ScenarioStatus.DRAFT

    last_run_at: Optional[datetime] = None
    last_run_report: Optional[RunReport] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CaseDefinition:
    """YAML 场景文件中的单条用例"""

    message: str
    expected_response: Optional[str] = None


@dataclass
class ScenarioDefinition:
    """YAML 场景文件"""

    name: str
    description: str = ""
    chatbot_id: Optional[str] = None
    cases: List[CaseDefinition] = field(default_factory=list)
