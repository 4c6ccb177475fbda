from sqlalchemy import Column, String, DateTime, JSON, Enum as SQLEnum
from chatbot_test_platform.models.base import Base
from chatbot_test_platform.scenarios.model import (
    RunReport,
    Scenario,
    ScenarioStatus,
    TestCase,
)


class TestScenario(Base):
    """测试场景表（test_scenarios）"""

    __tablename__ = "test_scenarios"
    __test__ = False

    user_id = Column(String(36), nullable=False, index=True)
    chatbot_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(String(1000), default="")

    # 有序测试消息（执行顺序即列表顺序）
    test_messages = Column(JSON, default=list, nullable=False)
    expected_responses = Column(JSON, default=list)

    last_run_at = Column(DateTime(timezone=True))
    last_run_results = Column(JSON, default=dict)

    status = Column(
        SQLEnum(ScenarioStatus, values_callable=lambda e: [m.value for m in e]),
        default=ScenarioStatus.DRAFT,
        nullable=False,
    )

    def to_domain(self) -> Scenario:
        """转换为领域对象"""
        return Scenario(
            id=self.id,
            user_id=self.user_id,
            chatbot_id=self.chatbot_id,
            name=self.name,
            description=self.description or "",
            test_cases=[TestCase.from_dict(m) for m in (self.test_messages or [])],
            status=self.status,
            last_run_at=self.last_run_at,
            last_run_report=RunReport.from_dict(self.last_run_results, ran_at=self.last_run_at),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
