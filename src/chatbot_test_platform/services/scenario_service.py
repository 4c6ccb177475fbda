import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.future import select

from chatbot_test_platform.config.logger import logger
from chatbot_test_platform.core.aggregator import RunOutcome
from chatbot_test_platform.core.errors import ScenarioNotFoundError, ScenarioPreconditionError
from chatbot_test_platform.core.runner import ScenarioRunner
from chatbot_test_platform.models.test_scenario import TestScenario
from chatbot_test_platform.scenarios.model import (
    Scenario,
    ScenarioDefinition,
    ScenarioStatus,
    TestCase,
)
from chatbot_test_platform.storage.database import Database
from chatbot_test_platform.storage.scenario_store import ScenarioStore


def build_test_cases(cases: List[Dict[str, Any]]) -> List[TestCase]:
    """去掉空消息并按顺序分配 msg-<i> 编号"""

    messages = [c for c in cases if (c.get("message") or "").strip()]
    return [
        TestCase(
            id=f"msg-{index}",
            message=c["message"],
            expected_response=c.get("expected_response") or None,
        )
        for index, c in enumerate(messages)
    ]


class ScenarioService:
    """场景管理服务"""

    def __init__(self, db: Database, runner: ScenarioRunner, store: Optional[ScenarioStore] = None):
        self.db = db
        self.runner = runner
        self.store = store or ScenarioStore(db)

    # ---------- 创建 ----------

    async def create_scenario(
        self,
        user_id: str,
        chatbot_id: str,
        name: str,
        description: str = "",
        cases: Optional[List[Dict[str, Any]]] = None,
    ) -> Scenario:
        """创建场景（始终为 draft）"""

        if not name or not name.strip():
            raise ScenarioPreconditionError("Scenario name is required")

        test_cases = build_test_cases(cases or [])

        row = TestScenario(
            user_id=user_id,
            chatbot_id=chatbot_id,
            name=name.strip(),
            description=description or "",
            test_messages=[c.to_dict() for c in test_cases],
            expected_responses=[],
            last_run_results={},
            status=ScenarioStatus.DRAFT,
        )

        row = await self.db.create(row)

        logger.info(f"Scenario created: {row.id} - {name}", cases=len(test_cases))

        return row.to_domain()

    async def import_definition(
        self,
        definition: ScenarioDefinition,
        user_id: str,
        chatbot_id: Optional[str] = None,
    ) -> Scenario:
        """从 YAML 场景定义创建场景"""

        chatbot_id = chatbot_id or definition.chatbot_id
        if not chatbot_id:
            raise ScenarioPreconditionError("chatbot_id is required")

        return await self.create_scenario(
            user_id=user_id,
            chatbot_id=chatbot_id,
            name=definition.name,
            description=definition.description,
            cases=[
                {"message": c.message, "expected_response": c.expected_response}
                for c in definition.cases
            ],
        )

    # ---------- 查询 ----------

    async def get_scenario(self, scenario_id: str) -> Scenario:
        return await self.store.load_scenario(scenario_id)

    async def list_scenarios(self, user_id: str, chatbot_id: Optional[str] = None) -> List[Scenario]:
        """列出用户的场景（可按 chatbot 过滤），最新的在前"""

        async with self.db.async_session() as session:
            stmt = select(TestScenario).where(TestScenario.user_id == user_id)
            if chatbot_id:
                stmt = stmt.where(TestScenario.chatbot_id == chatbot_id)
            stmt = stmt.order_by(TestScenario.created_at.desc())
            res = await session.execute(stmt)
            return [row.to_domain() for row in res.scalars().all()]

    # ---------- 更新 ----------

    async def update_scenario(
        self,
        scenario_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        chatbot_id: Optional[str] = None,
        cases: Optional[List[Dict[str, Any]]] = None,
        status: Optional[str] = None,
    ) -> Scenario:
        """更新场景"""

        row = await self.db.get(TestScenario, scenario_id)
        if row is None:
            raise ScenarioNotFoundError(scenario_id)

        if name is not None:
            if not name.strip():
                raise ScenarioPreconditionError("Scenario name is required")
            row.name = name.strip()
        if description is not None:
            row.description = description
        if chatbot_id:
            row.chatbot_id = chatbot_id
        if cases is not None:
            row.test_messages = [c.to_dict() for c in build_test_cases(cases)]
        if status:
            row.status = self._check_status_change(ScenarioStatus(row.status), ScenarioStatus(status))

        row.updated_at = datetime.now(timezone.utc)

        updated = await self.db.update(row)

        logger.info(f"Scenario updated: {scenario_id}")

        return updated.to_domain()

    async def archive_scenario(self, scenario_id: str) -> Scenario:
        return await self.update_scenario(scenario_id, status=ScenarioStatus.ARCHIVED.value)

    @staticmethod
    def _check_status_change(current: ScenarioStatus, target: ScenarioStatus) -> ScenarioStatus:
        # archived 为终态；draft -> active 只能由一次完成的运行触发
        if target == current:
            return target
        if current == ScenarioStatus.ARCHIVED:
            raise ScenarioPreconditionError("Archived scenario cannot change status")
        if target != ScenarioStatus.ARCHIVED:
            raise ScenarioPreconditionError(
                f"Status {current.value} -> {target.value} is only set by a run"
            )
        return target

    # ---------- 删除 ----------

    async def delete_scenario(self, scenario_id: str) -> bool:
        """删除场景"""

        row = await self.db.get(TestScenario, scenario_id)
        if row is None:
            return False

        await self.db.delete(row)

        logger.info(f"Scenario deleted: {scenario_id}")

        return True

    # ---------- 运行 ----------

    async def run_scenario(
        self,
        scenario_id: str,
        chatbot_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunOutcome:
        """加载场景、按顺序执行全部用例、一次性保存结果"""

        scenario = await self.store.load_scenario(scenario_id)

        if scenario.status == ScenarioStatus.ARCHIVED:
            raise ScenarioPreconditionError(f"Scenario {scenario_id} is archived")

        outcome = await self.runner.run(
            scenario,
            endpoint_id=chatbot_id or scenario.chatbot_id,
            cancel_event=cancel_event,
        )

        if not outcome.saved:
            logger.warning(
                "Run finished but results were not saved",
                scenario_id=scenario_id,
                error=str(outcome.persist_error),
            )

        return outcome
