from datetime import datetime
from typing import List
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from chatbot_test_platform.config.logger import logger
from chatbot_test_platform.core.errors import ScenarioNotFoundError, ScenarioPersistError
from chatbot_test_platform.models.test_scenario import TestScenario
from chatbot_test_platform.scenarios.model import RunReport, Scenario, ScenarioStatus, TestCase
from chatbot_test_platform.storage.database import Database


class ScenarioStore:
    """场景存储适配器（运行器只通过它读写场景）"""

    def __init__(self, db: Database):
        self.db = db

    async def load_scenario(self, scenario_id: str) -> Scenario:
        """读取完整场景（含测试消息）"""

        row = await self.db.get(TestScenario, scenario_id)
        if row is None:
            raise ScenarioNotFoundError(scenario_id)
        return row.to_domain()

    async def save_scenario_run_result(
        self,
        scenario_id: str,
        test_cases: List[TestCase],
        report: RunReport,
        ran_at: datetime,
    ) -> None:
        """
        在一个事务里写回用例结果、运行报告、last_run_at 和 status=active

        Raises:
            ScenarioPersistError: 写入失败或场景不存在
        """

        stmt = (
            update(TestScenario)
            .where(TestScenario.id == scenario_id)
            .values(
                test_messages=[case.to_dict() for case in test_cases],
                last_run_results=report.to_dict(test_cases),
                last_run_at=ran_at,
                status=ScenarioStatus.ACTIVE,
                updated_at=ran_at,
            )
        )

        try:
            async with self.db.async_session() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    if result.rowcount == 0:
                        # 回滚：不允许部分写入
                        raise ScenarioNotFoundError(scenario_id)
        except ScenarioNotFoundError as e:
            raise ScenarioPersistError(str(e)) from e
        except (SQLAlchemyError, OSError) as e:
            # asyncpg 连接失败（ConnectionRefusedError 等）不会被 SQLAlchemy 包装
            logger.error(f"Failed to save run result: {e}", scenario_id=scenario_id)
            raise ScenarioPersistError(f"Failed to save run result: {e}") from e

        logger.info("Run result saved", scenario_id=scenario_id)
