import yaml
from pathlib import Path
from typing import Optional
from chatbot_test_platform.scenarios.model import ScenarioDefinition, CaseDefinition
from chatbot_test_platform.config.logger import logger


class ScenarioLoader:
    """YAML 场景加载器"""

    def __init__(self, scenarios_dir: Path):
        self.scenarios_dir = Path(scenarios_dir)

    def load(self, scenario_name: str) -> Optional[ScenarioDefinition]:
        """加载场景定义"""
        try:
            file_path = self.scenarios_dir / f"{scenario_name}.yaml"

            if not file_path.exists():
                logger.error(f"Scenario file not found: {file_path}")
                return None

            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}

            definition = self._parse_definition(data, default_name=scenario_name)
            logger.info(f"Loaded scenario: {scenario_name}", cases=len(definition.cases))
            return definition

        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.error(f"Failed to load scenario {scenario_name}: {e}")
            return None

    def _parse_definition(self, data: dict, default_name: str) -> ScenarioDefinition:
        """解析 YAML 数据为 ScenarioDefinition"""

        cases = []
        for i, item in enumerate(data.get('cases', [])):
            # 允许简写：- "Hi"
            if isinstance(item, str):
                item = {'message': item}
            if not isinstance(item, dict):
                raise ValueError(f"case {i} must be a mapping or string")
            cases.append(
                CaseDefinition(
                    message=str(item.get('message', '')),
                    expected_response=item.get('expected_response') or None,
                )
            )

        return ScenarioDefinition(
            name=data.get('name') or default_name,
            description=data.get('description', ''),
            chatbot_id=data.get('chatbot_id'),
            cases=cases,
        )
