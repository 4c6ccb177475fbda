class ScenarioError(Exception):
    """场景相关错误基类"""


class ScenarioPreconditionError(ScenarioError):
    """运行前置条件不满足（无用例、缺少 chatbot id 等），不会产生任何请求"""


class RunInProgressError(ScenarioError):
    """同一场景已有运行在进行中"""

    def __init__(self, scenario_id: str):
        super().__init__(f"Scenario {scenario_id} is already running")
        self.scenario_id = scenario_id


class ScenarioNotFoundError(ScenarioError):
    def __init__(self, scenario_id: str):
        super().__init__(f"Scenario not found: {scenario_id}")
        self.scenario_id = scenario_id


class ScenarioPersistError(ScenarioError):
    """运行结果保存失败（报告仍然有效，只是未落库）"""
