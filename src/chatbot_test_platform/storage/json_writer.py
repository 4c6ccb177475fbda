import json
from pathlib import Path
from typing import List, Optional
from chatbot_test_platform.config.logger import logger
from chatbot_test_platform.config.settings import settings
from chatbot_test_platform.scenarios.model import RunReport, TestCase


class ReportWriter:
    """运行报告 JSON 导出"""

    def __init__(self, output_dir: Optional[str] = None):
        self.output_dir = Path(output_dir or settings.RESULTS_DIR)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def report_path(self, scenario_id: str, report: RunReport) -> Path:
        stamp = report.ran_at.strftime("%Y%m%dT%H%M%S")
        return self.output_dir / f"{scenario_id}_{stamp}_report.json"

    async def write_report(self, scenario_id: str, report: RunReport, test_cases: List[TestCase]):
        """将运行报告写入 JSON 文件（失败只记日志，不影响运行结果）"""

        report_file = self.report_path(scenario_id, report)
        try:
            data = {"scenario_id": scenario_id, **report.to_dict(test_cases)}
            with open(report_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)

            logger.info(f"Report written: {report_file}")

        except OSError as e:
            logger.error(f"Failed to write JSON report: {e}")
