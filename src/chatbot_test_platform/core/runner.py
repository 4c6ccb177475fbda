import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Set
from chatbot_test_platform.config.logger import logger
from chatbot_test_platform.config.settings import settings
from chatbot_test_platform.core.aggregator import RunOutcome, RunReportAggregator, utcnow
from chatbot_test_platform.core.errors import RunInProgressError, ScenarioPreconditionError
from chatbot_test_platform.core.evaluator import evaluate_response
from chatbot_test_platform.core.state_machine import RunState, StateMachine
from chatbot_test_platform.http_client.client import ChatEndpointClient, ChatEndpointError
from chatbot_test_platform.scenarios.model import CaseStatus, Scenario, TestCase

CANCELLED_MESSAGE = "Error: Run cancelled before execution"


@dataclass
class ExecutionResult:
    """用例循环的输出（尚未汇总）"""

    scenario_id: str
    test_cases: List[TestCase]
    cancelled: bool = False


class ScenarioRunner:
    """场景执行器 - 按顺序把每条测试消息发给 chatbot 并判定结果"""

    def __init__(
        self,
        client: ChatEndpointClient,
        aggregator: Optional[RunReportAggregator] = None,
        pacing_delay: Optional[float] = None,
        caller_tag: Optional[str] = None,
        sleep: Callable = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.aggregator = aggregator
        self.pacing_delay = pacing_delay if pacing_delay is not None else settings.CASE_PACING_DELAY
        self.caller_tag = caller_tag or settings.CALLER_TAG
        self.sleep = sleep
        self.now = now

        # 运行中的场景 id，防止同一场景并发运行
        self._active_runs: Set[str] = set()
        self.progress_callbacks = []

    def register_progress_callback(self, callback):
        """注册进度回调"""
        self.progress_callbacks.append(callback)

    def is_running(self, scenario_id: str) -> bool:
        return scenario_id in self._active_runs

    async def run(
        self,
        scenario: Scenario,
        endpoint_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunOutcome:
        """
        运行场景并汇总、保存结果

        Raises:
            ScenarioPreconditionError: 场景不可运行（不会发出任何请求）
            RunInProgressError: 同一场景已在运行
        """
        if self.aggregator is None:
            raise RuntimeError("ScenarioRunner.run requires an aggregator")

        endpoint_id = self._validate(scenario, endpoint_id)
        self._acquire(scenario.id)
        try:
            result = await self._execute_cases(scenario, endpoint_id, cancel_event)
            outcome = await self.aggregator.finalize(
                scenario.id,
                result.test_cases,
                cancelled=result.cancelled,
            )
        finally:
            self._release(scenario.id)

        await self._emit(
            event_type="run_completed",
            scenario_id=scenario.id,
            report=outcome.report.to_dict(),
            saved=outcome.saved,
        )
        return outcome

    # ---------- 内部实现 ----------

    def _validate(self, scenario: Scenario, endpoint_id: Optional[str]) -> str:
        endpoint_id = endpoint_id or scenario.chatbot_id
        if not endpoint_id:
            raise ScenarioPreconditionError("Scenario has no target chatbot id")
        if not scenario.test_cases:
            raise ScenarioPreconditionError("Scenario has no test cases")
        for case in scenario.test_cases:
            if not case.message or not case.message.strip():
                raise ScenarioPreconditionError(f"Test case {case.id} has an empty message")
        return endpoint_id

    def _acquire(self, scenario_id: str) -> None:
        if scenario_id in self._active_runs:
            raise RunInProgressError(scenario_id)
        self._active_runs.add(scenario_id)

    def _release(self, scenario_id: str) -> None:
        self._active_runs.discard(scenario_id)

    async def _execute_cases(
        self,
        scenario: Scenario,
        endpoint_id: str,
        cancel_event: Optional[asyncio.Event],
    ) -> ExecutionResult:
        state_machine = StateMachine(RunState.NOT_STARTED)
        state_machine.transition(RunState.RUNNING)

        cases = [case.reset() for case in scenario.test_cases]
        cancelled = False

        logger.info(
            "Scenario run started",
            scenario_id=scenario.id,
            endpoint_id=endpoint_id,
            cases=len(cases),
        )

        for index, case in enumerate(cases):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                self._mark_cancelled(cases[index:])
                logger.warning(
                    "Scenario run cancelled",
                    scenario_id=scenario.id,
                    remaining=len(cases) - index,
                )
                break

            await self._execute_case(scenario.id, endpoint_id, index, case)

            # 用例间固定间隔，避免压垮被测接口
            if index < len(cases) - 1 and self.pacing_delay > 0:
                await self.sleep(self.pacing_delay)

        state_machine.transition(RunState.COMPLETED)

        logger.info(
            "Scenario run completed",
            scenario_id=scenario.id,
            passed=sum(1 for c in cases if c.status == CaseStatus.PASSED),
            failed=sum(1 for c in cases if c.status == CaseStatus.FAILED),
            cancelled=cancelled,
        )
        return ExecutionResult(scenario_id=scenario.id, test_cases=cases, cancelled=cancelled)

    async def _execute_case(self, scenario_id: str, endpoint_id: str, index: int, case: TestCase) -> None:
        case.status = CaseStatus.RUNNING
        await self._emit(
            event_type="case_started",
            scenario_id=scenario_id,
            case_index=index,
            case_id=case.id,
            status=case.status.value,
        )

        start_time = time.monotonic()
        try:
            reply = await self.client.send_message(
                endpoint_id,
                case.message,
                caller_tag=self.caller_tag,
            )
            case.response_time_ms = self._elapsed_ms(start_time)
            case.actual_response = reply.response_text
            case.status = evaluate_response(case.expected_response, reply.response_text)

        except ChatEndpointError as e:
            case.response_time_ms = self._elapsed_ms(start_time)
            case.actual_response = f"Error: {e.message}"
            case.status = CaseStatus.FAILED
            logger.warning(
                f"Test case {index} failed",
                scenario_id=scenario_id,
                case_id=case.id,
                error=e.message,
            )

        except Exception as e:
            # 单条用例的任何异常都不能中断整次运行
            case.response_time_ms = self._elapsed_ms(start_time)
            case.actual_response = f"Error: {e}"
            case.status = CaseStatus.FAILED
            logger.exception(
                f"Test case {index} raised unexpectedly",
                scenario_id=scenario_id,
                case_id=case.id,
            )

        case.executed_at = self.now()

        await self._emit(
            event_type="case_finished",
            scenario_id=scenario_id,
            case_index=index,
            case_id=case.id,
            status=case.status.value,
            response_time_ms=case.response_time_ms,
        )

    def _mark_cancelled(self, cases: List[TestCase]) -> None:
        executed_at = self.now()
        for case in cases:
            case.status = CaseStatus.FAILED
            case.actual_response = CANCELLED_MESSAGE
            case.response_time_ms = 0
            case.executed_at = executed_at

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int(round((time.monotonic() - start_time) * 1000))

    async def _emit(self, **event):
        """调用所有注册的进度回调"""

        for callback in self.progress_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(**event)
                else:
                    callback(**event)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}")
