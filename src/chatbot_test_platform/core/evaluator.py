from typing import Optional
from chatbot_test_platform.scenarios.model import CaseStatus


def evaluate_response(expected_hint: Optional[str], actual_response: str) -> CaseStatus:
    """
    判断单条用例是否通过

    - 没有期望提示：只要接口正常返回即通过
    - 否则忽略大小写，任一方包含另一方即通过
    - 空回复不算包含于期望提示中
    """
    if not expected_hint:
        return CaseStatus.PASSED
    if not actual_response:
        return CaseStatus.FAILED

    expected = expected_hint.lower()
    actual = actual_response.lower()

    if expected in actual or actual in expected:
        return CaseStatus.PASSED
    return CaseStatus.FAILED
