import asyncio
import httpx
import time
from dataclasses import dataclass
from typing import Dict, Any, Optional
from chatbot_test_platform.config.logger import logger
from chatbot_test_platform.config.settings import settings


class ChatEndpointError(Exception):
    """对话接口调用失败（基类）"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ChatTransportError(ChatEndpointError):
    """网络错误"""


class ChatTimeoutError(ChatEndpointError):
    """超时"""


class ChatStatusError(ChatEndpointError):
    """非 2xx 响应"""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ChatPayloadError(ChatEndpointError):
    """响应体无法解析或缺少 responseText"""


@dataclass
class ChatReply:
    response_text: str


class ChatEndpointClient:
    """异步 HTTP 客户端，用于调用被测 chatbot 的对话接口

    单次调用：一个请求/响应。网络错误或 5xx 最多重试 ``retries`` 次，
    整个调用（含重试）受 ``timeout`` 秒约束。
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        path: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.CHAT_API_BASE_URL
        self.path = path if path is not None else settings.CHAT_API_PATH
        self.api_key = api_key if api_key is not None else settings.CHAT_API_KEY
        self.timeout = timeout if timeout is not None else settings.CHAT_API_TIMEOUT
        self.retries = retries if retries is not None else settings.CHAT_API_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.CHAT_API_RETRY_DELAY
        self.transport = transport

    async def send_message(
        self,
        endpoint_id: str,
        message: str,
        caller_tag: Optional[str] = None,
    ) -> ChatReply:
        """
        发送一条消息并返回 chatbot 的文本回复

        Raises:
            ValueError: endpoint_id 或 message 为空
            ChatEndpointError: 网络/超时/状态码/响应体错误
        """
        if not endpoint_id:
            raise ValueError("endpoint_id is required")
        if not message or not message.strip():
            raise ValueError("message must not be empty")

        url = f"{self.base_url}{self.path}"
        payload = {
            "endpointId": endpoint_id,
            "message": message,
            "callerTag": caller_tag or settings.CALLER_TAG,
        }

        start_time = time.monotonic()
        try:
            response_text = await asyncio.wait_for(
                self._send_with_retry(url, payload, self._build_headers()),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error("Chat endpoint timeout", endpoint_id=endpoint_id, duration_ms=duration_ms)
            raise ChatTimeoutError(f"Timeout after {self.timeout}s")

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "Chat endpoint call success",
            endpoint_id=endpoint_id,
            duration_ms=duration_ms,
        )
        return ChatReply(response_text=response_text)

    async def _send_with_retry(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            attempt = 0
            while True:
                try:
                    return await self._post_once(client, url, payload, headers)
                except (ChatTransportError, ChatStatusError) as e:
                    # 只重试网络错误和 5xx
                    retryable = not isinstance(e, ChatStatusError) or 500 <= e.status_code < 600
                    if attempt >= self.retries or not retryable:
                        raise
                    attempt += 1
                    logger.warning(
                        "Chat endpoint call failed, retrying",
                        attempt=attempt,
                        error=e.message,
                    )
                    await asyncio.sleep(self.retry_delay * attempt)

    async def _post_once(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
    ) -> str:
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout: {e}")
            raise ChatTimeoutError(f"Timeout after {self.timeout}s") from e
        except httpx.InvalidURL as e:
            # 配置错误，重试无意义
            logger.error(f"Invalid chat endpoint URL: {e}")
            raise ChatEndpointError(f"Invalid URL: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Request error: {e}")
            raise ChatTransportError(f"Network error: {e}") from e

        if not response.is_success:
            logger.warning(
                "Chat endpoint call failed",
                status_code=response.status_code,
            )
            raise ChatStatusError(
                f"HTTP {response.status_code}: {response.text[:200] or response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse JSON: {e}")
            raise ChatPayloadError(f"JSON parse error: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("responseText"), str):
            raise ChatPayloadError("Response payload missing 'responseText'")

        return data["responseText"]

    def _build_headers(self) -> Dict[str, str]:
        """构建请求头（包括 token 等）"""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers
