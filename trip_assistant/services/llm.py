"""
LLM service for classification and streaming completions
"""
import asyncio
import json
from enum import Enum
from typing import AsyncGenerator, List, Optional, Tuple

import httpx
import structlog

from trip_assistant.services.config import Settings
from trip_assistant.services.errors import (
    ClassificationError,
    ClassificationErrorKind,
    StreamError,
    StreamErrorKind,
)
from trip_assistant.services.prompts import build_classification_prompt

logger = structlog.get_logger()

# Replayed one character per fragment when the provider is unavailable, so
# every marker is cut at every possible offset.
MOCK_RESPONSE = """## 三日游行程安排：

### 第一天：东京市区观光
- 上午：抵达羽田机场后，建议选择我们的机场接送服务，7座埃尔法豪华体验

[PRODUCT:LINKTIVITY-2IV2I]

- 下午：前往东京晴空塔，推荐超值套票，包含展望台门票和地铁24小时通票

[PRODUCT:LINKTIVITY-3PWVV]

### 第二天：传统文化体验
- 晚上：在新宿欣赏精彩的忍者&歌舞伎表演，体验日本传统文化的现代演绎

[PRODUCT:Ninja-Kabuki-Tokyo]

### 第三天：夜景巡航
- 夜晚：乘坐东京双塔水上巴士夜间巡航，欣赏隅田川和东京湾的璀璨夜景

[PRODUCT:LINKTIVITY-RHT5G]

## 总预算：约¥15,200

这个行程安排让您既能体验东京的现代魅力，又能感受传统文化的底蕴，相信会给您留下难忘的回忆！"""


def mock_fragments(text: str = MOCK_RESPONSE) -> List[str]:
    """Fixture fragment sequence: one character each"""
    return list(text)


class ClassificationResult(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ProviderError(Exception):
    """Provider answered with an error body"""

    def __init__(self, code: Optional[str], message: Optional[str], status_code: Optional[int] = None):
        super().__init__(message or code or "provider error")
        self.code = code
        self.message = message
        self.status_code = status_code


def parse_provider_error(payload) -> Tuple[Optional[str], Optional[str]]:
    """Extract (code, message) from {"error": {"code": ..., "message": ...}}"""
    if not isinstance(payload, dict):
        return None, None
    error = payload.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        return (str(code) if code is not None else None), error.get("message")
    if isinstance(error, str):
        return None, error
    return None, None


def _response_error(response: httpx.Response) -> Tuple[Optional[str], Optional[str]]:
    try:
        return parse_provider_error(response.json())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, None


class LLMService:
    """Chat-completions client (OpenAI-compatible) used as classifier and completion gateway"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.LLM_API_KEY}",
            "Content-Type": "application/json",
        }

    def _payload(self, prompt: str, stream: bool) -> dict:
        return {
            "model": self.settings.MODEL_NAME,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.settings.TEMPERATURE,
            "top_p": self.settings.TOP_P,
            "stream": stream,
            "enable_search": False,
            "do_sample": True,
            "tools": [],
        }

    async def complete(self, prompt: str) -> str:
        """
        Non-streaming completion

        Raises ProviderError for provider error bodies and httpx errors for
        transport or unexplained HTTP failures.
        """
        if self.settings.mock_mode:
            raise ValueError("LLM_API_KEY is not configured")

        response = await self.http_client.post(
            self.settings.LLM_API_BASE,
            json=self._payload(prompt, stream=False),
            headers=self._headers(),
            timeout=self.settings.REQUEST_TIMEOUT
        )
        if response.is_error:
            code, message = _response_error(response)
            if code is not None or message is not None:
                raise ProviderError(code, message, response.status_code)
            response.raise_for_status()

        result = response.json()
        code, message = parse_provider_error(result)
        if code is not None or message is not None:
            raise ProviderError(code, message, response.status_code)

        choices = result.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""

    async def classify(self, query: str) -> ClassificationResult:
        """
        Ask the model whether the query is about Japan tourism.

        Raises ClassificationError; the caller decides how to treat UNKNOWN.
        """
        try:
            answer = await self.complete(build_classification_prompt(query))
        except ProviderError as e:
            logger.warning("Classifier rejected request", code=e.code, error=e.message)
            raise ClassificationError.from_provider_error(e.code, e.message) from e
        except httpx.TransportError as e:
            logger.warning("Classifier unreachable", error=str(e))
            raise ClassificationError(ClassificationErrorKind.NETWORK_UNAVAILABLE, str(e)) from e
        except Exception as e:
            logger.warning("Classifier failed", error=str(e))
            raise ClassificationError(ClassificationErrorKind.UNKNOWN, str(e)) from e

        result = ClassificationResult.ACCEPTED if "yes" in answer.lower() else ClassificationResult.REJECTED
        logger.info("Query classified", result=result.value, answer=answer[:20])
        return result

    async def stream_complete(self, prompt: str) -> AsyncGenerator[str, None]:
        """
        Stream completion fragments in generation order.

        Without an API key the mock fixture is replayed. With
        STREAM_FALLBACK_ENABLED, a stream that fails before its first
        fragment is replaced by the mock as well.
        """
        if self.settings.mock_mode:
            logger.warning("LLM_API_KEY not configured, replaying mock stream")
            async for fragment in self.mock_stream():
                yield fragment
            return

        delivered = False
        try:
            async for fragment in self._provider_stream(prompt):
                delivered = True
                yield fragment
        except StreamError as e:
            if delivered or not self.settings.STREAM_FALLBACK_ENABLED:
                raise
            logger.warning("Completion stream failed, replaying mock stream", error=str(e))
            async for fragment in self.mock_stream():
                yield fragment

    async def _provider_stream(self, prompt: str) -> AsyncGenerator[str, None]:
        try:
            async with self.http_client.stream(
                "POST",
                self.settings.LLM_API_BASE,
                json=self._payload(prompt, stream=True),
                headers=self._headers(),
                timeout=self.settings.STREAM_TIMEOUT
            ) as response:
                if response.is_error:
                    await response.aread()
                    code, message = _response_error(response)
                    logger.error(
                        "LLM stream request failed",
                        status=response.status_code,
                        code=code,
                        error=message
                    )
                    raise StreamError(
                        StreamErrorKind.GATEWAY_REJECTED,
                        message or f"HTTP {response.status_code}"
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue

                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    if not data:
                        continue

                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug("Skipping undecodable stream line", data=data[:100])
                        continue

                    code, message = parse_provider_error(chunk)
                    if code is not None or message is not None:
                        raise StreamError(StreamErrorKind.GATEWAY_REJECTED, message or code)

                    choices = chunk.get("choices") or []
                    if choices:
                        # Only the answer text; reasoning_content is dropped
                        delta = choices[0].get("delta") or {}
                        text = delta.get("content") or ""
                        if text:
                            yield text

        except httpx.HTTPError as e:
            logger.error("LLM stream transport failed", error=str(e))
            raise StreamError(StreamErrorKind.TRANSPORT_FAILURE, str(e)) from e

    async def mock_stream(self) -> AsyncGenerator[str, None]:
        """Replay the fixture itinerary with simulated latency"""
        await asyncio.sleep(self.settings.MOCK_STREAM_INITIAL_DELAY)
        for fragment in mock_fragments():
            yield fragment
            await asyncio.sleep(self.settings.MOCK_STREAM_DELAY)

    async def close(self):
        """Clean up resources"""
        await self.http_client.aclose()
