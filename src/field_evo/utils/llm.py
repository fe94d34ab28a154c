"""LLM 调用封装 / LLM call wrapper

改写提示词只需要一次 JSON 模式的对话调用；超时与 SDK 异常统一转换为 GatewayError，
由优化循环决定字段是否失败。
"""

import json
import logging
import os
from typing import Any, Optional

from openai import APITimeoutError, OpenAIError

from field_evo.errors import GatewayError
from field_evo.models.config import LLMConfig

logger = logging.getLogger(__name__)


class LLMClient:
    """OpenAI 兼容的异步对话客户端 / Async OpenAI-compatible chat client"""

    def __init__(self, config: LLMConfig, timeout: Optional[float] = None, max_retries: int = 2):
        self.config = config
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = None

    def _get_client(self):
        """延迟初始化客户端 / Lazy-initialize the client"""
        if self._client is None:
            if self.config.provider != "openai":
                raise GatewayError(f"不支持的 LLM 提供商 / Unsupported LLM provider: {self.config.provider}")

            from openai import AsyncOpenAI

            kwargs: dict[str, Any] = {
                "api_key": self.config.api_key or os.environ.get("OPENAI_API_KEY"),
                "base_url": self.config.base_url,
                "max_retries": self.max_retries,
            }
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            self._client = AsyncOpenAI(**kwargs)

        return self._client

    async def chat(
        self,
        messages: list[dict[str, str]],
        response_format: Optional[dict[str, Any]] = None,
        temperature: Optional[float] = None,
        max_tokens: int = 2048,
    ) -> str:
        """
        发送对话请求 / Send a chat request

        Args:
            messages: 消息列表
            response_format: 响应格式，如 {"type": "json_object"}
            temperature: 温度，缺省使用配置值
            max_tokens: 最大 token 数

        Returns:
            响应文本

        Raises:
            GatewayError: 请求超时、SDK 报错或响应为空
        """
        client = self._get_client()

        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            kwargs["response_format"] = response_format

        try:
            response = await client.chat.completions.create(**kwargs)
        except APITimeoutError as e:
            raise GatewayError(f"{self.config.model} timed out", timed_out=True) from e
        except OpenAIError as e:
            raise GatewayError(f"{self.config.model}: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GatewayError(f"{self.config.model} returned an empty response")
        return content

    async def chat_json(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        """JSON 模式对话，返回原始文本交给调用方解析 / Chat in JSON mode, returning the raw text"""
        content = await self.chat(messages=messages, response_format={"type": "json_object"}, **kwargs)
        try:
            json.loads(content)
        except json.JSONDecodeError:
            # 部分兼容端点忽略 JSON 模式，交给提示词解析器兜底
            logger.debug("JSON mode response is not plain JSON: %s", content[:200])
        return content
