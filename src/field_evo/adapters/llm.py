"""基于 LLM 的改写适配器 / LLM-backed completion adapter"""

import logging
from typing import Optional

from field_evo.adapters.base import CompletionGateway
from field_evo.core.prompts import build_rewrite_request, parse_prompt_response
from field_evo.models import LLMConfig, PromptProposal, PromptRequest
from field_evo.utils.llm import LLMClient

logger = logging.getLogger(__name__)


class LLMCompletionGateway(CompletionGateway):
    """用 OpenAI 兼容模型改写提示词 / Rewrites prompts with an OpenAI-compatible chat model"""

    def __init__(self, config: LLMConfig, max_failure_examples: int = 3, timeout: Optional[float] = None):
        self.llm = LLMClient(config, timeout=timeout)
        self.max_failure_examples = max_failure_examples

    async def propose_prompt(self, request: PromptRequest) -> PromptProposal:
        prompt = build_rewrite_request(request, max_failures=self.max_failure_examples)

        response = await self.llm.chat_json(messages=[{"role": "user", "content": prompt}])
        logger.debug("Rewrite response for %s: %s", request.field_key, response[:500])

        return parse_prompt_response(response)
