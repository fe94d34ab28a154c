"""外部协作方接口 / External collaborator interfaces"""

from abc import ABC, abstractmethod
from typing import Optional

from field_evo.models import FieldSpec, PromptProposal, PromptRequest


class ExtractionGateway(ABC):
    """抽取网关：用给定提示词从文档中抽取字段值 / Extracts a field value from a document"""

    @abstractmethod
    async def extract(
        self,
        doc_id: str,
        prompt: str,
        model: str,
        field: Optional[FieldSpec] = None,
    ) -> str:
        """
        抽取字段值

        Args:
            doc_id: 文档 ID
            prompt: 字段提示词
            model: 抽取模型标识
            field: 字段定义（可选上下文）

        Returns:
            抽取值，失败时抛出异常
        """


class CompletionGateway(ABC):
    """改写网关：根据失败证据提出新提示词 / Proposes a better prompt from failure evidence"""

    @abstractmethod
    async def propose_prompt(self, request: PromptRequest) -> PromptProposal:
        """
        提出新提示词

        Args:
            request: 当前提示词、失败示例、历史版本

        Returns:
            新提示词与简短理由，失败时抛出异常
        """


class PromptStore(ABC):
    """提示词版本存储 / Persistent prompt version store"""

    @abstractmethod
    def get_prompt(self, field_key: str) -> Optional[str]:
        """获取字段当前提示词"""

    @abstractmethod
    def get_history(self, field_key: str) -> list[dict]:
        """获取字段历史版本，最新的在前"""

    @abstractmethod
    def save_prompt(self, field_key: str, prompt: str, note: str, source: str = "optimizer") -> None:
        """保存新版本并设为当前提示词"""
