"""适配器模块 / Adapter modules"""

from field_evo.adapters.base import CompletionGateway, ExtractionGateway, PromptStore
from field_evo.adapters.callable import CallableExtractionGateway
from field_evo.adapters.llm import LLMCompletionGateway

__all__ = [
    "ExtractionGateway",
    "CompletionGateway",
    "PromptStore",
    "CallableExtractionGateway",
    "LLMCompletionGateway",
]
