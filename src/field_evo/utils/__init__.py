"""工具模块 / Utility modules"""

from field_evo.utils.llm import LLMClient
from field_evo.utils.i18n import t, set_language, get_language

__all__ = ["LLMClient", "t", "set_language", "get_language"]
