"""Callable 抽取适配器 / Callable extraction adapter"""

import asyncio
import importlib
import inspect
import sys
from pathlib import Path
from typing import Callable, Optional

from field_evo.adapters.base import ExtractionGateway
from field_evo.models import ExtractorConfig, FieldSpec
from field_evo.utils.i18n import t


class CallableExtractionGateway(ExtractionGateway):
    """
    通用 Callable 抽取适配器

    支持同步和异步函数，签名为 (doc_id, prompt, model[, field]) -> str
    """

    def __init__(self, func: Callable):
        self.func = func
        self._is_async = inspect.iscoroutinefunction(func)
        self._accepts_field = len(inspect.signature(func).parameters) >= 4

    @classmethod
    def from_config(cls, config: ExtractorConfig, project_dir: Optional[Path] = None) -> "CallableExtractionGateway":
        """
        按配置动态加载用户的抽取函数 / Load the user's extraction function from config

        Raises:
            RuntimeError: 模块或函数不存在
        """
        # 相对于项目目录导入 / Import relative to the project directory
        base = str(project_dir or Path.cwd())
        if base not in sys.path:
            sys.path.insert(0, base)

        try:
            module = importlib.import_module(config.module)
            func = getattr(module, config.function)
        except (ImportError, AttributeError) as e:
            raise RuntimeError(
                t("extractor_load_failed").format(module=config.module, function=config.function, msg=e)
            ) from e
        return cls(func)

    async def extract(
        self,
        doc_id: str,
        prompt: str,
        model: str,
        field: Optional[FieldSpec] = None,
    ) -> str:
        """调用抽取函数"""
        args: tuple = (doc_id, prompt, model)
        if self._accepts_field:
            args = (doc_id, prompt, model, field)

        if self._is_async:
            result = await self.func(*args)
        else:
            # 在线程池中运行同步函数
            result = await asyncio.to_thread(self.func, *args)

        return str(result) if result is not None else ""
