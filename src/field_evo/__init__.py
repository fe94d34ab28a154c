"""FieldEvo - 文档字段抽取提示词自动优化
FieldEvo - automated prompt optimization for document field extraction"""

__version__ = "0.1.0"

from field_evo.core.pipeline import Pipeline
from field_evo.models import Config, RuntimeConfig, OptimizationBatchResult

__all__ = ["Pipeline", "Config", "RuntimeConfig", "OptimizationBatchResult", "__version__"]
