"""数据模型 / Data models"""

from field_evo.models.config import (
    Config, LLMConfig, ExtractorConfig, RuntimeConfig, OptimizationConfig, EscapeValve,
)
from field_evo.models.field import (
    FieldSpec, FailureRecord, FieldFailureMap, SamplingResult,
    DocumentComparison, ComparisonSnapshot,
)
from field_evo.models.optimization import (
    FieldStatus, IllegalTransitionError, DocResult, IterationRecord, FieldOptimizationState,
    FieldResult, OptimizationBatchResult,
    ProgressSnapshot, ProcessingFieldInfo, ProcessedFieldInfo,
)
from field_evo.models.gateway import FailureExample, PromptRequest, PromptProposal

__all__ = [
    # 配置 / Configuration
    "Config", "LLMConfig", "ExtractorConfig", "RuntimeConfig", "OptimizationConfig", "EscapeValve",
    # 字段与比对 / Fields and comparisons
    "FieldSpec", "FailureRecord", "FieldFailureMap", "SamplingResult",
    "DocumentComparison", "ComparisonSnapshot",
    # 优化状态 / Optimization state
    "FieldStatus", "IllegalTransitionError", "DocResult", "IterationRecord", "FieldOptimizationState",
    # 结果 / Results
    "FieldResult", "OptimizationBatchResult",
    # 进度 / Progress
    "ProgressSnapshot", "ProcessingFieldInfo", "ProcessedFieldInfo",
    # 网关 / Gateways
    "FailureExample", "PromptRequest", "PromptProposal",
]
