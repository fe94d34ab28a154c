"""核心模块 / Core modules"""

from field_evo.core.config import load_config
from field_evo.core.sampler import build_field_failure_map, select_docs_for_optimizer
from field_evo.core.evaluator import Evaluator, values_match
from field_evo.core.loop import FieldOptimizationLoop
from field_evo.core.scheduler import OptimizationScheduler
from field_evo.core.aggregator import aggregate, apply_batch
from field_evo.core.pipeline import Pipeline
from field_evo.core.serializer import (
    YamlPromptStore,
    load_snapshot,
    save_batch_result,
    load_batch_result,
    with_stored_prompts,
)

__all__ = [
    "load_config",
    "build_field_failure_map",
    "select_docs_for_optimizer",
    "Evaluator",
    "values_match",
    "FieldOptimizationLoop",
    "OptimizationScheduler",
    "aggregate",
    "apply_batch",
    "Pipeline",
    "YamlPromptStore",
    "load_snapshot",
    "save_batch_result",
    "load_batch_result",
    "with_stored_prompts",
]
