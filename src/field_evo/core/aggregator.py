"""结果汇总与应用 / Result aggregation and application"""

import logging
import uuid
from typing import Mapping, Optional, Sequence

from field_evo.adapters.base import PromptStore
from field_evo.models import (
    FieldOptimizationState, FieldResult, FieldStatus, OptimizationBatchResult,
)

logger = logging.getLogger(__name__)


def build_field_result(
    state: FieldOptimizationState,
    original_prompt: Optional[str] = None,
    epsilon: float = 0.001,
) -> FieldResult:
    """
    由终止状态生成单字段结果 / Build one FieldResult from a terminal state

    最终提示词取全程最佳（平局取最早），而不是最后一次生成的版本。
    无真值或不可度量的字段取改写后的候选，不计入提升。
    失败、取消或在留出文档上退步的字段都不计入提升。
    """
    verified = state.has_ground_truth and not state.unmeasurable and state.initial_accuracy is not None
    initial = state.initial_accuracy or 0.0
    final = state.best_accuracy if verified and state.best_accuracy is not None else initial

    if verified:
        final_prompt = state.best_prompt or state.current_prompt
    else:
        final_prompt = state.candidate_prompt or state.current_prompt
    if original_prompt is None:
        original_prompt = state.original_prompt

    holdout_regressed = (
        state.holdout_accuracy is not None
        and state.holdout_initial_accuracy is not None
        and state.holdout_initial_accuracy - state.holdout_accuracy > epsilon
    )
    improved = (
        verified
        and state.status not in (FieldStatus.CANCELLED, FieldStatus.FAILED)
        and (final - initial) > epsilon
        and not holdout_regressed
    )

    return FieldResult(
        field_key=state.field_key,
        field_name=state.field_name or state.field_key,
        status=state.status,
        initial_accuracy=initial,
        final_accuracy=final,
        iteration_count=state.iteration_count,
        converged=state.status == FieldStatus.CONVERGED,
        improved=improved,
        verified=verified,
        unmeasurable=state.unmeasurable,
        final_prompt=final_prompt or original_prompt or "",
        original_prompt=original_prompt or "",
        candidate_prompt=state.candidate_prompt,
        rationale=state.rationale,
        sampled_doc_ids=list(state.sampled_doc_ids),
        has_ground_truth=state.has_ground_truth,
        accuracy_history=[it.accuracy for it in state.iterations],
        error_message=state.error_message,
        time_ms=state.elapsed_ms,
        holdout_doc_ids=list(state.holdout_doc_ids),
        holdout_initial_accuracy=state.holdout_initial_accuracy,
        holdout_accuracy=state.holdout_accuracy,
        holdout_regressed=holdout_regressed,
    )


def aggregate(
    states: Sequence[FieldOptimizationState],
    original_prompts: Mapping[str, str],
    test_model: str = "",
    epsilon: float = 0.001,
    sampled_doc_ids: Optional[Sequence[str]] = None,
    holdout_doc_ids: Optional[Sequence[str]] = None,
    cancelled: bool = False,
    run_id: Optional[str] = None,
) -> OptimizationBatchResult:
    """
    汇总所有字段结果，保持输入顺序，不丢弃任何字段
    Aggregate per-field results in input order; no field is ever dropped

    Args:
        states: 各字段终止状态
        original_prompts: field_key -> 优化前提示词
        test_model: 测试模型
        epsilon: 判定提升的最小差值
        sampled_doc_ids: 本次采样的文档
        holdout_doc_ids: 留出验证文档，其余采样文档为训练文档
        cancelled: 运行是否被取消
        run_id: 运行 ID，缺省自动生成

    Returns:
        OptimizationBatchResult
    """
    per_field = [
        build_field_result(state, original_prompts.get(state.field_key), epsilon)
        for state in states
    ]
    sampled = list(sampled_doc_ids or [])
    holdout = list(holdout_doc_ids or [])
    return OptimizationBatchResult(
        run_id=run_id or uuid.uuid4().hex,
        test_model=test_model,
        per_field=per_field,
        sampled_doc_ids=sampled,
        train_doc_ids=[d for d in sampled if d not in holdout],
        holdout_doc_ids=holdout,
        cancelled=cancelled,
    )


def format_apply_note(result: FieldResult) -> str:
    return (
        f"Optimized. Initial: {result.initial_accuracy:.0%} → "
        f"Final: {result.final_accuracy:.0%} ({result.iteration_count} iterations)"
    )


def apply_batch(
    batch: OptimizationBatchResult,
    store: PromptStore,
    field_keys: Optional[Sequence[str]] = None,
) -> list[str]:
    """
    将有提升的提示词写入存储 / Save improved prompts as new versions

    Args:
        batch: 运行结果
        store: 提示词存储
        field_keys: 只应用这些字段，缺省为全部 will_apply 字段

    Returns:
        已应用的 field_key 列表
    """
    applied: list[str] = []
    for result in batch.will_apply:
        if field_keys is not None and result.field_key not in field_keys:
            continue
        store.save_prompt(result.field_key, result.final_prompt, note=format_apply_note(result))
        applied.append(result.field_key)
        logger.info("Applied prompt for %s", result.field_key)
    return applied
