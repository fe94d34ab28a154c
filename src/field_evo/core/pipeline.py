"""Pipeline 编排器：失败映射 / 采样 / 调度 / 汇总"""

import logging
from datetime import datetime
from typing import Optional, Sequence

from field_evo.adapters.base import CompletionGateway, ExtractionGateway
from field_evo.core.sampler import build_field_failure_map, select_docs_for_optimizer
from field_evo.core.scheduler import OptimizationScheduler, ProgressCallback
from field_evo.errors import RunConfigurationError
from field_evo.models import (
    ComparisonSnapshot, Config, FieldSpec, OptimizationBatchResult, OptimizationConfig,
    RuntimeConfig, SamplingResult,
)

logger = logging.getLogger(__name__)


class Pipeline:
    """FieldEvo 核心 Pipeline：一次提示词优化运行"""

    def __init__(
        self,
        extraction: ExtractionGateway,
        completion: CompletionGateway,
        runtime: Optional[RuntimeConfig] = None,
        optimization: Optional[OptimizationConfig] = None,
    ):
        self.extraction = extraction
        self.completion = completion
        self.runtime = runtime or RuntimeConfig()
        self.optimization = optimization or OptimizationConfig()
        self._scheduler: Optional[OptimizationScheduler] = None
        self._cancel_requested = False

    @classmethod
    def from_config(
        cls,
        config: Config,
        extraction: ExtractionGateway,
        completion: CompletionGateway,
    ) -> "Pipeline":
        return cls(extraction, completion, runtime=config.runtime, optimization=config.optimization)

    @property
    def sample_cap(self) -> int:
        return min(self.optimization.max_sample_docs, self.runtime.max_docs)

    def select_fields(
        self,
        snapshot: ComparisonSnapshot,
        field_keys: Optional[Sequence[str]] = None,
    ) -> list[FieldSpec]:
        """
        确定本次优化的字段 / Resolve the fields to optimize

        field_keys 为空时选择快照中有失败记录的字段。

        Raises:
            RunConfigurationError: 没有字段、字段不存在或重复
        """
        if field_keys is None:
            failure_map = build_field_failure_map(snapshot, [f.key for f in snapshot.fields])
            fields = [f for f in snapshot.fields if failure_map[f.key]]
            if not fields:
                raise RunConfigurationError("没有需要优化的字段 / No fields with failures to optimize")
            return fields

        if not field_keys:
            raise RunConfigurationError("未指定字段 / No fields requested")
        if len(set(field_keys)) != len(field_keys):
            raise RunConfigurationError(f"字段重复 / Duplicate field keys: {list(field_keys)}")

        fields = []
        for key in field_keys:
            spec = snapshot.get_field(key)
            if spec is None:
                raise RunConfigurationError(f"未知字段 / Unknown field key: {key}")
            fields.append(spec)
        return fields

    def sample(self, snapshot: ComparisonSnapshot, fields: Sequence[FieldSpec]) -> SamplingResult:
        """构建失败映射并采样 / Build the failure map and pick documents"""
        failure_map = build_field_failure_map(snapshot, [f.key for f in fields])
        return select_docs_for_optimizer(
            failure_map, cap=self.sample_cap, holdout_ratio=self.optimization.holdout_ratio,
        )

    async def run(
        self,
        snapshot: ComparisonSnapshot,
        field_keys: Optional[Sequence[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OptimizationBatchResult:
        """
        执行一次优化运行 / Execute one optimization run

        Args:
            snapshot: 运行开始时的比对数据
            field_keys: 待优化字段，缺省为所有有失败的字段
            on_progress: 进度回调

        Returns:
            OptimizationBatchResult；取消时为部分结果
        """
        fields = self.select_fields(snapshot, field_keys)
        sampling = self.sample(snapshot, fields)
        ground_truth = {f.key: snapshot.ground_truth_for(f.key) for f in fields}

        logger.info(
            "Optimizing %d field(s) on %d sampled document(s) (%d held out) with %s",
            len(fields), len(sampling.selected_doc_ids), len(sampling.holdout_doc_ids),
            self.runtime.test_model,
        )

        self._scheduler = OptimizationScheduler(
            self.extraction, self.completion, self.runtime, self.optimization,
        )
        if self._cancel_requested:
            self._scheduler.cancel()

        started_at = datetime.now()
        try:
            batch = await self._scheduler.run(fields, sampling, ground_truth, on_progress)
        finally:
            self._scheduler = None

        batch.started_at = started_at
        batch.finished_at = datetime.now()
        batch.duration_seconds = (batch.finished_at - started_at).total_seconds()

        logger.info(
            "Run %s done in %.2fs: %d to apply, %d to skip, %d unverified, %d failed%s",
            batch.run_id, batch.duration_seconds, len(batch.will_apply), len(batch.will_skip),
            len(batch.no_ground_truth), len(batch.failed), " (cancelled)" if batch.cancelled else "",
        )
        return batch

    def cancel(self) -> None:
        """取消当前运行 / Cancel the active run"""
        self._cancel_requested = True
        if self._scheduler is not None:
            self._scheduler.cancel()
