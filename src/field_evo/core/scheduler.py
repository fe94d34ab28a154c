"""优化调度器：有界字段并发 + 进度流"""

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Callable, Mapping, Optional, Sequence

from field_evo.adapters.base import CompletionGateway, ExtractionGateway
from field_evo.core.aggregator import aggregate
from field_evo.core.loop import FieldOptimizationLoop, resolve_sample
from field_evo.models import (
    FieldOptimizationState, FieldSpec, FieldStatus, OptimizationBatchResult, OptimizationConfig,
    ProcessedFieldInfo, ProcessingFieldInfo, ProgressSnapshot, RuntimeConfig, SamplingResult,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]


class OptimizationScheduler:
    """
    字段级调度器 / Field-level scheduler

    - 最多 field_concurrency 个字段同时处于 Testing/AwaitingRewrite
    - 其余字段按提交顺序排队，有空位立即补入
    - 每次状态迁移产生一个进度快照，计数只在协调者中更新
    - 单字段异常只会让该字段进入 FAILED
    """

    def __init__(
        self,
        extraction: ExtractionGateway,
        completion: CompletionGateway,
        runtime: RuntimeConfig,
        optimization: Optional[OptimizationConfig] = None,
    ):
        self.extraction = extraction
        self.completion = completion
        self.runtime = runtime
        self.optimization = optimization or OptimizationConfig()
        self.states: list[FieldOptimizationState] = []
        self._cancelled = False
        self._workers: list[asyncio.Task] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """取消整个运行：停止接纳新字段并取消进行中的调用 / Cancel the whole run"""
        if self._cancelled:
            return
        logger.info("Cancelling optimization run")
        self._cancelled = True
        for task in self._workers:
            task.cancel()

    async def run(
        self,
        fields: Sequence[FieldSpec],
        sampling: SamplingResult,
        ground_truth: Optional[Mapping[str, Mapping[str, str]]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OptimizationBatchResult:
        """
        运行全部字段并汇总结果 / Run all fields and aggregate

        Args:
            fields: 待优化字段（按提交顺序）
            sampling: 采样结果，所有字段共享只读
            ground_truth: field_key -> {doc_id: 真值}
            on_progress: 进度回调

        Returns:
            OptimizationBatchResult，取消时为部分结果
        """
        async for snapshot in self.stream(fields, sampling, ground_truth):
            if on_progress:
                on_progress(snapshot)

        return aggregate(
            self.states,
            {f.key: f.current_prompt for f in fields},
            test_model=self.runtime.test_model,
            epsilon=self.optimization.improvement_epsilon,
            sampled_doc_ids=sampling.selected_doc_ids,
            holdout_doc_ids=sampling.holdout_doc_ids,
            cancelled=self._cancelled,
        )

    async def stream(
        self,
        fields: Sequence[FieldSpec],
        sampling: SamplingResult,
        ground_truth: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> AsyncIterator[ProgressSnapshot]:
        """运行并逐个产出进度快照 / Run and yield a progress snapshot per transition"""
        ground_truth = ground_truth or {}
        self.states = [FieldOptimizationState(field_key=f.key, field_name=f.display_name) for f in fields]
        states = {s.field_key: s for s in self.states}
        pending = deque(fields)
        events: asyncio.Queue = asyncio.Queue()

        def emit(state: FieldOptimizationState) -> None:
            events.put_nowait(ProcessedFieldInfo(
                field_key=state.field_key,
                field_name=state.field_name,
                status=state.status,
                iteration_count=state.iteration_count,
                initial_accuracy=state.initial_accuracy,
                final_accuracy=state.best_accuracy,
                time_ms=state.elapsed_ms,
            ))

        def finish(state: FieldOptimizationState, status: FieldStatus) -> None:
            if not state.status.is_terminal:
                state.transition(status)
                emit(state)

        async def worker(worker_id: int) -> None:
            while pending and not self._cancelled:
                field = pending.popleft()
                state = states[field.key]
                logger.info("Worker %d admitted field %s", worker_id, field.key)
                try:
                    loop = FieldOptimizationLoop(
                        field=field,
                        doc_ids=resolve_sample(field.key, sampling, self.optimization, self.runtime.max_docs),
                        ground_truth=ground_truth.get(field.key, {}),
                        extraction=self.extraction,
                        completion=self.completion,
                        runtime=self.runtime,
                        optimization=self.optimization,
                        state=state,
                        on_transition=emit,
                        holdout_doc_ids=sampling.holdout_doc_ids,
                    )
                    await loop.run()
                except asyncio.CancelledError:
                    finish(state, FieldStatus.CANCELLED)
                    raise
                except Exception as e:
                    logger.exception("Field %s crashed", field.key)
                    state.error_message = str(e) or type(e).__name__
                    finish(state, FieldStatus.FAILED)

        async def supervise() -> None:
            await asyncio.gather(*self._workers, return_exceptions=True)
            for state in self.states:
                finish(state, FieldStatus.CANCELLED)
            events.put_nowait(None)

        worker_count = min(self.runtime.field_concurrency, len(fields))
        self._workers = [asyncio.create_task(worker(i)) for i in range(worker_count)]
        if self._cancelled:
            for task in self._workers:
                task.cancel()
        supervisor = asyncio.create_task(supervise())

        # 协调者：唯一更新进度计数的地方
        queued = len(fields)
        seen: set[str] = set()
        processing: dict[str, ProcessingFieldInfo] = {}
        processed: list[ProcessedFieldInfo] = []

        def snapshot(event: Optional[ProcessedFieldInfo] = None) -> ProgressSnapshot:
            return ProgressSnapshot(
                total_fields=len(fields),
                queued=queued,
                processing=list(processing.values()),
                processed=list(processed),
                field_key=event.field_key if event else None,
                status=event.status if event else None,
            )

        try:
            yield snapshot()
            while True:
                event = await events.get()
                if event is None:
                    break
                if event.field_key not in seen:
                    seen.add(event.field_key)
                    queued -= 1
                if event.status.is_terminal:
                    processing.pop(event.field_key, None)
                    processed.append(event)
                else:
                    processing[event.field_key] = ProcessingFieldInfo(
                        field_key=event.field_key,
                        field_name=event.field_name,
                        status=event.status,
                        iteration=event.iteration_count,
                        initial_accuracy=event.initial_accuracy,
                    )
                yield snapshot(event)
        finally:
            if not supervisor.done():
                for task in self._workers:
                    task.cancel()
                await asyncio.gather(supervisor, return_exceptions=True)
