"""单字段优化循环：测试 / 评分 / 改写 状态机"""

import asyncio
import logging
from typing import Awaitable, Callable, Mapping, Optional, Sequence, TypeVar

from field_evo.adapters.base import CompletionGateway, ExtractionGateway
from field_evo.core.evaluator import Evaluator
from field_evo.core.prompts import default_prompt_for
from field_evo.errors import GatewayError
from field_evo.models import (
    DocResult, EscapeValve, FailureExample, FieldOptimizationState, FieldSpec, FieldStatus,
    IterationRecord, OptimizationConfig, PromptProposal, PromptRequest, RuntimeConfig, SamplingResult,
)
from field_evo.utils.concurrency import process_with_concurrency, retry_with_backoff

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[FieldOptimizationState], None]
T = TypeVar("T")


def resolve_sample(
    field_key: str,
    sampling: SamplingResult,
    optimization: OptimizationConfig,
    max_docs: int,
) -> list[str]:
    """
    字段的测试文档：优先使用采样分配，否则按回退策略
    Documents a field is tested on: its sampler assignment, else the escape valve

    Args:
        field_key: 字段 key
        sampling: 本次运行的采样结果（只读）
        optimization: 回退策略配置
        max_docs: 单字段最多测试文档数

    Returns:
        文档 ID 列表，可能为空（字段不可度量）
    """
    assigned = sampling.docs_for(field_key)
    if assigned:
        return assigned[:max_docs]

    # 留出文档只用于验证，不进入测试样本
    if optimization.escape_valve == EscapeValve.ALL_SELECTED:
        return list(sampling.train_doc_ids[:max_docs])
    if optimization.escape_valve == EscapeValve.FALLBACK_DOCS:
        fallback = [d for d in optimization.fallback_doc_ids if d not in sampling.holdout_doc_ids]
        return fallback[:max_docs]
    return []


class FieldOptimizationLoop:
    """
    单字段优化循环 / Per-field optimization loop

    每个字段一个实例，迭代严格串行；状态对象只归本循环写入，
    每次状态迁移都会回调 on_transition。
    """

    def __init__(
        self,
        field: FieldSpec,
        doc_ids: Sequence[str],
        ground_truth: Mapping[str, str],
        extraction: ExtractionGateway,
        completion: CompletionGateway,
        runtime: RuntimeConfig,
        optimization: Optional[OptimizationConfig] = None,
        state: Optional[FieldOptimizationState] = None,
        on_transition: Optional[TransitionCallback] = None,
        holdout_doc_ids: Sequence[str] = (),
    ):
        self.field = field
        self.doc_ids = list(doc_ids)
        self.ground_truth = dict(ground_truth)
        # 只保留有真值、且不在测试样本中的留出文档
        self.holdout_doc_ids = [
            d for d in holdout_doc_ids if d in self.ground_truth and d not in self.doc_ids
        ]
        self.extraction = extraction
        self.completion = completion
        self.runtime = runtime
        self.optimization = optimization or OptimizationConfig()
        self.evaluator = Evaluator.for_field(field.type, field.compare_type)
        self.on_transition = on_transition

        self.state = state or FieldOptimizationState(field_key=field.key)
        self.state.field_name = field.display_name
        self.state.has_ground_truth = field.has_ground_truth
        self.state.original_prompt = field.current_prompt
        self.state.current_prompt = field.current_prompt or default_prompt_for(field.display_name)
        self.state.sampled_doc_ids = list(self.doc_ids)
        self.state.unmeasurable = not self.doc_ids
        self.state.holdout_doc_ids = list(self.holdout_doc_ids)

    @property
    def supervised(self) -> bool:
        """有真值且有可测文档 / Has ground truth and documents to measure on"""
        return self.field.has_ground_truth and bool(self.doc_ids)

    async def run(self) -> FieldOptimizationState:
        """运行到终止状态 / Run until a terminal status is reached"""
        if self.supervised:
            await self._run_supervised()
        else:
            await self._run_unsupervised()

        logger.info(
            "Field %s finished: %s after %d iteration(s), best accuracy %s",
            self.field.key, self.state.status.value, self.state.iteration_count,
            "n/a" if self.state.best_accuracy is None else f"{self.state.best_accuracy:.0%}",
        )
        return self.state

    # ── 有监督分支 ───────────────────────────────────────

    async def _run_supervised(self) -> None:
        max_iterations = self.runtime.max_iterations

        for index in range(max_iterations):
            self._transition(FieldStatus.TESTING)
            record = await self._test(index, self.state.current_prompt, score=True)
            self.state.record_iteration(record)
            logger.info(
                "Field %s iteration %d/%d: accuracy %.0f%%",
                self.field.key, index + 1, max_iterations, (record.accuracy or 0.0) * 100,
            )

            if record.accuracy is not None and record.accuracy >= self.optimization.target_accuracy:
                await self._validate_holdout()
                self._transition(FieldStatus.CONVERGED)
                return
            if index >= max_iterations - 1:
                await self._validate_holdout()
                self._transition(FieldStatus.MAX_ITERATIONS_REACHED)
                return

            self._transition(FieldStatus.AWAITING_REWRITE)
            if not await self._rewrite(index):
                return

    # ── 无真值 / 不可度量分支 ─────────────────────────────

    async def _run_unsupervised(self) -> None:
        """测一次、改写一次、再测一次，结果不评分 / One unscored test-rewrite-test cycle"""
        self._transition(FieldStatus.TESTING)
        self.state.record_iteration(await self._test(0, self.state.current_prompt, score=False))

        self._transition(FieldStatus.AWAITING_REWRITE)
        if not await self._rewrite(0):
            return

        # maxIterations=1 时只生成候选，不再测试
        if self.runtime.max_iterations > 1:
            self._transition(FieldStatus.TESTING)
            self.state.record_iteration(await self._test(1, self.state.current_prompt, score=False))
        self._transition(FieldStatus.MAX_ITERATIONS_REACHED)

    # ── 测试 ─────────────────────────────────────────────

    async def _test(self, index: int, prompt: str, score: bool) -> IterationRecord:
        results = await self._extract_all(self.doc_ids, prompt, score)
        accuracy = Evaluator.score_judgements(r.matched for r in results) if score else None
        return IterationRecord(
            iteration_index=index,
            prompt_used=prompt,
            accuracy=accuracy,
            per_doc_results=results,
        )

    async def _extract_all(self, doc_ids: Sequence[str], prompt: str, score: bool) -> list[DocResult]:
        return await process_with_concurrency(
            list(doc_ids),
            self.runtime.extraction_concurrency,
            lambda doc_id: self._extract_one(doc_id, prompt, score),
            stagger=self.optimization.extraction_stagger_s,
        )

    async def _extract_one(self, doc_id: str, prompt: str, score: bool) -> DocResult:
        """单文档抽取，错误与超时记为不匹配 / Errors and timeouts count as a mismatch"""
        expected = self.ground_truth.get(doc_id)

        async def call() -> str:
            return await _call_gateway(
                self.extraction.extract(doc_id, prompt, self.runtime.test_model, self.field),
                self.optimization.extraction_timeout_s,
                "extraction",
            )

        try:
            value = await retry_with_backoff(
                call,
                retries=self.optimization.extraction_retries,
                delay=self.optimization.retry_delay_s,
            )
        except GatewayError as e:
            logger.warning("Extraction failed: field=%s doc=%s: %s", self.field.key, doc_id, e)
            return DocResult(doc_id=doc_id, expected=expected, error="timeout" if e.timed_out else str(e))

        matched = score and self.evaluator.judge(value, expected)
        logger.debug("field=%s doc=%s extracted=%r expected=%r", self.field.key, doc_id, value, expected)
        return DocResult(doc_id=doc_id, extracted=value, expected=expected, matched=matched)

    async def _validate_holdout(self) -> None:
        """
        在留出文档上比较初始提示词与最佳提示词
        Score the initial and the best prompt on the holdout documents

        结果只写入状态；是否计入提升由汇总阶段判断。
        """
        if not self.holdout_doc_ids or not self.state.iterations:
            return

        baseline = self.state.iterations[0].prompt_used
        best = self.state.best_prompt or baseline

        async def holdout_accuracy(prompt: str) -> float:
            results = await self._extract_all(self.holdout_doc_ids, prompt, score=True)
            return Evaluator.score_judgements(r.matched for r in results)

        self.state.holdout_initial_accuracy = await holdout_accuracy(baseline)
        if best == baseline:
            self.state.holdout_accuracy = self.state.holdout_initial_accuracy
        else:
            self.state.holdout_accuracy = await holdout_accuracy(best)

        logger.info(
            "Field %s holdout (%d doc(s)): initial %.0f%%, best %.0f%%",
            self.field.key, len(self.holdout_doc_ids),
            self.state.holdout_initial_accuracy * 100, self.state.holdout_accuracy * 100,
        )

    # ── 改写 ─────────────────────────────────────────────

    async def _rewrite(self, index: int) -> bool:
        """请求新提示词；失败则字段进入 FAILED / Ask for a new prompt, failing the field on error"""
        request = self._build_request(index)
        try:
            proposal: PromptProposal = await _call_gateway(
                self.completion.propose_prompt(request),
                self.optimization.completion_timeout_s,
                "completion",
            )
        except GatewayError as e:
            self._fail(str(e))
            return False

        self.state.current_prompt = proposal.new_prompt
        self.state.candidate_prompt = proposal.new_prompt
        self.state.rationale = proposal.rationale or None
        return True

    def _build_request(self, index: int) -> PromptRequest:
        last = self.state.last_iteration
        failures = last.failures() if last and self.supervised else []
        successes = last.successes() if last and self.supervised else []

        return PromptRequest(
            field_key=self.field.key,
            field_name=self.field.display_name,
            field_type=self.field.type,
            current_prompt=self.state.current_prompt,
            failure_examples=[
                FailureExample(
                    doc_id=r.doc_id,
                    predicted=r.extracted if r.error is None else f"(extraction error: {r.error})",
                    expected=r.expected or "",
                )
                for r in failures[: self.optimization.max_failure_examples]
            ],
            success_examples=[r.extracted or "" for r in successes[:2]],
            prior_versions=self._prior_versions(),
            iteration_index=index,
            max_iterations=self.runtime.max_iterations,
            has_ground_truth=self.field.has_ground_truth,
            custom_instructions=self.optimization.custom_instructions,
        )

    def _prior_versions(self) -> list[str]:
        """最近 history_depth 个历史提示词，最新的在后 / Most recent prompts, newest last"""
        depth = self.optimization.history_depth
        if depth <= 0:
            return []

        versions: list[str] = []
        candidates = list(reversed(self.field.prompt_history))
        candidates += [it.prompt_used for it in self.state.iterations]
        for prompt in candidates:
            if not prompt or prompt == self.state.current_prompt:
                continue
            if prompt in versions:
                versions.remove(prompt)
            versions.append(prompt)
        return versions[-depth:]

    # ── 状态 ─────────────────────────────────────────────

    def _fail(self, message: str) -> None:
        logger.warning("Field %s failed: %s", self.field.key, message)
        self.state.error_message = message
        self._transition(FieldStatus.FAILED)

    def _transition(self, status: FieldStatus) -> None:
        self.state.transition(status)
        if self.on_transition:
            self.on_transition(self.state)


async def _call_gateway(awaitable: Awaitable[T], timeout: float, what: str) -> T:
    """带超时调用网关，失败统一包装为 GatewayError / Await a gateway call, wrapping failures in GatewayError"""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise GatewayError(f"{what} timed out", timed_out=True) from e
    except GatewayError:
        raise
    except Exception as e:
        raise GatewayError(f"{what} failed: {str(e) or type(e).__name__}") from e
