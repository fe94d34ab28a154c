"""
loop.py 测试 / Field optimization loop tests
"""

import asyncio
from typing import Optional

from field_evo.adapters.base import CompletionGateway, ExtractionGateway
from field_evo.core.aggregator import build_field_result
from field_evo.core.loop import FieldOptimizationLoop, resolve_sample
from field_evo.errors import GatewayError
from field_evo.models import (
    EscapeValve, FieldSpec, FieldStatus, OptimizationConfig, PromptProposal, PromptRequest,
    RuntimeConfig, SamplingResult,
)

GROUND_TRUTH = {"doc-1": "INV-1", "doc-2": "INV-2"}


# ─── Fakes ──────────────────────────────────────────────

class ScriptedExtraction(ExtractionGateway):
    """按 (prompt, doc_id) 返回预设值，其余返回错误值"""

    def __init__(self, answers: dict[str, dict[str, str]], errors: Optional[set[str]] = None, delay: float = 0.0):
        self.answers = answers
        self.errors = errors or set()
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def extract(self, doc_id, prompt, model, field=None):
        self.calls.append((doc_id, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if doc_id in self.errors:
            raise RuntimeError("upstream 500")
        return self.answers.get(prompt, {}).get(doc_id, "WRONG")


class SequenceCompletion(CompletionGateway):
    """依次返回 p1, p2, ..."""

    def __init__(self, fail_on_call: Optional[int] = None):
        self.requests: list[PromptRequest] = []
        self.fail_on_call = fail_on_call

    async def propose_prompt(self, request):
        self.requests.append(request)
        if self.fail_on_call is not None and len(self.requests) == self.fail_on_call:
            raise GatewayError("rate limited")
        return PromptProposal(new_prompt=f"p{len(self.requests)}", rationale="more specific")


def _optimization(**overrides) -> OptimizationConfig:
    values = dict(extraction_stagger_s=0.0, retry_delay_s=0.0, extraction_retries=0)
    values.update(overrides)
    return OptimizationConfig(**values)


def _field(**overrides) -> FieldSpec:
    values = dict(key="invoice_number", display_name="Invoice Number", current_prompt="p0")
    values.update(overrides)
    return FieldSpec(**values)


def _run_loop(
    extraction: ExtractionGateway,
    completion: CompletionGateway,
    max_iterations: int = 5,
    field: Optional[FieldSpec] = None,
    doc_ids=("doc-1", "doc-2"),
    optimization: Optional[OptimizationConfig] = None,
    transitions: Optional[list] = None,
):
    loop = FieldOptimizationLoop(
        field=field or _field(),
        doc_ids=list(doc_ids),
        ground_truth=GROUND_TRUTH,
        extraction=extraction,
        completion=completion,
        runtime=RuntimeConfig(test_model="test-model", max_iterations=max_iterations),
        optimization=optimization or _optimization(),
        on_transition=(lambda s: transitions.append(s.status)) if transitions is not None else None,
    )
    return asyncio.run(loop.run())


class TestSupervisedLoop:
    """有真值字段的 测试-改写 循环"""

    def test_single_iteration_reaches_max(self):
        """maxIterations=1 且初始 0.5：一次记录后 MaxIterationsReached，不算提升"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1"}})
        completion = SequenceCompletion()

        state = _run_loop(extraction, completion, max_iterations=1)
        result = build_field_result(state)

        assert state.status == FieldStatus.MAX_ITERATIONS_REACHED
        assert state.iteration_count == 1
        assert state.initial_accuracy == 0.5
        assert result.final_accuracy == 0.5
        assert result.improved is False
        assert completion.requests == []

    def test_converges_on_third_iteration(self):
        """第 2 次迭代达到 100%：Converged，共 3 条记录，不再继续"""
        extraction = ScriptedExtraction({
            "p0": {},
            "p1": {"doc-1": "INV-1"},
            "p2": {"doc-1": "INV-1", "doc-2": "INV-2"},
        })
        completion = SequenceCompletion()

        state = _run_loop(extraction, completion, max_iterations=5)
        result = build_field_result(state)

        assert state.status == FieldStatus.CONVERGED
        assert state.iteration_count == 3
        assert [it.accuracy for it in state.iterations] == [0.0, 0.5, 1.0]
        assert len(completion.requests) == 2
        assert result.converged is True
        assert result.improved is True
        assert result.final_prompt == "p2"

    def test_converged_immediately(self):
        """初始提示词已 100%：不调用改写"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1", "doc-2": "INV-2"}})
        completion = SequenceCompletion()
        transitions: list = []

        state = _run_loop(extraction, completion, transitions=transitions)

        assert state.status == FieldStatus.CONVERGED
        assert transitions == [FieldStatus.TESTING, FieldStatus.CONVERGED]
        assert completion.requests == []

    def test_best_of_run_survives_regression(self):
        """后期退化不会丢掉早期更好的提示词"""
        extraction = ScriptedExtraction({
            "p0": {},
            "p1": {"doc-1": "INV-1"},
            "p2": {},
        })
        state = _run_loop(extraction, SequenceCompletion(), max_iterations=3)
        result = build_field_result(state)

        assert state.status == FieldStatus.MAX_ITERATIONS_REACHED
        assert state.iteration_count == 3
        assert result.final_prompt == "p1"
        assert result.final_accuracy == 0.5
        assert result.improved is True
        for it in state.iterations:
            assert result.final_accuracy >= it.accuracy

    def test_tie_keeps_earliest_prompt(self):
        """准确率相同时保留更早的版本"""
        extraction = ScriptedExtraction({
            "p0": {"doc-1": "INV-1"},
            "p1": {"doc-2": "INV-2"},
        })
        state = _run_loop(extraction, SequenceCompletion(), max_iterations=2)
        result = build_field_result(state)

        assert result.final_prompt == "p0"
        assert result.improved is False

    def test_completion_failure_fails_field(self):
        """改写失败：字段 FAILED，保留已有最佳结果"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1"}})
        completion = SequenceCompletion(fail_on_call=1)

        state = _run_loop(extraction, completion, max_iterations=3)
        result = build_field_result(state)

        assert state.status == FieldStatus.FAILED
        assert state.iteration_count == 1
        assert "rate limited" in state.error_message
        assert result.final_prompt == "p0"
        assert result.initial_accuracy == 0.5

    def test_extraction_error_counts_as_mismatch(self):
        """单文档抽取错误只算不匹配，不中止字段"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1", "doc-2": "INV-2"}}, errors={"doc-2"})

        state = _run_loop(extraction, SequenceCompletion(), max_iterations=1)

        record = state.iterations[0]
        assert record.accuracy == 0.5
        failed = record.failures()
        assert [r.doc_id for r in failed] == ["doc-2"]
        assert "upstream 500" in failed[0].error

    def test_extraction_timeout_counts_as_mismatch(self):
        """抽取超时等同于抽取错误"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1"}}, delay=0.5)
        optimization = _optimization(extraction_timeout_s=0.01)

        state = _run_loop(extraction, SequenceCompletion(), max_iterations=1, optimization=optimization)

        assert state.iterations[0].accuracy == 0.0
        assert all(r.error == "timeout" for r in state.iterations[0].per_doc_results)

    def test_extraction_is_retried(self):
        """抽取失败后按配置重试"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1"}}, errors={"doc-2"})
        optimization = _optimization(extraction_retries=2)

        _run_loop(extraction, SequenceCompletion(), max_iterations=1, optimization=optimization)

        assert [d for d, _ in extraction.calls].count("doc-2") == 3

    def test_rewrite_request_carries_failures_and_history(self):
        """改写请求带失败示例与最近两个历史版本"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1"}})
        completion = SequenceCompletion()

        _run_loop(extraction, completion, max_iterations=4)

        first = completion.requests[0]
        assert first.current_prompt == "p0"
        assert [ex.doc_id for ex in first.failure_examples] == ["doc-2"]
        assert first.failure_examples[0].expected == "INV-2"
        assert first.success_examples == ["INV-1"]
        assert first.prior_versions == []

        third = completion.requests[2]
        assert third.current_prompt == "p2"
        assert third.prior_versions == ["p0", "p1"]
        assert third.iteration_index == 2

    def test_stored_history_fills_prior_versions(self):
        """字段自带的历史版本补足请求中的历史"""
        extraction = ScriptedExtraction({})
        completion = SequenceCompletion()
        field = _field(prompt_history=["older", "oldest"])

        _run_loop(extraction, completion, max_iterations=2, field=field)

        assert completion.requests[0].prior_versions == ["oldest", "older"]

    def test_empty_prompt_starts_from_default(self):
        """没有提示词的字段从默认提示词开始"""
        extraction = ScriptedExtraction({})
        field = _field(current_prompt="")

        state = _run_loop(extraction, SequenceCompletion(), max_iterations=1, field=field)

        assert state.iterations[0].prompt_used == "Extract the Invoice Number from this document."
        assert state.original_prompt == ""


class TestUnsupervisedLoop:
    """无真值 / 不可度量字段"""

    def test_no_ground_truth_runs_one_rewrite_cycle(self):
        """无真值：测试-改写-测试一次，不评分，结果为未验证"""
        extraction = ScriptedExtraction({})
        completion = SequenceCompletion()
        transitions: list = []
        field = _field(has_ground_truth=False)

        state = _run_loop(extraction, completion, field=field, transitions=transitions)
        result = build_field_result(state)

        assert state.status == FieldStatus.MAX_ITERATIONS_REACHED
        assert transitions == [
            FieldStatus.TESTING, FieldStatus.AWAITING_REWRITE,
            FieldStatus.TESTING, FieldStatus.MAX_ITERATIONS_REACHED,
        ]
        assert [it.accuracy for it in state.iterations] == [None, None]
        assert len(completion.requests) == 1
        assert completion.requests[0].has_ground_truth is False
        assert result.final_prompt == "p1"
        assert result.verified is False
        assert result.improved is False

    def test_single_iteration_budget_skips_retest(self):
        """maxIterations=1 时只生成候选"""
        field = _field(has_ground_truth=False)

        state = _run_loop(ScriptedExtraction({}), SequenceCompletion(), max_iterations=1, field=field)

        assert state.status == FieldStatus.MAX_ITERATIONS_REACHED
        assert state.iteration_count == 1
        assert state.candidate_prompt == "p1"

    def test_empty_sample_is_unmeasurable(self):
        """没有可测文档：准确率 0 并标记不可度量"""
        extraction = ScriptedExtraction({})

        state = _run_loop(extraction, SequenceCompletion(), doc_ids=())
        result = build_field_result(state)

        assert state.unmeasurable is True
        assert extraction.calls == []
        assert result.initial_accuracy == 0.0
        assert result.final_accuracy == 0.0
        assert result.unmeasurable is True
        assert result.verified is False


class TestResolveSample:
    """回退策略"""

    def _sampling(self) -> SamplingResult:
        return SamplingResult(
            selected_doc_ids=["doc-1", "doc-2"],
            field_to_doc_ids={"A": ["doc-1"], "B": []},
        )

    def test_assigned_docs_first(self):
        assert resolve_sample("A", self._sampling(), OptimizationConfig(), 5) == ["doc-1"]

    def test_all_selected_valve(self):
        assert resolve_sample("B", self._sampling(), OptimizationConfig(), 5) == ["doc-1", "doc-2"]

    def test_fallback_docs_valve(self):
        config = OptimizationConfig(escape_valve=EscapeValve.FALLBACK_DOCS, fallback_doc_ids=["doc-9"])
        assert resolve_sample("B", self._sampling(), config, 5) == ["doc-9"]

    def test_no_valve(self):
        config = OptimizationConfig(escape_valve=EscapeValve.NONE)
        assert resolve_sample("B", self._sampling(), config, 5) == []

    def test_max_docs_bounds_sample(self):
        assert resolve_sample("B", self._sampling(), OptimizationConfig(), 1) == ["doc-1"]

    def test_holdout_docs_excluded_from_valves(self):
        """回退策略不会用到留出文档"""
        sampling = SamplingResult(
            selected_doc_ids=["doc-1", "doc-2", "doc-3"],
            holdout_doc_ids=["doc-3"],
            field_to_doc_ids={"A": ["doc-1"]},
        )
        fallback = OptimizationConfig(escape_valve=EscapeValve.FALLBACK_DOCS, fallback_doc_ids=["doc-3", "doc-9"])

        assert resolve_sample("B", sampling, OptimizationConfig(), 5) == ["doc-1", "doc-2"]
        assert resolve_sample("B", sampling, fallback, 5) == ["doc-9"]


class SlowCompletion(CompletionGateway):
    async def propose_prompt(self, request):
        await asyncio.sleep(0.5)
        return PromptProposal(new_prompt="late")


class TestHoldoutAndGatewayErrors:
    """留出验证与网关错误"""

    def _holdout_loop(self, extraction, holdout_doc_ids=("doc-3",)) -> FieldOptimizationLoop:
        return FieldOptimizationLoop(
            field=_field(),
            doc_ids=["doc-1", "doc-2"],
            ground_truth={**GROUND_TRUTH, "doc-3": "INV-3"},
            extraction=extraction,
            completion=SequenceCompletion(),
            runtime=RuntimeConfig(test_model="test-model", max_iterations=3),
            optimization=_optimization(),
            holdout_doc_ids=list(holdout_doc_ids),
        )

    def test_best_prompt_checked_on_holdout(self):
        """训练文档上收敛，但留出文档退步：不计入提升"""
        extraction = ScriptedExtraction({
            "p0": {"doc-1": "INV-1", "doc-3": "INV-3"},
            "p1": {"doc-1": "INV-1", "doc-2": "INV-2"},
        })

        state = asyncio.run(self._holdout_loop(extraction).run())
        result = build_field_result(state)

        assert state.status == FieldStatus.CONVERGED
        assert state.holdout_initial_accuracy == 1.0
        assert state.holdout_accuracy == 0.0
        assert ("doc-3", "p0") in extraction.calls
        assert ("doc-3", "p1") in extraction.calls
        assert all(r.doc_id != "doc-3" for it in state.iterations for r in it.per_doc_results)
        assert result.final_accuracy == 1.0
        assert result.holdout_regressed is True
        assert result.improved is False

    def test_holdout_confirms_improvement(self):
        extraction = ScriptedExtraction({
            "p0": {"doc-1": "INV-1"},
            "p1": {"doc-1": "INV-1", "doc-2": "INV-2", "doc-3": "INV-3"},
        })

        state = asyncio.run(self._holdout_loop(extraction).run())
        result = build_field_result(state)

        assert state.holdout_initial_accuracy == 0.0
        assert state.holdout_accuracy == 1.0
        assert result.improved is True

    def test_holdout_docs_without_ground_truth_ignored(self):
        loop = self._holdout_loop(ScriptedExtraction({}), holdout_doc_ids=("doc-3", "doc-9"))

        assert loop.state.holdout_doc_ids == ["doc-3"]

    def test_unchanged_best_prompt_scored_once(self):
        """最佳提示词就是初始提示词时，留出文档只测一次"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1", "doc-2": "INV-2", "doc-3": "INV-3"}})

        state = asyncio.run(self._holdout_loop(extraction).run())

        assert state.status == FieldStatus.CONVERGED
        assert [c for c in extraction.calls if c[0] == "doc-3"] == [("doc-3", "p0")]
        assert state.holdout_accuracy == state.holdout_initial_accuracy == 1.0

    def test_completion_timeout_fails_field(self):
        """改写超时：字段 FAILED，错误信息标明超时"""
        extraction = ScriptedExtraction({"p0": {"doc-1": "INV-1"}})
        optimization = _optimization(completion_timeout_s=0.01)

        state = _run_loop(extraction, SlowCompletion(), max_iterations=3, optimization=optimization)

        assert state.status == FieldStatus.FAILED
        assert state.error_message == "completion timed out"

    def test_unexpected_completion_error_is_wrapped(self):
        class Broken(CompletionGateway):
            async def propose_prompt(self, request):
                raise KeyError("newPrompt")

        state = _run_loop(ScriptedExtraction({}), Broken(), max_iterations=2)

        assert state.status == FieldStatus.FAILED
        assert state.error_message.startswith("completion failed:")
