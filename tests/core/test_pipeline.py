"""
pipeline.py 测试 / Pipeline tests
"""

import asyncio

import pytest

from field_evo.adapters.base import CompletionGateway, ExtractionGateway
from field_evo.core.pipeline import Pipeline
from field_evo.errors import RunConfigurationError
from field_evo.models import (
    ComparisonSnapshot, Config, DocumentComparison, FieldSpec, FieldStatus, OptimizationConfig,
    PromptProposal, RuntimeConfig,
)

GROUND_TRUTH = {
    "doc-1": {"A": "alpha", "B": "bravo", "C": "charlie"},
    "doc-2": {"A": "apple", "B": "banana", "C": "cherry"},
    "doc-3": {"A": "avocado", "B": "blueberry", "C": "coconut"},
}


def _snapshot() -> ComparisonSnapshot:
    """A 只在 doc-1 失败；B 在 doc-1/doc-2 失败；C 在 doc-2/doc-3 失败；D 没有失败"""
    failing = {"doc-1": {"A", "B"}, "doc-2": {"B", "C"}, "doc-3": {"C"}}
    documents = []
    for doc_id, truth in GROUND_TRUTH.items():
        truth = {**truth, "D": "delta"}
        extracted = {k: ("zzz" if k in failing[doc_id] else v) for k, v in truth.items()}
        documents.append(DocumentComparison(doc_id=doc_id, ground_truth=truth, extracted=extracted))
    return ComparisonSnapshot(
        template_key="demo",
        fields=[
            FieldSpec(key=k, display_name=f"Field {k}", current_prompt=f"find {k}")
            for k in ("A", "B", "C", "D")
        ],
        documents=documents,
    )


class TruthAfterRewrite(ExtractionGateway):
    def __init__(self):
        self.docs_seen: dict[str, set[str]] = {}

    async def extract(self, doc_id, prompt, model, field=None):
        self.docs_seen.setdefault(field.key, set()).add(doc_id)
        if prompt.startswith("better"):
            return GROUND_TRUTH[doc_id].get(field.key, "delta")
        return "zzz"


class BetterCompletion(CompletionGateway):
    async def propose_prompt(self, request):
        return PromptProposal(new_prompt=f"better {request.field_key}")


def _pipeline(extraction=None) -> Pipeline:
    return Pipeline(
        extraction=extraction or TruthAfterRewrite(),
        completion=BetterCompletion(),
        runtime=RuntimeConfig(test_model="test-model", max_iterations=3),
        optimization=OptimizationConfig(extraction_stagger_s=0.0, retry_delay_s=0.0),
    )


class TestPipelineRun:
    """完整运行"""

    def test_targets_fields_with_failures(self):
        """未指定字段时只优化有失败的字段"""
        extraction = TruthAfterRewrite()
        batch = asyncio.run(_pipeline(extraction).run(_snapshot()))

        assert [r.field_key for r in batch.per_field] == ["A", "B", "C"]
        assert batch.sampled_doc_ids == ["doc-1", "doc-2"]
        assert extraction.docs_seen == {"A": {"doc-1"}, "B": {"doc-1"}, "C": {"doc-2"}}
        assert all(r.status == FieldStatus.CONVERGED for r in batch.per_field)
        assert [r.field_key for r in batch.will_apply] == ["A", "B", "C"]

    def test_batch_metadata(self):
        batch = asyncio.run(_pipeline().run(_snapshot(), ["C"]))

        assert batch.run_id
        assert batch.test_model == "test-model"
        assert batch.started_at is not None and batch.finished_at is not None
        assert batch.duration_seconds >= 0

    def test_field_without_failures_uses_escape_valve(self):
        """没有失败的字段回退到全部已选文档"""
        extraction = TruthAfterRewrite()
        batch = asyncio.run(_pipeline(extraction).run(_snapshot(), ["A", "D"]))

        assert batch.get("D").sampled_doc_ids == ["doc-1"]
        assert extraction.docs_seen["D"] == {"doc-1"}

    def test_sample_cap_uses_max_docs(self):
        pipeline = Pipeline(
            TruthAfterRewrite(), BetterCompletion(),
            runtime=RuntimeConfig(max_docs=1),
            optimization=OptimizationConfig(max_sample_docs=3),
        )
        sampling = pipeline.sample(_snapshot(), pipeline.select_fields(_snapshot(), ["A", "B", "C"]))

        assert pipeline.sample_cap == 1
        assert sampling.selected_doc_ids == ["doc-1"]
        assert sampling.field_to_doc_ids["C"] == []


class TestPipelineValidation:
    """无法开始运行时抛出运行级错误"""

    def test_empty_field_list(self):
        with pytest.raises(RunConfigurationError):
            asyncio.run(_pipeline().run(_snapshot(), []))

    def test_unknown_field(self):
        with pytest.raises(RunConfigurationError, match="Z"):
            asyncio.run(_pipeline().run(_snapshot(), ["A", "Z"]))

    def test_duplicate_field(self):
        with pytest.raises(RunConfigurationError):
            asyncio.run(_pipeline().run(_snapshot(), ["A", "A"]))

    def test_nothing_to_optimize(self):
        snapshot = ComparisonSnapshot(
            fields=[FieldSpec(key="A", display_name="A")],
            documents=[DocumentComparison(doc_id="doc-1", ground_truth={"A": "x"}, extracted={"A": "x"})],
        )
        with pytest.raises(RunConfigurationError):
            asyncio.run(_pipeline().run(snapshot))


class TestPipelineCancel:
    def test_cancel_before_run_returns_partial(self):
        pipeline = _pipeline()
        pipeline.cancel()

        batch = asyncio.run(pipeline.run(_snapshot(), ["A", "B"]))

        assert batch.cancelled is True
        assert all(r.status == FieldStatus.CANCELLED for r in batch.per_field)

    def test_from_config(self):
        config = Config(runtime=RuntimeConfig(test_model="m2", max_iterations=2))
        pipeline = Pipeline.from_config(config, TruthAfterRewrite(), BetterCompletion())

        assert pipeline.runtime.test_model == "m2"
        assert pipeline.optimization == config.optimization


class TestHoldoutValidation:
    """留出验证"""

    def _snapshot(self) -> ComparisonSnapshot:
        """X/Y/Z 各只在一个文档上失败，采样会选中全部 3 个文档"""
        failing = {"doc-1": "X", "doc-2": "Y", "doc-3": "Z"}
        documents = []
        for doc_id, bad in failing.items():
            truth = {k: f"{k}-{doc_id}" for k in ("X", "Y", "Z")}
            extracted = {k: ("zzz" if k == bad else v) for k, v in truth.items()}
            documents.append(DocumentComparison(doc_id=doc_id, ground_truth=truth, extracted=extracted))
        return ComparisonSnapshot(
            fields=[FieldSpec(key=k, display_name=k, current_prompt=f"find {k}") for k in ("X", "Y", "Z")],
            documents=documents,
        )

    class Extraction(ExtractionGateway):
        async def extract(self, doc_id, prompt, model, field=None):
            return f"{field.key}-{doc_id}" if prompt.startswith("better") else "zzz"

    def test_last_sampled_doc_held_out(self):
        pipeline = Pipeline(
            extraction=self.Extraction(),
            completion=BetterCompletion(),
            runtime=RuntimeConfig(test_model="test-model", max_iterations=3),
            optimization=OptimizationConfig(extraction_stagger_s=0.0, retry_delay_s=0.0, holdout_ratio=0.3),
        )

        batch = asyncio.run(pipeline.run(self._snapshot()))

        assert batch.sampled_doc_ids == ["doc-1", "doc-2", "doc-3"]
        assert batch.train_doc_ids == ["doc-1", "doc-2"]
        assert batch.holdout_doc_ids == ["doc-3"]
        z = batch.get("Z")
        assert z.sampled_doc_ids == ["doc-1", "doc-2"]
        assert z.holdout_doc_ids == ["doc-3"]
        assert (z.holdout_initial_accuracy, z.holdout_accuracy) == (0.0, 1.0)
        assert [r.field_key for r in batch.will_apply] == ["X", "Y", "Z"]

    def test_no_split_by_default(self):
        pipeline = _pipeline(self.Extraction())

        batch = asyncio.run(pipeline.run(self._snapshot()))

        assert batch.holdout_doc_ids == []
        assert all(r.holdout_accuracy is None for r in batch.per_field)
