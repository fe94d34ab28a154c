"""优化过程与结果模型 / Optimization state and result models"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FieldStatus(str, Enum):
    """字段优化状态 / Field optimization status"""
    QUEUED = "queued"
    TESTING = "testing"
    AWAITING_REWRITE = "awaiting_rewrite"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_active(self) -> bool:
        return self in (FieldStatus.TESTING, FieldStatus.AWAITING_REWRITE)


_TERMINAL = {
    FieldStatus.CONVERGED,
    FieldStatus.MAX_ITERATIONS_REACHED,
    FieldStatus.FAILED,
    FieldStatus.CANCELLED,
}

# 合法状态迁移 / Legal transitions
_TRANSITIONS: dict[FieldStatus, set[FieldStatus]] = {
    FieldStatus.QUEUED: {FieldStatus.TESTING, FieldStatus.FAILED, FieldStatus.CANCELLED},
    FieldStatus.TESTING: {
        FieldStatus.AWAITING_REWRITE,
        FieldStatus.CONVERGED,
        FieldStatus.MAX_ITERATIONS_REACHED,
        FieldStatus.FAILED,
        FieldStatus.CANCELLED,
    },
    # 无真值字段在迭代预算为 1 时生成候选后直接结束
    FieldStatus.AWAITING_REWRITE: {
        FieldStatus.TESTING,
        FieldStatus.MAX_ITERATIONS_REACHED,
        FieldStatus.FAILED,
        FieldStatus.CANCELLED,
    },
}


class IllegalTransitionError(RuntimeError):
    """非法状态迁移 / Illegal status transition"""


# ─── 迭代记录 ────────────────────────────────────────────

class DocResult(BaseModel):
    """单文档抽取与比对结果 / One document's extraction outcome"""
    doc_id: str
    extracted: Optional[str] = None
    expected: Optional[str] = None
    matched: bool = False
    error: Optional[str] = None


class IterationRecord(BaseModel):
    """一次 测试-评分 循环 / One completed test-and-score cycle"""
    iteration_index: int = Field(ge=0)
    prompt_used: str
    # 无真值时不评分 / None when the field has no ground truth
    accuracy: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    per_doc_results: list[DocResult] = Field(default_factory=list)

    def failures(self) -> list[DocResult]:
        return [r for r in self.per_doc_results if not r.matched]

    def successes(self) -> list[DocResult]:
        return [r for r in self.per_doc_results if r.matched]


# ─── 字段状态机 ──────────────────────────────────────────

class FieldOptimizationState(BaseModel):
    """单字段优化状态，运行期间只归属于自己的优化循环
    Per-field state, owned exclusively by its loop until terminal"""
    field_key: str
    field_name: str = ""
    status: FieldStatus = FieldStatus.QUEUED
    iterations: list[IterationRecord] = Field(default_factory=list)

    original_prompt: str = ""
    current_prompt: str = ""
    candidate_prompt: Optional[str] = None    # 最近一次生成的提示词 / latest generated prompt
    rationale: Optional[str] = None

    initial_accuracy: Optional[float] = None
    best_accuracy: Optional[float] = None
    best_prompt: str = ""

    has_ground_truth: bool = True
    unmeasurable: bool = False
    sampled_doc_ids: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    # 留出验证：初始提示词与最佳提示词在留出文档上的准确率
    holdout_doc_ids: list[str] = Field(default_factory=list)
    holdout_initial_accuracy: Optional[float] = None
    holdout_accuracy: Optional[float] = None

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def transition(self, new_status: FieldStatus) -> None:
        """迁移状态，非法迁移直接抛错 / Move to a new status, rejecting illegal moves"""
        allowed = _TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise IllegalTransitionError(
                f"{self.field_key}: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status
        if new_status == FieldStatus.TESTING and self.started_at is None:
            self.started_at = datetime.now()
        if new_status.is_terminal:
            self.finished_at = datetime.now()

    def record_iteration(self, record: IterationRecord) -> None:
        """追加迭代记录并更新最佳结果 / Append an iteration and track best-of-run"""
        self.iterations.append(record)
        if record.accuracy is None:
            return
        if record.iteration_index == 0:
            self.initial_accuracy = record.accuracy
        # 平局保留更早的版本 / Ties keep the earlier prompt
        if self.best_accuracy is None or record.accuracy > self.best_accuracy:
            self.best_accuracy = record.accuracy
            self.best_prompt = record.prompt_used

    @property
    def iteration_count(self) -> int:
        return len(self.iterations)

    @property
    def last_iteration(self) -> Optional[IterationRecord]:
        return self.iterations[-1] if self.iterations else None

    @property
    def elapsed_ms(self) -> int:
        if not self.started_at:
            return 0
        end = self.finished_at or datetime.now()
        return int((end - self.started_at).total_seconds() * 1000)


# ─── 结果 ────────────────────────────────────────────────

class FieldResult(BaseModel):
    """面向用户的单字段结果 / User-facing per-field outcome"""
    field_key: str
    field_name: str
    status: FieldStatus
    initial_accuracy: float = 0.0
    final_accuracy: float = 0.0
    iteration_count: int = 0
    converged: bool = False
    improved: bool = False
    verified: bool = False          # 有真值且可度量 / measured against ground truth
    unmeasurable: bool = False

    final_prompt: str
    original_prompt: str
    candidate_prompt: Optional[str] = None
    rationale: Optional[str] = None

    sampled_doc_ids: list[str] = Field(default_factory=list)
    has_ground_truth: bool = True
    accuracy_history: list[Optional[float]] = Field(default_factory=list)
    error_message: Optional[str] = None
    time_ms: int = 0

    holdout_doc_ids: list[str] = Field(default_factory=list)
    holdout_initial_accuracy: Optional[float] = None
    holdout_accuracy: Optional[float] = None
    # 最佳提示词在留出文档上不如初始提示词 / best prompt lost to the initial one on holdout docs
    holdout_regressed: bool = False

    @property
    def accuracy_delta(self) -> float:
        return self.final_accuracy - self.initial_accuracy


def _applicable(result: FieldResult) -> bool:
    return result.improved and result.status != FieldStatus.FAILED


class OptimizationBatchResult(BaseModel):
    """一次运行的可审核结果集 / Reviewable result set of one run"""
    run_id: str
    test_model: str
    per_field: list[FieldResult] = Field(default_factory=list)
    sampled_doc_ids: list[str] = Field(default_factory=list)
    train_doc_ids: list[str] = Field(default_factory=list)
    holdout_doc_ids: list[str] = Field(default_factory=list)
    cancelled: bool = False

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def will_apply(self) -> list[FieldResult]:
        """有提升，可自动应用 / Improved, candidates for automatic application"""
        return [r for r in self.per_field if r.has_ground_truth and _applicable(r)]

    @property
    def will_skip(self) -> list[FieldResult]:
        return [r for r in self.per_field if r.has_ground_truth and not _applicable(r)]

    @property
    def no_ground_truth(self) -> list[FieldResult]:
        """已生成、未验证 / Generated, unverified"""
        return [r for r in self.per_field if not r.has_ground_truth]

    @property
    def failed(self) -> list[FieldResult]:
        return [r for r in self.per_field if r.status == FieldStatus.FAILED]

    def get(self, field_key: str) -> Optional[FieldResult]:
        for r in self.per_field:
            if r.field_key == field_key:
                return r
        return None


# ─── 进度 ────────────────────────────────────────────────

class ProcessingFieldInfo(BaseModel):
    field_key: str
    field_name: str
    status: FieldStatus
    iteration: int = 0
    initial_accuracy: Optional[float] = None


class ProcessedFieldInfo(BaseModel):
    field_key: str
    field_name: str
    status: FieldStatus
    iteration_count: int = 0
    initial_accuracy: Optional[float] = None
    final_accuracy: Optional[float] = None
    time_ms: int = 0


class ProgressSnapshot(BaseModel):
    """调度器进度快照 / Scheduler progress snapshot"""
    total_fields: int
    queued: int
    processing: list[ProcessingFieldInfo] = Field(default_factory=list)
    processed: list[ProcessedFieldInfo] = Field(default_factory=list)
    # 触发本快照的迁移 / The transition that produced this snapshot
    field_key: Optional[str] = None
    status: Optional[FieldStatus] = None

    @property
    def fields_processed(self) -> int:
        return len(self.processed)

    @property
    def completed(self) -> int:
        return len(self.processed)
