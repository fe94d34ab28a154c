"""字段与比对数据模型 / Field and comparison data models"""

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class FieldSpec(BaseModel):
    """模板上的一个可抽取字段 / One extractable field on a template"""
    key: str
    display_name: str
    type: str = "string"
    current_prompt: str = ""
    has_ground_truth: bool = True
    compare_type: Optional[str] = Field(default=None, description="比对方式，缺省按字段类型推断")
    # 最近的历史版本在前 / Most recent first
    prompt_history: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class FailureRecord(BaseModel):
    """一次抽取失败：模型值与真值不一致 / One observed model-vs-ground-truth mismatch"""
    doc_id: str
    field_key: str
    model_value: str = ""
    ground_truth_value: str = ""
    doc_name: Optional[str] = None
    reason: Optional[str] = None

    model_config = {"frozen": True, "protected_namespaces": ()}


# 按请求顺序排列；无失败的字段保留空列表
# Ordered by request; fields without failures keep an empty list
FieldFailureMap = dict[str, list[FailureRecord]]


class SamplingResult(BaseModel):
    """采样结果，整个运行期间只读 / Sampling output, read-only for the whole run"""
    selected_doc_ids: list[str] = Field(default_factory=list)
    field_to_doc_ids: dict[str, list[str]] = Field(default_factory=dict)
    # selected = train + holdout；未给出 train 时取 selected 去掉 holdout
    train_doc_ids: list[str] = Field(default_factory=list)
    holdout_doc_ids: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def default_train_docs(cls, data: Any) -> Any:
        if isinstance(data, dict) and "train_doc_ids" not in data:
            holdout = set(data.get("holdout_doc_ids") or [])
            data = {
                **data,
                "train_doc_ids": [d for d in data.get("selected_doc_ids") or [] if d not in holdout],
            }
        return data

    @model_validator(mode="after")
    def assigned_docs_are_selected(self) -> "SamplingResult":
        selected = set(self.selected_doc_ids)
        for field_key, doc_ids in self.field_to_doc_ids.items():
            missing = [d for d in doc_ids if d not in selected]
            if missing:
                raise ValueError(f"字段 {field_key} 分配了未选中的文档: {missing}")
            held_out = [d for d in doc_ids if d in self.holdout_doc_ids]
            if held_out:
                raise ValueError(f"字段 {field_key} 分配了留出文档: {held_out}")

        train, holdout = set(self.train_doc_ids), set(self.holdout_doc_ids)
        if train & holdout or train | holdout != selected:
            raise ValueError("train/holdout 必须划分 selected_doc_ids / train and holdout must partition the selection")
        return self

    def docs_for(self, field_key: str) -> list[str]:
        return list(self.field_to_doc_ids.get(field_key, []))


# ─── 比对快照 ────────────────────────────────────────────

class DocumentComparison(BaseModel):
    """单个文档上一次比对的结果 / One document's prior comparison results"""
    doc_id: str
    doc_name: Optional[str] = None
    ground_truth: dict[str, str] = Field(default_factory=dict)   # field_key -> 真值
    extracted: dict[str, str] = Field(default_factory=dict)      # field_key -> 模型抽取值
    matches: dict[str, bool] = Field(default_factory=dict)       # field_key -> 比对判定
    reasons: dict[str, str] = Field(default_factory=dict)        # field_key -> 比对说明


class ComparisonSnapshot(BaseModel):
    """运行开始时的比对数据快照 / Snapshot of comparison data handed to a run"""
    template_key: Optional[str] = None
    test_model: Optional[str] = None
    fields: list[FieldSpec] = Field(default_factory=list)
    documents: list[DocumentComparison] = Field(default_factory=list)

    def get_field(self, key: str) -> Optional[FieldSpec]:
        for f in self.fields:
            if f.key == key:
                return f
        return None

    def ground_truth_for(self, field_key: str) -> dict[str, str]:
        """返回 doc_id -> 真值 / Map doc_id to ground truth for one field"""
        return {
            doc.doc_id: doc.ground_truth[field_key]
            for doc in self.documents
            if field_key in doc.ground_truth
        }

    def doc_names(self) -> dict[str, str]:
        return {doc.doc_id: doc.doc_name or doc.doc_id for doc in self.documents}
