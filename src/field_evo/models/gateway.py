"""网关请求/响应模型 / Gateway request and response models"""

from typing import Optional

from pydantic import BaseModel, Field


class FailureExample(BaseModel):
    """一次失败抽取示例 / One failing extraction example"""
    doc_id: str
    predicted: str = ""
    expected: str = ""


class PromptRequest(BaseModel):
    """提示词改写请求 / Structured prompt rewrite request"""
    field_key: str
    field_name: str
    field_type: str = "string"
    current_prompt: str
    failure_examples: list[FailureExample] = Field(default_factory=list)
    success_examples: list[str] = Field(default_factory=list)
    # 最近的版本在后 / Most recent last
    prior_versions: list[str] = Field(default_factory=list)
    iteration_index: int = 0
    max_iterations: int = 1
    has_ground_truth: bool = True
    custom_instructions: Optional[str] = None


class PromptProposal(BaseModel):
    """改写结果 / Proposed prompt"""
    new_prompt: str = Field(..., min_length=1)
    rationale: str = ""
