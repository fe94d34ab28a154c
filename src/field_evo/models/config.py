"""配置模型 / Configuration models"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class LLMConfig(BaseModel):
    """提示词改写所用 LLM 配置 / LLM used for prompt rewriting"""
    provider: str = Field(default="openai", description="LLM 提供商")
    model: str = Field(default="gpt-4o", description="模型名称")
    api_key: Optional[str] = Field(default=None, description="API Key，支持 ${ENV_VAR} 格式")
    base_url: Optional[str] = Field(default=None, description="API Base URL")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class ExtractorConfig(BaseModel):
    """抽取函数配置 / Extraction callable used by the CLI"""
    module: str = Field(..., description="抽取入口模块")
    function: str = Field(default="extract", description="抽取入口函数")


class RuntimeConfig(BaseModel):
    """单次运行参数，运行期间不可变 / Per-run options, immutable while the run is active"""
    test_model: str = Field(default="azure__openai__gpt_4_1_mini", description="用于测试抽取的模型")
    max_docs: int = Field(default=5, ge=1, le=25, description="最多测试文档数")
    max_iterations: int = Field(default=5, ge=1, le=10, description="每个字段最大迭代次数")
    field_concurrency: int = Field(default=2, ge=1, le=8, description="并行处理的字段数")
    extraction_concurrency: int = Field(default=5, ge=1, description="单字段内并行抽取数")

    model_config = {"frozen": True}

    @field_validator("test_model")
    @classmethod
    def test_model_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("test_model 不能为空 / test_model must not be empty")
        return value.strip()


class EscapeValve(str, Enum):
    """字段未分配到文档时的回退策略 / Fallback when a field has no assigned documents"""
    ALL_SELECTED = "all_selected"    # 使用本次采样的全部文档
    FALLBACK_DOCS = "fallback_docs"  # 使用调用方提供的文档列表
    NONE = "none"                    # 不回退，字段不可度量


class OptimizationConfig(BaseModel):
    """优化引擎调参 / Optimization engine tuning"""
    target_accuracy: float = Field(default=1.0, ge=0.0, le=1.0, description="收敛阈值")
    improvement_epsilon: float = Field(default=0.001, ge=0.0, description="判定提升的最小差值")
    max_sample_docs: int = Field(default=3, ge=1, description="采样器文档上限")
    escape_valve: EscapeValve = Field(default=EscapeValve.ALL_SELECTED)
    fallback_doc_ids: list[str] = Field(default_factory=list, description="fallback_docs 策略使用的文档")
    # 留出文档只用于验证最佳提示词，不参与改写；不足 3 篇时不拆分
    holdout_ratio: float = Field(default=0.0, ge=0.0, le=1.0, description="采样文档中留作验证的比例")

    history_depth: int = Field(default=2, ge=0, description="改写时附带的历史版本数")
    max_failure_examples: int = Field(default=3, ge=1)
    custom_instructions: Optional[str] = Field(default=None, description="替换默认改写指令")

    extraction_stagger_s: float = Field(default=0.1, ge=0.0, description="相邻抽取调用的最小间隔")
    extraction_timeout_s: float = Field(default=30.0, gt=0.0)
    completion_timeout_s: float = Field(default=30.0, gt=0.0)
    extraction_retries: int = Field(default=1, ge=0)
    retry_delay_s: float = Field(default=0.5, ge=0.0)


class Config(BaseModel):
    """FieldEvo 完整配置 / Full FieldEvo configuration"""
    version: str = "1"
    language: Literal["zh", "en"] = "zh"
    llm: LLMConfig = Field(default_factory=LLMConfig)
    extractor: Optional[ExtractorConfig] = None
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    optimization: OptimizationConfig = Field(default_factory=OptimizationConfig)
