"""国际化支持 / Internationalization support

提供 CLI 中英文文案切换能力。
Provides Chinese/English CLI text switching.
"""

from typing import Literal

# 当前语言（默认中文）/ Current language (default Chinese)
_current_lang: Literal["zh", "en"] = "zh"


def set_language(lang: Literal["zh", "en"]) -> None:
    """设置当前语言 / Set current language"""
    global _current_lang
    _current_lang = lang


def get_language() -> Literal["zh", "en"]:
    """获取当前语言 / Get current language"""
    return _current_lang


def t(key: str) -> str:
    """根据 key 返回当前语言的文案 / Return text for current language by key"""
    entry = _TEXTS.get(key)
    if entry is None:
        return key
    return entry.get(_current_lang, entry.get("zh", key))


# ── 文案映射表 / Text mapping table ──────────────────────────

_TEXTS: dict[str, dict[str, str]] = {
    # ── 通用 / General ──
    "total": {"zh": "总计", "en": "Total"},
    "duration": {"zh": "耗时", "en": "Duration"},
    "exec_failed": {"zh": "❌ 执行失败: {msg}", "en": "❌ Execution failed: {msg}"},
    "cancelled": {"zh": "运行已取消，返回部分结果", "en": "Run cancelled, returning partial results"},

    # ── 配置 / Config ──
    "config_not_found": {
        "zh": "未找到配置文件，请运行 field-evo init 初始化",
        "en": "Config file not found, run field-evo init first",
    },
    "config_file_missing": {"zh": "配置文件不存在: {path}", "en": "Config file not found: {path}"},
    "extractor_missing": {
        "zh": "配置中缺少 extractor（module/function）",
        "en": "Config is missing extractor (module/function)",
    },
    "extractor_load_failed": {
        "zh": "无法加载抽取函数 {module}.{function}: {msg}",
        "en": "Cannot load extractor {module}.{function}: {msg}",
    },

    # ── init ──
    "init_project": {"zh": "初始化 FieldEvo 项目", "en": "Initializing FieldEvo project"},
    "init_created": {"zh": "已创建", "en": "Created"},
    "init_exists": {"zh": "已存在，跳过", "en": "Already exists, skipped"},
    "init_done": {"zh": "初始化完成！", "en": "Initialization complete!"},

    # ── sample ──
    "sample_title": {"zh": "采样结果", "en": "Sampling Result"},
    "sample_selected": {"zh": "选中 {n} 个文档: {docs}", "en": "Selected {n} documents: {docs}"},
    "sample_no_failures": {"zh": "没有失败记录，无需采样", "en": "No failures recorded, nothing to sample"},
    "sample_holdout": {
        "zh": "训练 {train} 个，留出验证 {holdout} 个: {docs}",
        "en": "Training on {train}, holding out {holdout} for validation: {docs}",
    },
    "sample_holdout_skipped": {"zh": "文档不足 3 个，跳过留出验证", "en": "Fewer than 3 documents, holdout validation skipped"},
    "col_field": {"zh": "字段", "en": "Field"},
    "col_failures": {"zh": "失败数", "en": "Failures"},
    "col_docs": {"zh": "测试文档", "en": "Test Docs"},

    # ── run ──
    "run_start": {"zh": "FieldEvo 提示词优化启动", "en": "FieldEvo Prompt Optimization Started"},
    "run_fields": {"zh": "优化 {n} 个字段，测试模型 {model}", "en": "Optimizing {n} fields with {model}"},
    "run_progress": {"zh": "优化中", "en": "Optimizing"},
    "run_done": {"zh": "优化完成", "en": "Optimization finished"},
    "result_saved": {"zh": "📄 结果已保存: {path}", "en": "📄 Result saved: {path}"},

    # ── report ──
    "report_title": {"zh": "📊 优化报告", "en": "📊 Optimization Report"},
    "col_status": {"zh": "状态", "en": "Status"},
    "col_initial": {"zh": "初始", "en": "Initial"},
    "col_final": {"zh": "最终", "en": "Final"},
    "col_holdout": {"zh": "留出验证", "en": "Holdout"},
    "col_iterations": {"zh": "迭代", "en": "Iterations"},
    "col_outcome": {"zh": "结论", "en": "Outcome"},
    "outcome_apply": {"zh": "将应用", "en": "Will apply"},
    "outcome_holdout_regressed": {"zh": "留出退步", "en": "Holdout regressed"},
    "outcome_skip": {"zh": "跳过", "en": "Will skip"},
    "outcome_unverified": {"zh": "已生成，未验证", "en": "Generated, unverified"},
    "outcome_failed": {"zh": "失败", "en": "Failed"},
    "report_counts": {
        "zh": "将应用 {apply}  跳过 {skip}  未验证 {unverified}  失败 {failed}",
        "en": "Apply {apply}  Skip {skip}  Unverified {unverified}  Failed {failed}",
    },
    "report_prompt_for": {"zh": "字段 {field} 的最终提示词", "en": "Final prompt for {field}"},

    # ── apply ──
    "apply_none": {"zh": "没有可应用的字段", "en": "Nothing to apply"},
    "apply_done": {"zh": "✅ 已应用 {n} 个字段到 {path}", "en": "✅ Applied {n} fields to {path}"},
    "apply_item": {"zh": "已应用: {field}", "en": "Applied: {field}"},
}
