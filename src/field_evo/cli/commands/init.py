"""init 命令 / Init command"""

from pathlib import Path

from rich.console import Console

from field_evo.utils.i18n import t

console = Console()

# 默认配置模板 / Default config template
DEFAULT_CONFIG = """# FieldEvo 配置文件 / FieldEvo Configuration
version: "1"

# 抽取函数：extract(doc_id, prompt, model[, field]) -> str
# Extraction callable: extract(doc_id, prompt, model[, field]) -> str
extractor:
  module: "extractor"
  function: "extract"

# 改写提示词所用 LLM / LLM used to rewrite prompts
llm:
  provider: "openai"
  model: "gpt-4o"
  api_key: "${OPENAI_API_KEY}"
  temperature: 0.7

# 单次运行参数 / Per-run options
runtime:
  test_model: "gpt-4o-mini"
  max_docs: 5               # 1-25
  max_iterations: 5         # 1-10
  field_concurrency: 2      # 1-8
  extraction_concurrency: 5

# 优化调参 / Optimization tuning
optimization:
  target_accuracy: 1.0
  improvement_epsilon: 0.001
  max_sample_docs: 3
  escape_valve: "all_selected"   # all_selected / fallback_docs / none
  holdout_ratio: 0.0             # >0 时留出部分采样文档验证最佳提示词 / hold out docs to validate the best prompt
  history_depth: 2
  max_failure_examples: 3
  extraction_stagger_s: 0.1
  extraction_timeout_s: 30
  completion_timeout_s: 30

# CLI 语言 / CLI language: zh (中文) or en (English)
language: "zh"
"""

# 默认抽取函数模板 / Default extractor template
DEFAULT_EXTRACTOR = '''"""示例抽取函数 / Example extractor"""

import os
from pathlib import Path

from openai import OpenAI

DOCS_DIR = Path(__file__).parent / "documents"


def extract(doc_id: str, prompt: str, model: str) -> str:
    """
    用字段提示词从文档中抽取值 / Extract a field value with the given prompt

    Args:
        doc_id: 文档 ID，对应 documents/<doc_id>.txt
        prompt: 字段提示词
        model: 模型名称

    Returns:
        抽取值，找不到时返回 "Not Present"
    """
    text = (DOCS_DIR / f"{doc_id}.txt").read_text(encoding="utf-8")

    client = OpenAI(api_key=os.environ.get("OPENAI_API_KEY"))
    response = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": prompt + "\\nReturn only the value, or \\"Not Present\\"."},
            {"role": "user", "content": text},
        ],
        temperature=0,
    )
    return (response.choices[0].message.content or "").strip()
'''

# 默认比对数据模板 / Default comparison data template
DEFAULT_COMPARISON = """# 上一次抽取与真值的比对结果 / Prior extraction vs ground truth
template_key: "invoice"
test_model: "gpt-4o-mini"

fields:
  - key: "invoice_number"
    display_name: "Invoice Number"
    type: "string"
    current_prompt: "Extract the invoice number."
  - key: "total_amount"
    display_name: "Total Amount"
    type: "number"
    current_prompt: "Extract the total amount."
  - key: "due_date"
    display_name: "Due Date"
    type: "date"
    current_prompt: ""

documents:
  - doc_id: "doc-1"
    doc_name: "acme-2024-001.pdf"
    ground_truth: {invoice_number: "INV-001", total_amount: "1,250.00", due_date: "2024-03-01"}
    extracted: {invoice_number: "PO-7781", total_amount: "1250", due_date: "Not Present"}
  - doc_id: "doc-2"
    doc_name: "globex-77.pdf"
    ground_truth: {invoice_number: "77", total_amount: "980.10", due_date: "2024-04-15"}
    extracted: {invoice_number: "77", total_amount: "98.01", due_date: "15/04/2024"}
"""


def run_init(path: str):
    """初始化 FieldEvo 项目 / Initialize FieldEvo project"""
    project_dir = Path(path).resolve()

    console.print(f"\n[bold blue]🚀 {t('init_project')}: {project_dir}[/bold blue]\n")

    (project_dir / "documents").mkdir(parents=True, exist_ok=True)

    files = {
        "field-evo.yaml": DEFAULT_CONFIG,
        "extractor.py": DEFAULT_EXTRACTOR,
        "comparison.yaml": DEFAULT_COMPARISON,
    }
    for name, content in files.items():
        target = project_dir / name
        if target.exists():
            console.print(f"  ⏭  {t('init_exists')}: {name}")
            continue
        target.write_text(content, encoding="utf-8")
        console.print(f"  ✅ {t('init_created')}: {name}")

    console.print(f"\n[bold green]✅ {t('init_done')}[/bold green]")
