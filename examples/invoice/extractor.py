"""发票 Demo - 抽取函数"""

import os
from pathlib import Path

from openai import OpenAI

DOCS_DIR = Path(__file__).parent / "documents"


def extract(doc_id: str, prompt: str, model: str, field) -> str:
    """按字段提示词抽取一个值"""
    text = (DOCS_DIR / f"{doc_id}.txt").read_text(encoding="utf-8")

    client = OpenAI(api_key=os.environ.get("OPENAI_API_KEY"))
    response = client.chat.completions.create(
        model=model,
        messages=[
            {
                "role": "system",
                "content": f"{prompt}\nField: {field.display_name} ({field.type}). "
                           "Return only the value, or \"Not Present\".",
            },
            {"role": "user", "content": text},
        ],
        temperature=0,
    )
    return (response.choices[0].message.content or "").strip()


if __name__ == "__main__":
    from field_evo.models import FieldSpec

    print(extract("doc-1", "Extract the invoice number.", "gpt-4o-mini",
                  FieldSpec(key="invoice_number", display_name="Invoice Number")))
