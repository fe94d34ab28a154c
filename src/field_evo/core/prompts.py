"""提示词改写请求构建与响应解析 / Rewrite request building and response parsing"""

import json
import re
from typing import Any, Optional

from field_evo.errors import PromptParseError
from field_evo.models import PromptProposal, PromptRequest

DEFAULT_INSTRUCTIONS = """You are an expert at writing extraction prompts for document AI systems.

## YOUR TASK
Create a DETAILED extraction prompt for the field "{field_name}" (type: {field_type}).

A good extraction prompt:
- Tells the AI WHERE to look in the document
- Lists SPECIFIC phrases/synonyms the value may appear as
- Specifies the EXACT output format required
- Says what NOT to extract (negative guidance)
- Handles the "not found" case (return "Not Present")"""

_OUTPUT_INSTRUCTIONS = """
## REQUIREMENTS FOR YOUR NEW PROMPT
1. Be SPECIFIC - don't just say "Extract the {field_name}"
2. Tell the AI WHERE to look (which sections of the document)
3. List 3-5 SYNONYM phrases the value might appear as
4. Specify EXACT output format (date format, case, etc.)
5. Add "Do NOT..." guidance to prevent common mistakes
6. Handle the "not found" case explicitly

## CRITICAL: RESPOND WITH VALID JSON ONLY
{{"newPrompt": "your detailed extraction prompt here", "reasoning": "why this will fix the failures"}}

Do NOT include any text before or after the JSON. Do NOT use markdown code blocks."""


def default_prompt_for(field_name: str) -> str:
    """字段没有提示词时的起始提示词 / Starting prompt for a field without one"""
    return f"Extract the {field_name} from this document."


def _truncate(text: str, max_len: int) -> str:
    if not text:
        return ""
    return text[:max_len] + "..." if len(text) > max_len else text


def build_rewrite_request(request: PromptRequest, max_failures: int = 3) -> str:
    """
    构建发给 LLM 的改写请求 / Build the rewrite request sent to the LLM

    Args:
        request: 结构化改写请求 / Structured rewrite request
        max_failures: 最多附带的失败示例数 / Max failure examples to include

    Returns:
        完整的请求文本 / Full request text
    """
    template = request.custom_instructions or DEFAULT_INSTRUCTIONS
    # 自定义指令里可能含有 JSON 花括号，不能用 str.format
    parts = [
        template.replace("{field_name}", request.field_name).replace("{field_type}", request.field_type)
    ]

    parts.append(
        f"\n## FIELD TO OPTIMIZE\nField: \"{request.field_name}\" (type: {request.field_type})"
        f"\n\n## CURRENT PROMPT\n\"{request.current_prompt or default_prompt_for(request.field_name)}\""
    )

    if request.failure_examples:
        lines = ["\n## FAILURES TO FIX"]
        for idx, ex in enumerate(request.failure_examples[:max_failures], start=1):
            lines.append(
                f"{idx}. AI returned: \"{_truncate(ex.predicted, 80)}\"\n"
                f"   Should be: \"{_truncate(ex.expected, 80)}\""
            )
        lines.append("\nAnalyze WHY these failed. Common causes: wrong section, missing synonyms, format mismatch.")
        parts.append("\n".join(lines))
    elif not request.has_ground_truth:
        parts.append(
            "\n## NO GROUND TRUTH\nThere is no verified value for this field. "
            "Write the most robust prompt you can from the field name and type."
        )

    if request.success_examples:
        samples = ", ".join(f"\"{_truncate(v, 60)}\"" for v in request.success_examples[:2])
        parts.append(f"\n## SUCCESSES (what's working)\n{samples}")

    if request.prior_versions:
        lines = ["\n## PREVIOUS ATTEMPTS (didn't achieve 100%)"]
        for idx, prompt in enumerate(request.prior_versions, start=1):
            lines.append(f"{idx}. \"{_truncate(prompt, 100)}\"")
        lines.append("Try a DIFFERENT approach than these.")
        parts.append("\n".join(lines))

    # 迭代序号从 0 开始，第 3 次测试之后加强提示
    if request.iteration_index >= 2:
        parts.append(
            f"\nITERATION {request.iteration_index + 1}/{request.max_iterations} - "
            "Previous approaches failed. Try something significantly different!"
        )

    parts.append(_OUTPUT_INSTRUCTIONS.format(field_name=request.field_name))
    return "\n".join(parts)


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    match = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    return match.group(1) if match else text


def _unescape(value: str) -> str:
    return value.replace('\\"', '"').replace("\\n", "\n").strip()


def parse_prompt_response(response: Any) -> PromptProposal:
    """
    从 LLM 响应中解析新提示词 / Parse the proposed prompt from an LLM response

    依次尝试：JSON、代码块内 JSON、正则提取 "newPrompt"、<optimized_prompt> 标签。

    Raises:
        PromptParseError: 无法解析 / No usable prompt found
    """
    if isinstance(response, dict):
        data: Optional[dict] = response
        text = json.dumps(response)
    else:
        text = _strip_code_fence(str(response or ""))
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None

    if isinstance(data, dict):
        new_prompt = data.get("newPrompt") or data.get("new_prompt")
        if isinstance(new_prompt, str) and new_prompt.strip():
            rationale = data.get("reasoning") or data.get("rationale") or ""
            return PromptProposal(new_prompt=new_prompt.strip(), rationale=str(rationale))

    match = re.search(r'"newPrompt"\s*:\s*"((?:[^"\\]|\\.)*)"', text)
    if match and match.group(1).strip():
        reasoning = re.search(r'"reasoning"\s*:\s*"((?:[^"\\]|\\.)*)"', text)
        return PromptProposal(
            new_prompt=_unescape(match.group(1)),
            rationale=_unescape(reasoning.group(1)) if reasoning else "",
        )

    match = re.search(r"<optimized_prompt>(.*?)</optimized_prompt>", text, re.DOTALL)
    if match and match.group(1).strip():
        return PromptProposal(new_prompt=match.group(1).strip())

    raise PromptParseError(f"无法解析改写响应 / Unparseable rewrite response: {_truncate(text, 200)!r}")
