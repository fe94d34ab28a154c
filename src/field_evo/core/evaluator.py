"""准确率评估器 / Accuracy evaluator

单值比对交给可替换的比对函数（精确、归一化、数值、日期、布尔、列表），
评估器只负责把逐文档判定归约成 [0, 1] 的准确率。空样本准确率为 0。
"""

import re
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

NOT_PRESENT = "Not Present"

DEFAULT_COMPARE_TYPES: dict[str, str] = {
    "string": "near-exact-string",
    "float": "exact-number",
    "number": "exact-number",
    "date": "date-exact",
    "enum": "exact-string",
    "multiSelect": "list-unordered",
    "dropdown_multi": "list-unordered",
    "taxonomy": "near-exact-string",
}

_DATE_FORMATS = (
    "%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y", "%m-%d-%Y",
    "%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y", "%B %d %Y",
)
_TRUE_WORDS = {"yes", "y", "true", "1"}
_FALSE_WORDS = {"no", "n", "false", "0", "not present", ""}

Matcher = Callable[[str, str], bool]


def _clean(value: Optional[str]) -> str:
    """空值和 Not Present 视为同一个值 / Empty and 'Not Present' are equivalent"""
    if value is None:
        return ""
    text = str(value).strip()
    return "" if text.lower() == NOT_PRESENT.lower() else text


def _normalize_text(value: str) -> str:
    text = re.sub(r"[^\w\s]", " ", value.lower())
    return re.sub(r"\s+", " ", text).strip()


def _parse_number(value: str) -> Optional[float]:
    text = re.sub(r"[,$€£¥%\s]", "", value)
    if text.startswith("(") and text.endswith(")"):
        text = "-" + text[1:-1]
    try:
        return float(text)
    except ValueError:
        return None


def _parse_date(value: str) -> Optional[datetime]:
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _split_list(value: str, separator: str) -> list[str]:
    return [_normalize_text(item) for item in value.split(separator) if item.strip()]


# ─── 比对函数 ────────────────────────────────────────────

def compare_exact_string(extracted: str, expected: str) -> bool:
    return extracted == expected


def compare_near_exact_string(extracted: str, expected: str) -> bool:
    a, b = _normalize_text(extracted), _normalize_text(expected)
    if a == b:
        return True
    # 长度足够时允许包含关系（地址、名称等）/ containment for long enough values
    if len(a) >= 3 and len(b) >= 3:
        return a in b or b in a
    return False


def compare_exact_number(extracted: str, expected: str) -> bool:
    a, b = _parse_number(extracted), _parse_number(expected)
    if a is None or b is None:
        return compare_near_exact_string(extracted, expected)
    return abs(a - b) < 1e-9


def compare_date_exact(extracted: str, expected: str) -> bool:
    a, b = _parse_date(extracted), _parse_date(expected)
    if a is None or b is None:
        return compare_near_exact_string(extracted, expected)
    return a.date() == b.date()


def compare_boolean(extracted: str, expected: str) -> bool:
    a, b = extracted.strip().lower(), expected.strip().lower()
    if a in _TRUE_WORDS and b in _TRUE_WORDS:
        return True
    if a in _FALSE_WORDS and b in _FALSE_WORDS:
        return True
    return a == b


def compare_list_unordered(extracted: str, expected: str, separator: str = ",") -> bool:
    return sorted(_split_list(extracted, separator)) == sorted(_split_list(expected, separator))


def compare_list_ordered(extracted: str, expected: str, separator: str = ",") -> bool:
    return _split_list(extracted, separator) == _split_list(expected, separator)


COMPARE_FUNCTIONS: dict[str, Matcher] = {
    "exact-string": compare_exact_string,
    "near-exact-string": compare_near_exact_string,
    "exact-number": compare_exact_number,
    "date-exact": compare_date_exact,
    "boolean": compare_boolean,
    "list-unordered": compare_list_unordered,
    "list-ordered": compare_list_ordered,
}


def resolve_compare_type(field_type: str, compare_type: Optional[str] = None) -> str:
    """字段未指定比对方式时按类型推断 / Infer compare type from field type"""
    if compare_type:
        if compare_type not in COMPARE_FUNCTIONS:
            raise ValueError(f"不支持的比对方式 / Unsupported compare type: {compare_type}")
        return compare_type
    return DEFAULT_COMPARE_TYPES.get(field_type, "near-exact-string")


def values_match(extracted: Optional[str], expected: Optional[str], compare_type: str) -> bool:
    """判定抽取值与真值是否等价 / Judge whether an extracted value matches ground truth"""
    a, b = _clean(extracted), _clean(expected)
    if compare_type == "boolean":
        return compare_boolean(a, b)
    if not a or not b:
        return a == b
    return COMPARE_FUNCTIONS[compare_type](a, b)


class Evaluator:
    """准确率评估器 / Accuracy evaluator"""

    def __init__(self, compare_type: str = "near-exact-string", matcher: Optional[Matcher] = None):
        self.compare_type = resolve_compare_type("string", compare_type)
        self._matcher = matcher

    @classmethod
    def for_field(cls, field_type: str, compare_type: Optional[str] = None) -> "Evaluator":
        return cls(resolve_compare_type(field_type, compare_type))

    def judge(self, extracted: Optional[str], expected: Optional[str]) -> bool:
        if self._matcher is not None:
            return bool(self._matcher(_clean(extracted), _clean(expected)))
        return values_match(extracted, expected, self.compare_type)

    def score(self, per_doc_values: Sequence[tuple[Optional[str], Optional[str]]]) -> float:
        """
        计算准确率 / Compute accuracy

        Args:
            per_doc_values: (抽取值, 真值) 序列 / (extracted, ground truth) pairs

        Returns:
            匹配比例，空样本返回 0 / Fraction matched, 0 for an empty sample
        """
        return self.score_judgements(self.judge(e, g) for e, g in per_doc_values)

    @staticmethod
    def score_judgements(judgements: Iterable[bool]) -> float:
        values = list(judgements)
        if not values:
            return 0.0
        return sum(1 for v in values if v) / len(values)
