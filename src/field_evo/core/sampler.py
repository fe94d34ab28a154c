"""失败相关采样器 / Failure-correlated document sampler

从上一次比对结果中找出失败记录，然后用贪心集合覆盖挑选少量文档：
每一轮选出能覆盖最多"尚未覆盖字段"的文档，平局按文档在输入失败列表中首次出现的顺序决定。

Builds failure records from prior comparison results, then picks a small set of
documents with a greedy set cover: each round takes the document exposing the most
still-uncovered fields, breaking ties by first appearance in the input failure lists.
"""

import logging
from typing import Iterable, Optional, Sequence

from field_evo.models import ComparisonSnapshot, FailureRecord, FieldFailureMap, SamplingResult

logger = logging.getLogger(__name__)


def build_field_failure_map(
    snapshot: ComparisonSnapshot,
    field_keys: Iterable[str],
) -> FieldFailureMap:
    """
    从比对快照构建字段失败映射 / Build the field failure map from a comparison snapshot

    有比对判定时以判定为准；否则比较去空白后的抽取值与真值。
    每个请求的字段都会出现在结果中，即使没有失败。

    Args:
        snapshot: 比对快照 / Comparison snapshot
        field_keys: 目标字段，按请求顺序 / Target fields in request order

    Returns:
        字段 -> 失败记录列表 / field key -> failure records
    """
    failure_map: FieldFailureMap = {}

    for field_key in field_keys:
        failures = failure_map.setdefault(field_key, [])

        for doc in snapshot.documents:
            has_value = field_key in doc.extracted or field_key in doc.ground_truth
            if not has_value and field_key not in doc.matches:
                continue

            extracted = doc.extracted.get(field_key, "")
            ground_truth = doc.ground_truth.get(field_key, "")
            judged = doc.matches.get(field_key)

            if judged is None:
                is_failure = extracted.strip() != ground_truth.strip()
            else:
                is_failure = not judged

            if not is_failure:
                continue

            failures.append(FailureRecord(
                doc_id=doc.doc_id,
                field_key=field_key,
                model_value=extracted,
                ground_truth_value=ground_truth,
                doc_name=doc.doc_name,
                reason=doc.reasons.get(field_key),
            ))

    return failure_map


def select_docs_for_optimizer(
    failure_map: FieldFailureMap,
    cap: int = 3,
    holdout_ratio: float = 0.0,
) -> SamplingResult:
    """
    贪心加权集合覆盖选文档 / Greedy set-cover document selection

    Args:
        failure_map: 字段失败映射 / Field failure map
        cap: 最多选择的文档数 / Maximum number of documents
        holdout_ratio: 留作验证的文档比例，见 split_train_holdout

    Returns:
        SamplingResult，每个有失败的字段分配到第一个覆盖它的训练文档
        Each failing field is assigned the first training document exposing it
    """
    if cap < 1:
        raise ValueError(f"cap 必须 >= 1 / cap must be >= 1, got {cap}")

    # 文档 -> 失败字段集合，插入顺序即首次出现顺序
    # doc -> failing fields; insertion order is first-appearance order
    doc_fields: dict[str, set[str]] = {}
    for field_key, failures in failure_map.items():
        for failure in failures:
            doc_fields.setdefault(failure.doc_id, set()).add(field_key)

    uncovered = {key for key, failures in failure_map.items() if failures}
    selected: list[str] = []

    while uncovered and len(selected) < cap:
        best_doc: Optional[str] = None
        best_score = 0

        for doc_id, fields in doc_fields.items():
            if doc_id in selected:
                continue
            score = len(fields & uncovered)
            if score > best_score:
                best_doc, best_score = doc_id, score

        if best_doc is None:
            break

        selected.append(best_doc)
        uncovered -= doc_fields[best_doc]

    train, holdout = split_train_holdout(selected, holdout_ratio)

    field_to_doc_ids: dict[str, list[str]] = {}
    for field_key in failure_map:
        field_to_doc_ids[field_key] = []
        for doc_id in train:
            if field_key in doc_fields[doc_id]:
                field_to_doc_ids[field_key] = [doc_id]
                break

    if uncovered:
        logger.info(
            "Sampler cap %d reached; %d field(s) left without targeted documents: %s",
            cap, len(uncovered), ", ".join(sorted(uncovered)),
        )
    logger.debug("Selected documents: %s (holdout: %s)", selected, holdout)

    return SamplingResult(
        selected_doc_ids=selected,
        field_to_doc_ids=field_to_doc_ids,
        train_doc_ids=train,
        holdout_doc_ids=holdout,
    )


def split_train_holdout(doc_ids: Sequence[str], holdout_ratio: float) -> tuple[list[str], list[str]]:
    """
    拆分训练 / 留出文档 / Split documents into train and holdout sets

    不足 3 篇或比例为 0 时不拆分；否则留出 round(n * ratio) 篇（至少 1 篇，最多一半），
    从末尾取，使覆盖最多失败的文档留在训练集。
    """
    docs = list(doc_ids)
    total = len(docs)
    if total < 3 or holdout_ratio <= 0:
        return docs, []

    # 四舍五入，0.5 进位
    count = max(1, int(total * holdout_ratio + 0.5))
    count = min(count, total // 2)
    return docs[: total - count], docs[total - count:]
