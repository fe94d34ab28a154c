"""文件读写：比对快照、运行结果、提示词存储
File IO: comparison snapshots, run results and the prompt store"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import yaml

from field_evo.adapters.base import PromptStore
from field_evo.models import ComparisonSnapshot, OptimizationBatchResult

PathLike = Union[str, Path]


def _read_structured(path: Path) -> dict:
    """按扩展名读取 JSON 或 YAML / Read JSON or YAML by file extension"""
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f) or {}
        return yaml.safe_load(f) or {}


def load_snapshot(file_path: PathLike) -> ComparisonSnapshot:
    """从 JSON/YAML 加载比对快照 / Load a comparison snapshot"""
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"比对数据文件不存在 / Comparison file not found: {path}")
    return ComparisonSnapshot(**_read_structured(path))


def save_batch_result(batch: OptimizationBatchResult, output_path: PathLike) -> Path:
    """将运行结果写入 JSON / Write a batch result to JSON"""
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(batch.model_dump_json(indent=2), encoding="utf-8")
    return path


def load_batch_result(file_path: PathLike) -> OptimizationBatchResult:
    """从 JSON 读取运行结果 / Read a batch result from JSON"""
    path = Path(file_path)
    return OptimizationBatchResult.model_validate_json(path.read_text(encoding="utf-8"))


class YamlPromptStore(PromptStore):
    """
    YAML 文件提示词存储 / Prompt store backed by a YAML file

    文件结构:
        field_key:
          prompt: 当前提示词
          history:            # 最新的在前
            - prompt: ...
              saved_at: ...
              note: ...
              source: ...
    """

    def __init__(self, file_path: PathLike):
        self.path = Path(file_path)
        self._data: Optional[dict] = None

    def _load(self) -> dict:
        if self._data is None:
            if self.path.exists():
                with open(self.path, "r", encoding="utf-8") as f:
                    self._data = yaml.safe_load(f) or {}
            else:
                self._data = {}
        return self._data

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = yaml.dump(self._load(), allow_unicode=True, default_flow_style=False, sort_keys=False)
        self.path.write_text(content, encoding="utf-8")

    def get_prompt(self, field_key: str) -> Optional[str]:
        entry = self._load().get(field_key)
        return entry.get("prompt") if entry else None

    def get_history(self, field_key: str) -> list[dict]:
        entry = self._load().get(field_key) or {}
        return list(entry.get("history", []))

    def save_prompt(self, field_key: str, prompt: str, note: str, source: str = "optimizer") -> None:
        data = self._load()
        entry = data.setdefault(field_key, {"prompt": None, "history": []})
        entry["prompt"] = prompt
        entry.setdefault("history", []).insert(0, {
            "prompt": prompt,
            "saved_at": datetime.now().isoformat(timespec="seconds"),
            "note": note,
            "source": source,
        })
        self._save()


def with_stored_prompts(snapshot: ComparisonSnapshot, store: PromptStore) -> ComparisonSnapshot:
    """用存储中的当前提示词和历史覆盖快照字段 / Overlay stored prompts onto snapshot fields"""
    fields = []
    for spec in snapshot.fields:
        prompt = store.get_prompt(spec.key)
        if not prompt:
            fields.append(spec)
            continue
        history = [
            h["prompt"] for h in store.get_history(spec.key)
            if h.get("prompt") and h["prompt"] != prompt
        ]
        fields.append(spec.model_copy(update={
            "current_prompt": prompt,
            "prompt_history": history or spec.prompt_history,
        }))
    return snapshot.model_copy(update={"fields": fields})
