"""配置加载 / Configuration loader"""

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from field_evo.models.config import Config
from field_evo.utils.i18n import set_language, t

DEFAULT_CONFIG_NAMES = ("field-evo.yaml", "field-evo.yml", ".field-evo.yaml")

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _resolve_env_vars(value: Any) -> Any:
    """递归解析 ${VAR} 环境变量，未定义的保持原样 / Resolve ${VAR} references recursively"""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def find_config_file(directory: Optional[Path] = None) -> Optional[Path]:
    """在目录中查找默认配置文件 / Look for a default config file"""
    base = directory or Path.cwd()
    for name in DEFAULT_CONFIG_NAMES:
        candidate = base / name
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Optional[str] = None) -> Config:
    """
    加载配置文件 / Load configuration file

    Args:
        config_path: 配置文件路径，默认查找 field-evo.yaml / Config file path, defaults to field-evo.yaml

    Returns:
        Config 对象 / Config object

    Raises:
        FileNotFoundError: 配置文件不存在
        pydantic.ValidationError: 配置校验失败
    """
    if config_path is None:
        found = find_config_file()
        if found is None:
            raise FileNotFoundError(t("config_not_found"))
        config_file = found
    else:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(t("config_file_missing").format(path=config_path))

    with open(config_file, "r", encoding="utf-8") as f:
        config_dict = yaml.safe_load(f) or {}

    config = Config(**_resolve_env_vars(config_dict))

    # 设置 CLI 文案语言 / Set CLI text language
    set_language(config.language)

    return config
