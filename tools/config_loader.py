import os
from typing import Any, Dict, Optional

import yaml

# 项目根目录（tools/ 的上一级）
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_CONFIG_FILE = os.path.join("config", "pipeline.yaml")


def resolve_config_path(file_path: Optional[str] = None) -> str:
    """
    配置文件路径优先级：
      1. 显式传入的 file_path（相对路径按项目根目录解析）
      2. 环境变量 NEURA_CONFIG_FILE
      3. 默认 config/pipeline.yaml
    """
    path = file_path or os.getenv("NEURA_CONFIG_FILE") or DEFAULT_CONFIG_FILE
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        path = os.path.join(PROJECT_ROOT, path)
    return path


def load_config(section: Optional[str] = None, file_path: Optional[str] = None) -> Dict[str, Any]:
    """
    加载 YAML 配置文件，并返回指定部分配置
    :param section: 配置块名称，例如 'backend'
    :param file_path: 配置文件路径（相对项目根目录或绝对路径）
    :raises FileNotFoundError: 配置文件不存在
    :raises KeyError: section 不存在
    """
    config_file = resolve_config_path(file_path)
    with open(config_file, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}
    if section:
        return config[section] or {}
    return config
