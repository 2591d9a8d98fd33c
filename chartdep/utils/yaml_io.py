"""YAML 文件统一读写工具

仓库索引、仓库注册表、requirements.yaml / requirements.lock 都经由这里读写。
统一 encoding="utf-8"、大小限制、空值保护、原子写入。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 单个 YAML 文档最大 20MB，大型仓库的 index.yaml 可达数 MB
MAX_YAML_SIZE = 20 * 1024 * 1024


def atomic_write(path: Path, content: str | bytes) -> None:
    """原子写入：同目录临时文件 + os.replace，读者只会看到旧内容或新内容"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        if isinstance(content, bytes):
            with os.fdopen(fd, "wb") as fb:
                fb.write(content)
        else:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        # 只捕获普通异常，不拦截 KeyboardInterrupt/SystemExit
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def parse_yaml(text: str | bytes, source: str = "<string>") -> dict[str, Any]:
    """解析 YAML 文本，非字典内容返回空字典

    异常:
        ValueError: 文本超过 MAX_YAML_SIZE
        yaml.YAMLError: YAML 格式错误
    """
    if len(text) > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文档过大: {source} ({len(text)} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )
    try:
        result = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 失败: %s, 错误: %s", source, e)
        raise
    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 内容不是字典类型 (实际类型: %s)，按空文档处理",
            source, type(result).__name__,
        )
        return {}
    return result


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 文件，文件不存在时返回空字典"""
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )
    return parse_yaml(p.read_text(encoding="utf-8"), source=str(p))


def dump_yaml(data: Any) -> str:
    """序列化为 YAML 文本，保持键顺序"""
    return yaml.dump(
        data, default_flow_style=False,
        allow_unicode=True, sort_keys=False,
    )


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML 文件（自动创建父目录）"""
    p = Path(path)
    try:
        atomic_write(p, dump_yaml(data))
    except (PermissionError, OSError) as e:
        logger.error("写入文件失败: %s, 错误: %s", path, e)
        raise
