"""归档完整性校验

摘要算法与仓库索引一致: 对归档原始字节做 sha256，十六进制小写。
比较前两侧都做规范化（去空白、转小写、去掉可选的 ``sha256:`` 前缀）。
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from chartdep.core.exceptions import DigestMismatch

logger = logging.getLogger(__name__)

_PREFIX = "sha256:"


def digest_file(path: Path) -> str:
    """计算文件的 sha256 摘要"""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def normalize_digest(digest: str) -> str:
    value = digest.strip().lower()
    if value.startswith(_PREFIX):
        value = value[len(_PREFIX):]
    return value


def verify(path: Path, expected: str) -> str:
    """校验归档摘要，返回实际摘要

    Raises:
        DigestMismatch: 索引未记录摘要，或摘要不一致
    """
    if not normalize_digest(expected or ""):
        raise DigestMismatch(f"索引未记录摘要，无法校验: {path.name}")
    actual = digest_file(path)
    if actual != normalize_digest(expected):
        raise DigestMismatch(
            f"校验和不匹配 {path.name}: 期望 {expected}, 实际 {actual}",
            expected=expected, actual=actual,
        )
    logger.info("  校验和通过: %s", path.name)
    return actual
