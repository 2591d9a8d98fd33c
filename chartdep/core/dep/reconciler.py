"""依赖目录同步

把 charts/ 整体替换为本次解析出的依赖集合，要么全部生效，要么保持原样。

提交流程:
  1. 在 charts/ 旁边建 .charts-new-XXXX，放入保留条目（硬链接）和已校验的暂存归档
     - 不在新集合中的 *.tgz 视为过期归档，不带入
     - 同名归档内容未变时复用原文件
  2. charts/ -> .charts-old-XXXX，.charts-new-XXXX -> charts/
  3. 删除 .charts-old-XXXX

进程在 2 中途崩溃时，下一次 reconcile 会先把 .charts-old-XXXX 恢复回来。
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from chartdep.core.dep.models import ARCHIVE_SUFFIX, ResolvedDependency
from chartdep.core.dep.verifier import digest_file
from chartdep.core.exceptions import ReconcileFailed

logger = logging.getLogger(__name__)

# chart 目录 -> (锁, 持有或等待的线程数)；计数归零时删除条目
_locks: dict[str, tuple[threading.Lock, int]] = {}
_locks_guard = threading.Lock()


@contextmanager
def bundle_lock(bundle_path: Path) -> Iterator[None]:
    """同一 chart 目录的更新互斥（进程内）；不同 chart 互不影响"""
    key = str(Path(bundle_path).resolve())
    with _locks_guard:
        lock, users = _locks.get(key, (threading.Lock(), 0))
        _locks[key] = (lock, users + 1)
    try:
        with lock:
            yield
    finally:
        with _locks_guard:
            lock, users = _locks[key]
            if users == 1:
                del _locks[key]
            else:
                _locks[key] = (lock, users - 1)


@dataclass
class ReconcileResult:
    """一次提交的结果（均为 charts/ 下的文件名）"""

    installed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


def _link_or_copy(src: str | Path, dst: str | Path) -> str:
    try:
        os.link(src, dst)
    except OSError:
        shutil.copy2(src, dst)
    return str(dst)


def _carry_over(src: Path, dst: Path) -> None:
    """把保留条目带入新目录"""
    if src.is_symlink():
        os.symlink(os.readlink(src), dst)
    elif src.is_dir():
        shutil.copytree(src, dst, symlinks=True, copy_function=_link_or_copy)
    else:
        _link_or_copy(src, dst)


class Reconciler:
    """charts/ 目录的全有或全无替换"""

    def __init__(self, dependency_dir: Path) -> None:
        self.dependency_dir = Path(dependency_dir)

    @property
    def _new_prefix(self) -> str:
        return f".{self.dependency_dir.name}-new-"

    @property
    def _old_prefix(self) -> str:
        return f".{self.dependency_dir.name}-old-"

    def recover(self) -> None:
        """清理上一次中断的提交留下的临时目录"""
        parent = self.dependency_dir.parent
        if not parent.is_dir():
            return
        backups = sorted(parent.glob(f"{self._old_prefix}*"))
        leftovers = sorted(parent.glob(f"{self._new_prefix}*"))
        if not self.dependency_dir.exists() and backups:
            restored = backups.pop()
            logger.warning("检测到中断的提交，恢复依赖目录: %s", restored)
            try:
                os.rename(restored, self.dependency_dir)
            except OSError as e:
                raise ReconcileFailed(f"恢复依赖目录失败: {restored}: {e}") from e
        for path in backups + leftovers:
            logger.info("清理残留目录: %s", path)
            shutil.rmtree(path, ignore_errors=True)

    def reconcile(
        self,
        resolved: list[ResolvedDependency],
        staged: dict[str, Path],
    ) -> ReconcileResult:
        """用已校验的暂存归档替换 charts/

        参数:
            resolved: 本次解析出的全部依赖
            staged: 依赖名 -> 已校验的暂存归档路径

        Raises:
            ReconcileFailed: 缺少暂存归档或文件系统错误（charts/ 保持原样）
        """
        missing = [r.name for r in resolved if not staged.get(r.name, Path()).is_file()]
        if missing:
            raise ReconcileFailed(f"缺少已校验的暂存归档: {', '.join(missing)}")

        self.recover()
        dep_dir = self.dependency_dir
        parent = dep_dir.parent
        wanted = {r.filename: r for r in resolved}
        result = ReconcileResult()

        try:
            parent.mkdir(parents=True, exist_ok=True)
            new_dir = Path(tempfile.mkdtemp(prefix=self._new_prefix, dir=parent))
        except OSError as e:
            raise ReconcileFailed(f"无法创建临时目录: {parent}: {e}") from e

        try:
            if dep_dir.is_dir():
                shutil.copymode(dep_dir, new_dir)
                for child in sorted(dep_dir.iterdir()):
                    if child.name in wanted:
                        continue
                    if child.is_file() and child.name.endswith(ARCHIVE_SUFFIX):
                        result.removed.append(child.name)
                        continue
                    _carry_over(child, new_dir / child.name)
            else:
                os.chmod(new_dir, 0o755)

            for r in resolved:
                current = dep_dir / r.filename
                target = new_dir / r.filename
                source = staged[r.name]
                if current.is_file() and digest_file(current) == digest_file(source):
                    _link_or_copy(current, target)
                    result.unchanged.append(r.filename)
                else:
                    shutil.move(str(source), str(target))
                    result.installed.append(r.filename)

            backup = self._swap(new_dir)
        except OSError as e:
            shutil.rmtree(new_dir, ignore_errors=True)
            raise ReconcileFailed(f"替换依赖目录失败: {dep_dir}: {e}") from e

        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)
            if backup.exists():
                logger.warning("旧依赖目录未能完全删除: %s", backup)

        for name in result.removed:
            logger.info("已删除过期依赖: %s", name)
        return result

    def _swap(self, new_dir: Path) -> Path | None:
        """两次 rename 完成替换，第二次失败时回滚"""
        dep_dir = self.dependency_dir
        backup: Path | None = None
        if dep_dir.exists():
            backup = dep_dir.parent / f"{self._old_prefix}{uuid.uuid4().hex[:8]}"
            os.rename(dep_dir, backup)
        try:
            os.rename(new_dir, dep_dir)
        except OSError:
            if backup is not None:
                os.rename(backup, dep_dir)
            raise
        return backup
