"""chart 依赖更新编排

把 requirements.yaml 声明的依赖变成 charts/ 下经过校验的归档集合:

  START -> REFRESHING -> RESOLVING -> FETCHING -> VERIFYING -> RECONCILING -> DONE
                           \\____________\\___________\\____________\\-> ABORTED

- REFRESHING: 刷新所有已注册仓库的索引（skip_refresh 时跳过）；单个仓库刷新失败只告警
- RESOLVING ~ RECONCILING: 按声明顺序处理，遇到第一个失败立即中止，charts/ 保持原样
- 暂存目录在任何退出路径上都会被删除

用法:
    from chartdep.core.config import Config
    from chartdep.core.dep_manager import DependencyManager

    dm = DependencyManager(Config(home="~/.chartdep"))
    report = dm.update_bundle("path/to/mychart")
    dm.update_bundle("path/to/mychart", skip_refresh=True)

    # 按 requirements.lock 重新拉取
    dm.build("path/to/mychart")
"""

from __future__ import annotations

import logging
import shutil
import sys
import tempfile
from collections.abc import Iterator
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import TextIO

from chartdep.core.chart import LOCK_FILE, load_lock, load_manifest, manifest_digest, write_lock
from chartdep.core.config import Config
from chartdep.core.dep.constraint import parse_constraint, parse_version
from chartdep.core.dep.fetcher import ArchiveFetcher
from chartdep.core.dep.index_cache import IndexCache
from chartdep.core.dep.models import (
    ARCHIVE_SUFFIX,
    Dependency,
    DependencyOutcome,
    DependencyStatus,
    Manifest,
    ResolvedDependency,
    UpdateReport,
)
from chartdep.core.dep.reconciler import Reconciler, bundle_lock
from chartdep.core.dep.resolver import ChartResolver
from chartdep.core.dep.verifier import normalize_digest, verify
from chartdep.core.exceptions import (
    DependencyError,
    DigestMismatch,
    FetchFailed,
    ReconcileFailed,
    ValidationError,
)
from chartdep.core.registry import RepoRegistry
from chartdep.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

STAGING_PREFIX = ".chartdep-staging-"


class Stage(str, Enum):
    START = "start"
    REFRESHING = "refreshing"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    RECONCILING = "reconciling"
    DONE = "done"
    ABORTED = "aborted"


class DependencyManager:
    """chart 依赖更新编排器"""

    def __init__(
        self,
        config: Config,
        out: TextIO | None = None,
        *,
        registry: RepoRegistry | None = None,
        cache: IndexCache | None = None,
        fetcher: ArchiveFetcher | None = None,
    ) -> None:
        self.config = config
        self.out = out if out is not None else sys.stdout
        self.fetcher = fetcher or ArchiveFetcher(timeout=config.fetch_timeout)
        self.registry = registry or RepoRegistry(config.repositories_file)
        self.cache = cache or IndexCache(config.cache_dir, self.fetcher)
        self.resolver = ChartResolver(self.cache, self.registry)
        self.state = Stage.START

    # ------------------------------------------------------------------
    # 对外入口
    # ------------------------------------------------------------------

    def update_bundle(self, bundle_path: str | Path, skip_refresh: bool = False) -> UpdateReport:
        """读取 chart 目录下的 requirements.yaml 并更新依赖"""
        return self.update(load_manifest(bundle_path), skip_refresh=skip_refresh)

    def update(self, manifest: Manifest, skip_refresh: bool = False) -> UpdateReport:
        """按清单更新 charts/，成功后写入 requirements.lock

        Raises:
            RepositoryUnknown / NoMatchingVersion / FetchFailed /
            DigestMismatch / ReconcileFailed: 任一依赖失败即中止，charts/ 不变
        """
        with bundle_lock(manifest.bundle_path):
            return self._run(manifest, skip_refresh=skip_refresh, write_lockfile=True)

    def build(self, bundle_path: str | Path, skip_refresh: bool = False) -> UpdateReport:
        """按 requirements.lock 锁定的版本重建 charts/

        Raises:
            ValidationError: 没有锁文件，或锁文件与 requirements.yaml 不一致
        """
        manifest = load_manifest(bundle_path)
        lock = load_lock(bundle_path)
        if lock is None:
            raise ValidationError(
                f"{bundle_path} 下没有 requirements.lock，请先执行 'chartdep dep update'",
            )
        if lock.digest != manifest_digest(manifest):
            raise ValidationError(
                "requirements.lock 与 requirements.yaml 不一致，"
                "请重新执行 'chartdep dep update'",
            )
        pinned = Manifest(
            bundle_path=manifest.bundle_path,
            dependencies=[
                Dependency(name=d.name, version=d.version, repository=d.repository)
                for d in lock.dependencies
            ],
        )
        expected = {d.name: d.digest for d in lock.dependencies if d.digest}
        with bundle_lock(manifest.bundle_path):
            return self._run(
                pinned, skip_refresh=skip_refresh, write_lockfile=False,
                expected_digests=expected,
            )

    def list_status(self, manifest: Manifest) -> list[DependencyStatus]:
        """对照 charts/ 现有内容给出每个依赖的状态（不访问网络）"""
        dep_dir = self.dependency_dir(manifest)
        statuses = []
        for dep in manifest.dependencies:
            statuses.append(DependencyStatus(
                name=dep.name,
                version=dep.version,
                repository=dep.repository,
                status=self._local_status(dep, dep_dir),
            ))
        return statuses

    def refresh_repositories(self, report: UpdateReport | None = None) -> None:
        """刷新全部已注册仓库的索引；单个仓库失败不影响其他仓库

        之前的 cancel() 只作用于当时进行中的运行，这里重新允许传输。
        """
        self.fetcher.cancel_event.clear()
        self._refresh_all(report)

    def _refresh_all(self, report: UpdateReport | None) -> None:
        self._emit("正在从 chart 仓库获取最新索引...")
        for name in self.registry.names():
            try:
                self.cache.refresh(name, self.registry.url_of(name))
            except (FetchFailed, ValidationError) as e:
                logger.warning("仓库 %s 刷新失败: %s", name, e, extra={"repository": name})
                self._emit(f'...无法从 "{name}" chart 仓库获取更新:\n\t{e}')
                if report is not None:
                    report.refresh_failed[name] = str(e)
                continue
            self._emit(f'...已成功从 "{name}" chart 仓库获取更新')
            if report is not None:
                report.refreshed.append(name)
        self._emit("索引更新完成。")

    def add_repository(self, name: str, url: str, refresh: bool = True) -> dict:
        """注册仓库并下载其索引；下载失败时撤销注册（已有同名仓库则恢复原地址）

        Raises:
            ValidationError: 仓库名或 URL 非法，或远程索引无效
            FetchFailed: 索引下载失败
        """
        previous = self.registry.get(name)
        entry = self.registry.add(name, url)
        if not refresh:
            return entry
        self.fetcher.cancel_event.clear()
        try:
            self.cache.refresh(name, entry["url"])
        except (FetchFailed, ValidationError):
            if previous is None:
                self.registry.remove(name)
            else:
                self.registry.add(name, str(previous.get("url", "")))
            raise
        return entry

    def remove_repository(self, name: str) -> bool:
        """取消注册仓库并删除其索引缓存，仓库未注册时返回 False"""
        if not self.registry.remove(name):
            return False
        self.cache.remove(name)
        return True

    def cancel(self) -> None:
        """取消进行中的下载；当前运行以 FetchFailed 中止"""
        self.fetcher.cancel()

    def dependency_dir(self, manifest: Manifest) -> Path:
        return manifest.bundle_path / self.config.dependency_dir

    # ------------------------------------------------------------------
    # 单次运行
    # ------------------------------------------------------------------

    def _run(
        self,
        manifest: Manifest,
        *,
        skip_refresh: bool,
        write_lockfile: bool,
        expected_digests: dict[str, str] | None = None,
    ) -> UpdateReport:
        self.state = Stage.START
        self.fetcher.cancel_event.clear()
        report = UpdateReport(bundle_path=manifest.bundle_path)

        if not manifest.dependencies:
            self._emit(f"{manifest.bundle_path} 中没有声明任何依赖。")
            self.state = Stage.DONE
            return report

        if not skip_refresh:
            self.state = Stage.REFRESHING
            self._refresh_all(report)

        resolved = self._resolve_all(manifest.dependencies, expected_digests or {})

        dep_dir = self.dependency_dir(manifest)
        self._emit(f"正在保存 {len(resolved)} 个 chart")
        with self._stage(Stage.FETCHING):
            staging = self._make_staging(manifest.bundle_path)
        try:
            staged = self._fetch_all(resolved, staging)
            self._verify_all(resolved, staged)
            with self._stage(Stage.RECONCILING):
                # 锁文件先于目录替换写入，替换失败时恢复原锁文件
                previous_lock = self._write_lock(manifest, resolved) if write_lockfile else None
                try:
                    result = Reconciler(dep_dir).reconcile(resolved, staged)
                except ReconcileFailed:
                    if write_lockfile:
                        self._restore_lock(manifest, previous_lock)
                    raise
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        if result.removed:
            self._emit("正在删除过期的 chart")
            for name in result.removed:
                self._emit(f"\t{name}")
        report.removed = list(result.removed)
        for r in resolved:
            report.outcomes.append(DependencyOutcome(
                name=r.name,
                version=r.version,
                repository=r.repository,
                digest=r.digest,
                path=dep_dir / r.filename,
                status="installed" if r.filename in result.installed else "unchanged",
            ))

        self.state = Stage.DONE
        self._emit("依赖更新完成。")
        logger.info(
            "依赖更新完成: %s (新装 %d, 未变 %d, 删除 %d)",
            manifest.bundle_path, len(result.installed),
            len(result.unchanged), len(result.removed),
        )
        return report

    def _resolve_all(
        self, dependencies: list[Dependency], expected_digests: dict[str, str],
    ) -> list[ResolvedDependency]:
        resolved = []
        for dep in dependencies:
            with self._stage(Stage.RESOLVING, dep.name):
                r = self.resolver.resolve(dep)
                locked = expected_digests.get(dep.name)
                if locked and normalize_digest(locked) != normalize_digest(r.digest):
                    raise DigestMismatch(
                        f"索引中 {r.name}@{r.version} 的摘要与锁文件不一致",
                        expected=locked, actual=r.digest,
                    )
                resolved.append(r)
        return resolved

    def _fetch_all(self, resolved: list[ResolvedDependency], staging: Path) -> dict[str, Path]:
        """拉取全部归档到暂存目录，每个依赖一个独立路径"""
        for r in resolved:
            self._emit(f'正在从 "{r.repository}" chart 仓库下载 {r.name}-{r.version} ({r.url})')

        staged: dict[str, Path] = {}
        if self.config.max_workers == 1:
            for r in resolved:
                with self._stage(Stage.FETCHING, r.name):
                    staged[r.name] = self._fetch_one(r, staging)
            return staged

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = [(r, executor.submit(self._fetch_one, r, staging)) for r in resolved]
            done, _ = wait([f for _, f in futures], return_when=FIRST_EXCEPTION)
            failed = [(r, f) for r, f in futures if f in done and f.exception() is not None]
            if failed:
                # 首个失败立即取消其余传输；报告最早失败的那批中声明靠前的一个
                self.fetcher.cancel()
                r, future = failed[0]
                with self._stage(Stage.FETCHING, r.name):
                    future.result()
            for r, future in futures:
                with self._stage(Stage.FETCHING, r.name):
                    staged[r.name] = future.result()
        return staged

    def _fetch_one(self, r: ResolvedDependency, staging: Path) -> Path:
        dest = staging / r.name / r.filename
        try:
            return self.fetcher.fetch(r.url, dest)
        except ValidationError as e:
            raise FetchFailed(str(e), dependency=r.name) from e
        except OSError as e:
            raise FetchFailed(f"无法写入暂存文件 {dest}: {e}", dependency=r.name) from e

    def _verify_all(self, resolved: list[ResolvedDependency], staged: dict[str, Path]) -> None:
        for r in resolved:
            with self._stage(Stage.VERIFYING, r.name):
                verify(staged[r.name], r.digest)

    @staticmethod
    def _make_staging(bundle_path: Path) -> Path:
        # 同一 chart 目录的运行已由 bundle_lock 串行化，现存的暂存目录都是崩溃残留
        for stale in bundle_path.glob(f"{STAGING_PREFIX}*"):
            logger.info("清理残留暂存目录: %s", stale)
            shutil.rmtree(stale, ignore_errors=True)
        # 与 charts/ 同一文件系统，提交时可直接 rename
        try:
            return Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=bundle_path))
        except OSError as e:
            raise ReconcileFailed(f"无法创建暂存目录: {bundle_path}: {e}") from e

    @staticmethod
    def _write_lock(manifest: Manifest, resolved: list[ResolvedDependency]) -> bytes | None:
        """写入新锁文件，返回原锁文件内容（原来没有则为 None）"""
        path = manifest.bundle_path / LOCK_FILE
        try:
            previous = path.read_bytes() if path.is_file() else None
            write_lock(manifest, resolved)
        except OSError as e:
            raise ReconcileFailed(f"无法写入锁文件 {path}: {e}") from e
        return previous

    @staticmethod
    def _restore_lock(manifest: Manifest, previous: bytes | None) -> None:
        path = manifest.bundle_path / LOCK_FILE
        try:
            if previous is None:
                path.unlink(missing_ok=True)
            else:
                atomic_write(path, previous)
        except OSError as e:
            logger.error("恢复锁文件失败: %s: %s", path, e)

    @contextmanager
    def _stage(self, stage: Stage, dependency: str = "") -> Iterator[None]:
        """进入某个阶段；阶段内的依赖错误补全 stage / dependency 后中止本次运行"""
        self.state = stage
        try:
            yield
        except DependencyError as e:
            e.stage = e.stage or stage.value
            e.dependency = e.dependency or dependency
            self.state = Stage.ABORTED
            logger.error(
                "依赖更新中止: %s", e,
                extra={"dependency": e.dependency, "stage": e.stage},
            )
            raise

    def _emit(self, line: str) -> None:
        self.out.write(line + "\n")
        self.out.flush()

    @staticmethod
    def _local_status(dep: Dependency, dep_dir: Path) -> str:
        prefix = f"{dep.name}-"
        versions = []
        if dep_dir.is_dir():
            for f in dep_dir.glob(f"{prefix}*{ARCHIVE_SUFFIX}"):
                v = parse_version(f.name[len(prefix):-len(ARCHIVE_SUFFIX)])
                if v is not None:
                    versions.append(v)
        if versions:
            try:
                constraint = parse_constraint(dep.version)
            except ValidationError:
                return "wrong version"
            if any(constraint.satisfies(v) for v in versions):
                return "ok"
            return "wrong version"
        if (dep_dir / dep.name).is_dir():
            return "unpacked"
        return "missing"
