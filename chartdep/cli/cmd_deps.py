"""CLI — chart 依赖命令"""

from __future__ import annotations

import click

from chartdep.cli import _fail
from chartdep.core.chart import load_manifest
from chartdep.core.config import Config
from chartdep.core.dep_manager import DependencyManager
from chartdep.core.exceptions import ChartDepError


def register(group: click.Group) -> None:
    group.add_command(dep_group)


@click.group(name="dep")
def dep_group() -> None:
    """管理 chart 的依赖（requirements.yaml -> charts/）"""


@dep_group.command(name="update")
@click.argument("bundle", default=".", type=click.Path(file_okay=False))
@click.option("--skip-refresh", is_flag=True, help="不刷新仓库索引，只使用本地缓存")
@click.pass_obj
def update(cfg: Config, bundle: str, skip_refresh: bool) -> None:
    """按 requirements.yaml 更新 charts/ 并写入 requirements.lock"""
    dm = DependencyManager(cfg)
    try:
        dm.update_bundle(bundle, skip_refresh=skip_refresh)
    except ChartDepError as e:
        raise _fail(e) from e


@dep_group.command(name="build")
@click.argument("bundle", default=".", type=click.Path(file_okay=False))
@click.option("--skip-refresh", is_flag=True, help="不刷新仓库索引，只使用本地缓存")
@click.pass_obj
def build(cfg: Config, bundle: str, skip_refresh: bool) -> None:
    """按 requirements.lock 锁定的版本重建 charts/"""
    dm = DependencyManager(cfg)
    try:
        dm.build(bundle, skip_refresh=skip_refresh)
    except ChartDepError as e:
        raise _fail(e) from e


@dep_group.command(name="list")
@click.argument("bundle", default=".", type=click.Path(file_okay=False))
@click.pass_obj
def list_deps(cfg: Config, bundle: str) -> None:
    """列出依赖及其在 charts/ 中的状态"""
    try:
        manifest = load_manifest(bundle)
    except ChartDepError as e:
        raise _fail(e) from e
    if not manifest.dependencies:
        click.echo("未声明任何依赖。")
        return
    dm = DependencyManager(cfg)
    click.echo(f"  {'NAME':20s} {'VERSION':12s} {'REPOSITORY':40s} STATUS")
    for s in dm.list_status(manifest):
        click.echo(f"  {s.name:20s} {s.version or '*':12s} {s.repository:40s} {s.status}")
