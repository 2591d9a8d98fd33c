"""CLI — chart 仓库注册与索引刷新"""

from __future__ import annotations

import click

from chartdep.cli import _fail
from chartdep.core.config import Config
from chartdep.core.dep_manager import DependencyManager
from chartdep.core.exceptions import ChartDepError
from chartdep.core.registry import RepoRegistry


def register(group: click.Group) -> None:
    group.add_command(repo_group)


@click.group(name="repo")
def repo_group() -> None:
    """管理 chart 仓库"""


@repo_group.command(name="add")
@click.argument("name")
@click.argument("url")
@click.option("--no-refresh", is_flag=True, help="只注册，不立即下载索引")
@click.pass_obj
def repo_add(cfg: Config, name: str, url: str, no_refresh: bool) -> None:
    """注册 chart 仓库并下载其索引"""
    try:
        DependencyManager(cfg).add_repository(name, url, refresh=not no_refresh)
    except ChartDepError as e:
        raise _fail(e) from e
    click.echo(f'"{name}" 已添加到仓库列表')


@repo_group.command(name="remove")
@click.argument("name")
@click.pass_obj
def repo_remove(cfg: Config, name: str) -> None:
    """取消注册 chart 仓库并删除其索引缓存"""
    if not DependencyManager(cfg).remove_repository(name):
        raise click.ClickException(f"仓库 '{name}' 未注册")
    click.echo(f'"{name}" 已从仓库列表删除')


@repo_group.command(name="list")
@click.pass_obj
def repo_list(cfg: Config) -> None:
    """列出已注册的 chart 仓库"""
    repos = RepoRegistry(cfg.repositories_file).list_repos()
    if not repos:
        click.echo("没有已注册的仓库。")
        return
    for r in repos:
        click.echo(f"  {r['name']:20s} {r.get('url', '')}")


@repo_group.command(name="update")
@click.pass_obj
def repo_update(cfg: Config) -> None:
    """刷新所有已注册仓库的索引"""
    DependencyManager(cfg).refresh_repositories()
