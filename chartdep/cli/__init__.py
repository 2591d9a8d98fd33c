"""chartdep 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
配置在 main 中加载一次，经 click 上下文传给子命令。
"""

from __future__ import annotations

import os

import click

from chartdep import __version__
from chartdep.core.config import DEFAULT_HOME, Config
from chartdep.core.exceptions import ChartDepError
from chartdep.utils.logger import setup_logging


def _fail(e: ChartDepError) -> click.ClickException:
    """把业务异常转换为 click 的一行错误提示（退出码 1）"""
    msg = str(e)
    details = getattr(e, "details", None)
    if details:
        msg += "\n" + "\n".join(f"  - {d}" for d in details)
    return click.ClickException(msg)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--home", envvar="CHARTDEP_HOME", default=None,
    help=f"chartdep 数据目录（默认 {DEFAULT_HOME}）",
)
@click.option(
    "--config", "config_file", envvar="CHARTDEP_CONFIG", default="chartdep.yml",
    help="配置文件路径",
)
@click.pass_context
def main(ctx: click.Context, home: str | None, config_file: str) -> None:
    """chartdep - chart 依赖解析、拉取、校验与同步"""
    setup_logging(
        level=os.getenv("CHARTDEP_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("CHARTDEP_LOG_JSON", "") == "1",
    )
    try:
        ctx.obj = Config.from_file(config_file, home=home)
    except ChartDepError as e:
        raise _fail(e) from e


# 注册各领域子命令
from chartdep.cli.cmd_deps import register as _reg_deps  # noqa: E402
from chartdep.cli.cmd_repo import register as _reg_repo  # noqa: E402

_reg_deps(main)
_reg_repo(main)
