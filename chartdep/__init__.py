"""chartdep - chart 依赖解析、拉取、校验与同步"""

__version__ = "0.3.0"
