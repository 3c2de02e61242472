"""
abmscan - ABM数据收集与参数扫描

常用入口：
    collector: collect_aggregate, collect_raw, data_collector, DataAccumulator
    combine: combine_columns
    scan: run_collect, paramscan, series_replicates
"""

from abmscan.collector import DataAccumulator, collect_aggregate, collect_raw, data_collector
from abmscan.combine import combine_columns
from abmscan.scan import ParamScanner, ReplicateRunner, paramscan, run_collect, series_replicates

__all__ = [
    "DataAccumulator",
    "ParamScanner",
    "ReplicateRunner",
    "collect_aggregate",
    "collect_raw",
    "combine_columns",
    "data_collector",
    "paramscan",
    "run_collect",
    "series_replicates",
]
