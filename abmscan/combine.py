"""
列合并模块 (Column Combination Module)

原始模式按步收集的数据会产生同一字段的多列（wealth_0, wealth_1, ...）。
本模块把这些同一语义字段的列用聚合函数合并为一列，原始列保留不动。

两种调用方式：
    1. 显式列名：combine_columns(df, ["wealth_1", "wealth_2"], [mean])
    2. 基础名：  combine_columns(df, "wealth", [mean])
       依次查找 wealth、wealth_0（没有则从 wealth_1 开始）、wealth_1、...
       遇到第一个不存在的列名即停止；一个都找不到时什么也不做

新列命名：
    第一个源列名去掉最后一个字符，再接上聚合函数名，
    例如 wealth_1 + mean -> wealth_mean

作者: SuZX
日期: 2024
"""

from typing import Any, Dict, List, Sequence, Union

import pandas as pd

from abmscan.aggregators import Aggregator, as_aggregator_list, resolve_aggregator
from abmscan.errors import JoinKeyMismatch


def find_step_columns(data: pd.DataFrame, base_name: str) -> List[str]:
    """
    查找属于同一基础名的列

    Args:
        data: 数据表
        base_name: 基础名，例如 "wealth"

    Returns:
        找到的列名列表（可能为空）

    Example:
        >>> find_step_columns(df, "wealth")  # df 有 wealth_0, wealth_1, wealth_3
        ['wealth_0', 'wealth_1']
    """
    columns = set(data.columns)
    found = [base_name] if base_name in columns else []

    k = 0 if f"{base_name}_0" in columns else 1
    while f"{base_name}_{k}" in columns:
        found.append(f"{base_name}_{k}")
        k += 1
    return found


def _group_key(data: pd.DataFrame) -> str:
    # 聚合模式的表按 step 分组，原始模式的表没有 step，按 id 分组
    for key in ("step", "id"):
        if key in data.columns:
            return key
    raise JoinKeyMismatch("step", side="input")


def _combine(data: pd.DataFrame, column_names: List[str], aggregator: Aggregator) -> pd.Series:
    name, func = resolve_aggregator(aggregator)
    key = _group_key(data)

    results: Dict[Any, Any] = {}
    for _, group in data.groupby(key, sort=False, dropna=False)[column_names]:
        for index, row in zip(group.index, group.itertuples(index=False, name=None)):
            results[index] = func(row)

    return pd.Series(results, name=name).reindex(data.index)


def combine_columns(
    data: pd.DataFrame,
    columns: Union[str, Sequence[str]],
    aggregators: Sequence[Aggregator],
) -> pd.DataFrame:
    """
    用聚合函数合并同一字段的多列

    对每个聚合函数：按 step（或 id）分组，对每一行在这些列上的
    取值元组调用聚合函数，结果写入一个新列。

    Args:
        data: 数据表（原地追加新列）
        columns: 列名列表，或基础名字符串
        aggregators: 聚合函数列表

    Returns:
        追加了新列的 data（与传入的是同一个对象）

    Raises:
        KeyError: 显式给出的列不存在
        JoinKeyMismatch: 表中既没有 step 也没有 id 列
    """
    if isinstance(columns, str):
        column_names = find_step_columns(data, columns)
        if not column_names:
            return data
    else:
        column_names = list(columns)
        if not column_names:
            return data
        missing = [c for c in column_names if c not in data.columns]
        if missing:
            raise KeyError(f"Columns not in table: {missing}")

    for aggregator in as_aggregator_list(aggregators):
        name, _ = resolve_aggregator(aggregator)
        colname = str(column_names[0])[:-1] + name
        data[colname] = _combine(data, column_names, aggregator)

    return data
