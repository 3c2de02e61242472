"""
聚合函数模块 (Aggregator Functions Module)

聚合函数把一组值（或全部Agent、或模型本身）归约为一个汇总值。
输出列名由聚合函数名和字段名拼接而成，例如 mean(wealth)，
因此每个聚合函数都需要一个可读的名字：

    - 普通函数使用 __name__（np.mean -> "mean"）
    - (名称, 函数) 二元组使用给定名称（名称必须是字符串；
      其他 tuple 被当作聚合函数序列）
    - named() 包装的函数使用包装时给定的名称
    - functools.partial 使用被包装函数的名字

预置聚合函数：
    数值统计: mean, median, std, var, minimum, maximum, total
    分布形状: skew, kurtosis, sem (scipy.stats)
    不平等度: gini
    Agent集合: count

作者: SuZX
日期: 2024
"""

from functools import partial
from typing import Any, Callable, Tuple, Union

import numpy as np
from scipy import stats


Aggregator = Union[Callable[[Any], Any], Tuple[str, Callable[[Any], Any]]]


class NamedAggregator:
    """
    带名称的聚合函数

    用于给 lambda 或名字不直观的函数指定输出列名。
    可被 pickle（只要被包装的函数可以），因此可在多进程扫描中使用。
    """

    def __init__(self, name: str, func: Callable[[Any], Any]):
        self.__name__ = name
        self.func = func

    def __call__(self, values):
        return self.func(values)

    def __repr__(self) -> str:
        return f"NamedAggregator({self.__name__!r})"


def named(name: str, func: Callable[[Any], Any]) -> NamedAggregator:
    """给聚合函数指定名称"""
    return NamedAggregator(name, func)


def is_named_pair(obj: Any) -> bool:
    """判断是否为 (名称, 函数) 二元组；其他 tuple 视为聚合函数序列"""
    return (
        isinstance(obj, tuple)
        and len(obj) == 2
        and isinstance(obj[0], str)
        and callable(obj[1])
    )


def as_aggregator_list(aggregators) -> list:
    """
    把单个聚合函数或聚合函数序列统一为列表

    单个可调用对象和 (名称, 函数) 二元组被包装为单元素列表，
    list、tuple 等序列按顺序展开。
    """
    if callable(aggregators) or is_named_pair(aggregators):
        return [aggregators]
    return list(aggregators)


def aggregator_name(aggregator: Aggregator) -> str:
    """返回聚合函数的名称（用于拼接列名）"""
    if is_named_pair(aggregator):
        return str(aggregator[0])
    if isinstance(aggregator, partial):
        return aggregator_name(aggregator.func)
    name = getattr(aggregator, "__name__", None)
    if name is None:
        name = type(aggregator).__name__
    return name


def resolve_aggregator(aggregator: Aggregator) -> Tuple[str, Callable[[Any], Any]]:
    """
    把聚合函数统一解析为 (名称, 可调用对象)

    Raises:
        TypeError: 不是可调用对象，也不是 (名称, 函数) 二元组
    """
    if isinstance(aggregator, tuple):
        if not is_named_pair(aggregator):
            raise TypeError(f"Expected (name, callable) pair, got {aggregator!r}")
        return aggregator[0], aggregator[1]
    if not callable(aggregator):
        raise TypeError(f"Aggregator must be callable, got {aggregator!r}")
    return aggregator_name(aggregator), aggregator


# =============================================================================
# 预置聚合函数
# =============================================================================

mean = named("mean", np.mean)
median = named("median", np.median)
std = named("std", np.std)
var = named("var", np.var)
minimum = named("min", np.min)
maximum = named("max", np.max)
total = named("sum", np.sum)

skew = named("skew", stats.skew)
kurtosis = named("kurtosis", stats.kurtosis)
sem = named("sem", stats.sem)

# 用于 agent 键：Agent数量
count = named("count", len)


def gini(values) -> float:
    """
    基尼系数

    G = Σ_i Σ_j |x_i - x_j| / (2 n² μ)

    所有值都为0（或没有值）时返回0。
    """
    x = np.sort(np.asarray(values, dtype=float))
    n = x.size
    if n == 0 or x.sum() == 0:
        return 0.0
    # 排序后的等价公式，避免 O(n²) 的两两差值
    index = np.arange(1, n + 1)
    return float((2 * index - n - 1).dot(x) / (n * x.sum()))
