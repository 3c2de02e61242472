"""
参数空间模块 (Parameter Space Module)

本模块把声明的参数空间展开为需要运行的具体参数组合列表。

参数分类：
    - 可变参数（variable）：取值为 list / range / 一维 numpy 数组，
      扫描时逐个取值
    - 固定参数（fixed）：其他任何取值（包括 tuple 和字符串），
      在所有组合中保持不变

展开规则：
    对所有可变参数按声明顺序做笛卡尔积（第一个参数变化最慢），
    每个乘积点再与固定参数合并，得到一个完整的参数组合。

    组合数 = 各可变参数取值个数的乘积

    特殊情况：
    - 没有可变参数：恰好一个组合，等于全部固定参数
    - 某个可变参数为空列表：零个组合（不是错误）
    - 空参数空间：一个空组合

Example:
    >>> dict_list({"a": [1, 2], "b": 3})
    [{'a': 1, 'b': 3}, {'a': 2, 'b': 3}]

作者: SuZX
日期: 2024
"""

from itertools import product
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

import numpy as np


ParameterItems = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


def is_variable(value: Any) -> bool:
    """判断一个参数值是否为需要扫描的可变参数"""
    if isinstance(value, (list, range)):
        return True
    return isinstance(value, np.ndarray) and value.ndim == 1


class ParameterSpace:
    """
    有序参数空间

    内部以 (参数名, 取值) 对的有序列表保存，保证展开顺序
    与声明顺序一致、可重复。

    Attributes:
        items: (参数名, 取值) 对的列表

    Example:
        >>> space = ParameterSpace([("a", [1, 2]), ("b", 3)])
        >>> space.variable_names
        ['a']
        >>> len(space.expand())
        2
    """

    def __init__(self, parameters: ParameterItems = ()):
        if isinstance(parameters, ParameterSpace):
            pairs = list(parameters.items)
        elif isinstance(parameters, Mapping):
            pairs = list(parameters.items())
        else:
            pairs = [tuple(pair) for pair in parameters]

        names = [name for name, _ in pairs]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate parameter names: {duplicates}")

        self.items: List[Tuple[str, Any]] = pairs

    def __len__(self) -> int:
        return len(self.items)

    def __repr__(self) -> str:
        return f"ParameterSpace({self.items!r})"

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.items]

    @property
    def variable_names(self) -> List[str]:
        return [name for name, value in self.items if is_variable(value)]

    @property
    def fixed(self) -> Dict[str, Any]:
        return {name: value for name, value in self.items if not is_variable(value)}

    def n_combinations(self) -> int:
        """不展开，直接计算组合数"""
        count = 1
        for name, value in self.items:
            if is_variable(value):
                count *= len(value)
        return count

    def expand(self) -> List[Dict[str, Any]]:
        """
        展开为参数组合列表

        Returns:
            参数组合列表，每个组合包含全部参数名，键顺序与声明顺序一致
        """
        variable = [(name, list(value)) for name, value in self.items if is_variable(value)]
        fixed = self.fixed

        combinations = []
        for point in product(*(values for _, values in variable)):
            chosen = dict(zip((name for name, _ in variable), point))
            # 按声明顺序合并固定参数和本次取值
            combinations.append({
                name: chosen[name] if name in chosen else fixed[name]
                for name in self.names
            })
        return combinations

    def varying(self, include_constants: bool = False) -> List[str]:
        """
        返回需要写入结果表的参数名（按声明顺序）

        Args:
            include_constants: True 时返回全部参数名
        """
        if include_constants:
            return self.names
        return self.variable_names


def dict_list(parameters: ParameterItems) -> List[Dict[str, Any]]:
    """展开参数空间为组合列表（ParameterSpace.expand 的函数形式）"""
    return ParameterSpace(parameters).expand()


def varying_parameters(parameters: ParameterItems, include_constants: bool = False) -> List[str]:
    """返回扫描结果中需要记录的参数名"""
    return ParameterSpace(parameters).varying(include_constants)
