"""
错误类型模块 (Error Types Module)

本模块定义数据收集、参数扫描和重复实验中使用的全部异常类型。

异常层次：
    DataCollectionError
    ├── FieldMissing:       Agent或模型缺少请求的字段
    ├── SchemaMismatch:     追加的行与已建立的表结构不一致
    ├── ConfigurationError: 模型初始化函数不接受参数组合中的键
    ├── JoinKeyMismatch:    外连接所需的键列在某一侧缺失
    └── ScanAborted:        扫描被中途取消（携带已完成部分的结果）

    EmptyAggregation (UserWarning): 聚合规格没有产生任何输出列（不致命）

作者: SuZX
日期: 2024
"""

import pandas as pd


class DataCollectionError(Exception):
    """数据收集相关错误的基类"""


class FieldMissing(DataCollectionError, AttributeError):
    """
    字段缺失错误

    当某个Agent（或模型本身）没有请求的字段时抛出。

    Attributes:
        field: 缺失的字段名
        owner: 缺少该字段的对象（Agent或模型）
    """

    def __init__(self, field: str, owner=None):
        self.field = field
        self.owner = owner
        owner_desc = type(owner).__name__ if owner is not None else "object"
        agent_id = getattr(owner, "id", None)
        if agent_id is not None:
            owner_desc = f"{owner_desc}(id={agent_id})"
        super().__init__(f"{owner_desc} has no field '{field}'")


class SchemaMismatch(DataCollectionError, ValueError):
    """表结构不匹配：新数据的列与已有表的列不一致"""

    def __init__(self, expected, got):
        self.expected = list(expected)
        self.got = list(got)
        super().__init__(f"Column mismatch: table has {self.expected}, got {self.got}")


class ConfigurationError(DataCollectionError, TypeError):
    """
    配置错误

    模型初始化函数拒绝了参数组合中的键（例如不接受某个关键字参数）。

    Attributes:
        combination: 被拒绝的参数组合
    """

    def __init__(self, message: str, combination: dict | None = None):
        self.combination = combination
        super().__init__(message)


class JoinKeyMismatch(DataCollectionError, KeyError):
    """外连接的键列在某一侧缺失"""

    def __init__(self, key: str, side: str = "right"):
        self.key = key
        self.side = side
        super().__init__(f"Join key '{key}' missing from {side} table")

    def __str__(self) -> str:
        # KeyError 默认会给消息加引号
        return self.args[0]


class ScanAborted(DataCollectionError):
    """
    扫描中止

    参数扫描被取消（cancel_event 被设置或收到 KeyboardInterrupt）时抛出。
    已完成组合的结果不会丢失，保存在 partial 属性中。

    Attributes:
        partial: 已完成组合拼接后的 DataFrame
        completed: 已完成的组合数
    """

    def __init__(self, partial: pd.DataFrame, completed: int):
        self.partial = partial
        self.completed = completed
        super().__init__(f"Scan aborted after {completed} completed combination(s)")


class EmptyAggregation(UserWarning):
    """聚合规格没有产生任何输出列（只会得到 step 列）"""
