"""
数据收集模块 (Data Collector Module)

本模块把模型在某一步的状态转换为表格数据，并把多步的数据
累积为一张随时间增长的表。

两种收集模式：
=============

1. 聚合模式（AggregationSpec: dict）
   键为字段名，值为聚合函数列表，例如：
       {"wealth": [mean, median]}
   每一步得到一行：step, mean(wealth), median(wealth)

   保留键：
   - "agent": 把全部Agent（按ID升序）传给聚合函数
   - "model": 把模型本身传给聚合函数
   - "pos":   位置为坐标（tuple、list 或数组）时，先用 model.coord_to_index 转为标量索引

   字段值为数组时（例如每个Agent的收入历史），先对每个Agent求均值，
   再把得到的标量数组交给聚合函数。

2. 原始模式（FieldList: list[str]）
   每个Agent一行，列为 id 以及 <字段>_<步数>，例如 wealth_5。
   多步之间以 id 外连接，某步不存在的Agent对应的格子为 NaN。
   原始模式的表总是按 id 升序排列。

主要接口：
=========
    collect_aggregate(): 聚合模式的单步收集，返回 (values, colnames)
    collect_raw(): 原始模式的单步收集，返回 DataFrame
    data_collector(): 单步收集并（可选）追加到已有表
    DataAccumulator: 多步累积器，最后一次性生成表

作者: SuZX
日期: 2024
"""

# =============================================================================
# 导入依赖
# =============================================================================

import logging
import warnings
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from abmscan.aggregators import Aggregator, as_aggregator_list, resolve_aggregator
from abmscan.errors import EmptyAggregation, JoinKeyMismatch, SchemaMismatch
from abmscan.model import get_field, is_array_value

logger = logging.getLogger(__name__)


# 收集规格：聚合模式为 dict，原始模式为字段名列表
AggregationSpec = Mapping[str, Union[Aggregator, Sequence[Aggregator]]]
FieldList = Sequence[str]
CollectionSpec = Union[AggregationSpec, FieldList]

# 保留键
AGENT_KEY = "agent"
MODEL_KEY = "model"
POS_KEY = "pos"


# =============================================================================
# 辅助函数
# =============================================================================


def is_aggregate_spec(spec: CollectionSpec) -> bool:
    """
    判断收集规格属于哪种模式

    Returns:
        True 表示聚合模式，False 表示原始模式

    Raises:
        TypeError: 规格既不是 dict 也不是字段名序列
    """
    if isinstance(spec, Mapping):
        return True
    if isinstance(spec, str):
        return False
    if isinstance(spec, Sequence) and all(isinstance(name, str) for name in spec):
        return False
    raise TypeError(
        f"Collection spec must be a field->aggregators mapping or a list of field names, "
        f"got {type(spec).__name__}"
    )


def _as_field_list(spec: Union[str, FieldList]) -> List[str]:
    return [spec] if isinstance(spec, str) else list(spec)


def sorted_agents(model) -> list:
    """按ID升序返回模型中的全部Agent"""
    return [model.agents[agent_id] for agent_id in sorted(model.agents)]


def field_values(model, agents: list, fieldname: str) -> np.ndarray:
    """
    读取每个Agent的某个字段，得到每个Agent一个标量的数组

    规则：
    1. pos 字段且值为坐标（tuple、list 或 numpy 数组）：转换为标量索引
    2. 值为数组：取均值
    3. 其他：原样保留

    Raises:
        FieldMissing: 某个Agent没有该字段
    """
    values = []
    for agent in agents:
        value = get_field(agent, fieldname)
        if fieldname == POS_KEY and isinstance(value, (tuple, list, np.ndarray)):
            value = model.coord_to_index(tuple(int(c) for c in value))
        elif is_array_value(value):
            value = np.mean(value)
        values.append(value)

    if not values:
        return np.array([], dtype=float)
    return np.asarray(values)


# =============================================================================
# 单步收集
# =============================================================================


def collect_aggregate(
    model,
    field_aggregator: AggregationSpec,
    step: int = 0,
) -> Tuple[List[Any], List[str]]:
    """
    聚合模式的单步收集

    Args:
        model: 模型快照（需要提供 agents 映射）
        field_aggregator: {字段名: [聚合函数, ...]}
        step: 当前步编号

    Returns:
        (values, colnames) 两个等长列表，第一列为 step

    Raises:
        FieldMissing: 某个Agent缺少请求的字段
        SchemaMismatch: 生成了重复的列名

    Example:
        >>> values, colnames = collect_aggregate(model, {"wealth": [np.mean]}, step=3)
        >>> colnames
        ['step', 'mean(wealth)']
    """
    colnames = ["step"]
    values: List[Any] = [step]
    agents = sorted_agents(model)

    for key, aggregators in field_aggregator.items():
        # 根据保留键选择聚合函数的输入
        if key == AGENT_KEY:
            data = agents
        elif key == MODEL_KEY:
            data = model
        else:
            data = field_values(model, agents, key)

        for aggregator in as_aggregator_list(aggregators):
            name, func = resolve_aggregator(aggregator)
            colnames.append(f"{name}({key})")
            values.append(func(data))

    if len(colnames) == 1:
        warnings.warn(
            "Aggregation spec produced no columns; only 'step' is collected",
            EmptyAggregation,
            stacklevel=2,
        )

    if len(set(colnames)) != len(colnames):
        # expected 为去重后的列名
        raise SchemaMismatch(list(dict.fromkeys(colnames)), colnames)

    return values, colnames


def collect_raw(model, properties: Union[str, FieldList], step: int = 0) -> pd.DataFrame:
    """
    原始模式的单步收集

    Args:
        model: 模型快照
        properties: 需要记录的字段名列表
        step: 当前步编号（用于列名后缀）

    Returns:
        DataFrame，列为 id, <field>_<step>, ...，按 id 升序

    Raises:
        FieldMissing: 某个Agent缺少请求的字段

    Example:
        >>> collect_raw(model, ["wealth"], step=5).columns.tolist()
        ['id', 'wealth_5']
    """
    agents = sorted_agents(model)
    data: Dict[str, Any] = {"id": sorted(model.agents)}
    for fieldname in _as_field_list(properties):
        data[f"{fieldname}_{step}"] = field_values(model, agents, fieldname)
    return pd.DataFrame(data)


# =============================================================================
# 累积收集
# =============================================================================


def _append_row(df: pd.DataFrame, values: List[Any], colnames: List[str]) -> pd.DataFrame:
    if list(df.columns) != colnames:
        raise SchemaMismatch(df.columns, colnames)
    row = pd.DataFrame([values], columns=colnames)
    if df.empty:
        return row
    return pd.concat([df, row], ignore_index=True)


def _join_raw(df: pd.DataFrame, new: pd.DataFrame) -> pd.DataFrame:
    if "id" not in df.columns:
        raise JoinKeyMismatch("id", side="left")
    overlap = [c for c in new.columns if c != "id" and c in df.columns]
    if overlap:
        raise SchemaMismatch(df.columns, new.columns)
    merged = df.merge(new, on="id", how="outer")
    return merged.sort_values("id", kind="stable").reset_index(drop=True)


def data_collector(
    model,
    spec: CollectionSpec,
    step: int,
    df: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """
    收集一步的数据，可选地追加到已有的表

    第一次调用（df=None）建立表结构；之后的调用：
    - 聚合模式：追加一行，列不一致时抛出 SchemaMismatch
    - 原始模式：以 id 外连接，新旧两侧缺失的格子为 NaN

    Args:
        model: 模型快照
        spec: 收集规格（dict 为聚合模式，字段名列表为原始模式）
        step: 当前步编号
        df: 已有的表

    Returns:
        新的表（不会原地修改 df）

    Raises:
        FieldMissing: 字段缺失
        SchemaMismatch: 追加的数据与表结构不一致
        JoinKeyMismatch: 原始模式的已有表没有 id 列
    """
    if is_aggregate_spec(spec):
        values, colnames = collect_aggregate(model, spec, step=step)
        if df is None:
            return pd.DataFrame([values], columns=colnames)
        return _append_row(df, values, colnames)

    new = collect_raw(model, spec, step=step)
    if df is None:
        return new
    return _join_raw(df, new)


class DataAccumulator:
    """
    多步数据累积器

    与反复调用 data_collector 的结果相同，但不会在每一步重建整张表：

    - 聚合模式：每步保存一行，to_frame() 时一次性构造 DataFrame
    - 原始模式：每步保存一个以 id 为索引的小表（列存储），
      to_frame() 时按索引外连接

    Attributes:
        spec: 收集规格
        aggregate: 是否为聚合模式
        columns: 已建立的列名（第一次收集后确定）
        steps: 已收集的步编号

    Example:
        >>> acc = DataAccumulator({"wealth": [np.mean]})
        >>> acc.collect(model, 0)
        >>> step_model(model, agent_step)
        >>> acc.collect(model, 1)
        >>> acc.to_frame()
           step  mean(wealth)
        0     0           1.0
        1     1           1.0
    """

    def __init__(self, spec: CollectionSpec):
        self.spec = spec
        self.aggregate = is_aggregate_spec(spec)
        self.columns: Optional[List[str]] = None
        self.steps: List[int] = []

        # 聚合模式的行
        self._rows: List[List[Any]] = []
        # 原始模式的每步小表（以 id 为索引）
        self._frames: List[pd.DataFrame] = []

    def __len__(self) -> int:
        return len(self.steps)

    def collect(self, model, step: int) -> None:
        """
        收集一步的数据

        Raises:
            FieldMissing: 字段缺失
            SchemaMismatch: 列与已建立的结构不一致（聚合模式），
                或同一步被收集两次（原始模式）
        """
        if self.aggregate:
            values, colnames = collect_aggregate(model, self.spec, step=step)
            if self.columns is None:
                self.columns = colnames
            elif colnames != self.columns:
                raise SchemaMismatch(self.columns, colnames)
            self._rows.append(values)
        else:
            frame = collect_raw(model, self.spec, step=step).set_index("id")
            new_columns = list(frame.columns)
            if self.columns is None:
                self.columns = ["id"]
            overlap = [c for c in new_columns if c in self.columns]
            if overlap:
                raise SchemaMismatch(self.columns, ["id"] + new_columns)
            self.columns.extend(new_columns)
            self._frames.append(frame)

        self.steps.append(step)
        logger.debug("Collected step %d (%d agents)", step, len(model.agents))

    def to_frame(self) -> pd.DataFrame:
        """生成累积的表"""
        if self.aggregate:
            return pd.DataFrame(self._rows, columns=self.columns)

        if not self._frames:
            return pd.DataFrame({"id": pd.Series([], dtype=int)})
        table = pd.concat(self._frames, axis=1, join="outer").sort_index()
        table.index.name = "id"
        return table.reset_index()
