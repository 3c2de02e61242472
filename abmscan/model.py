"""
模型接口模块 (Model Interface Module)

本模块提供数据收集器所需的最小模型能力：

1. 按ID枚举Agent，按名称读取Agent/模型字段
2. 空间Agent的坐标到标量索引的转换（coord_to_index）
3. 推进一步仿真的操作（step_model）

收集器只依赖这些能力，任何提供相同属性的对象都可以被收集。
本模块中的 AgentBasedModel 是一个参考实现，供示例模型和测试使用。

类结构：
    Agent: Agent基类（id、pos）
    GridSpace: 基于 networkx 网格图的二维空间
    AgentBasedModel: Agent容器 + 模型级属性 + 可选空间 + 随机数生成器

函数：
    get_field(): 读取字段，缺失时抛出 FieldMissing
    is_array_value(): 判断字段值是否为数组形状
    step_model(): 推进一步
    dummystep(): 空更新函数

作者: SuZX
日期: 2024
"""

# =============================================================================
# 导入依赖
# =============================================================================

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import networkx as nx  # 网格空间的图结构
import numpy as np

from abmscan.errors import FieldMissing


# =============================================================================
# 字段访问
# =============================================================================


def get_field(obj: Any, name: str) -> Any:
    """
    按名称读取对象字段

    Args:
        obj: Agent 或模型
        name: 字段名

    Raises:
        FieldMissing: 对象没有该字段
    """
    try:
        return getattr(obj, name)
    except AttributeError:
        raise FieldMissing(name, obj) from None


def is_array_value(value: Any) -> bool:
    """
    判断字段值是否为数组形状（需要先按Agent求均值）

    字符串不算数组；tuple 只有在元素全为数值时才算。
    """
    if isinstance(value, np.ndarray):
        return value.ndim > 0
    if isinstance(value, list):
        return True
    if isinstance(value, tuple):
        return all(isinstance(v, (int, float, np.number)) for v in value)
    return False


# =============================================================================
# Agent基类
# =============================================================================

@dataclass
class Agent:
    """
    Agent基类

    具体模型通过继承添加自己的字段，例如：

        >>> @dataclass
        ... class WealthAgent(Agent):
        ...     wealth: int = 1

    Attributes:
        id: Agent唯一标识符
        pos: 空间位置（无空间模型时为None）
    """

    id: int
    pos: Optional[Tuple[int, ...]] = None


# =============================================================================
# 网格空间
# =============================================================================


class GridSpace:
    """
    二维网格空间

    使用 networkx.grid_2d_graph 存储网格拓扑，节点为 (x, y) 坐标。
    坐标到索引的转换采用列优先（x 变化最快）的0起始编号：

        index = x + y * width

    Attributes:
        dims: (width, height)
        periodic: 是否首尾相接（环面）
        graph: networkx 网格图
    """

    def __init__(self, dims: Tuple[int, int], periodic: bool = False):
        if len(dims) != 2:
            raise ValueError(f"GridSpace supports two dimensions, got {dims}")
        self.dims = tuple(int(d) for d in dims)
        self.periodic = periodic
        self.graph = nx.grid_2d_graph(self.dims[0], self.dims[1], periodic=periodic)

    def __repr__(self) -> str:
        return f"GridSpace(dims={self.dims}, periodic={self.periodic})"

    def __contains__(self, pos) -> bool:
        return tuple(pos) in self.graph

    @property
    def n_vertices(self) -> int:
        return self.graph.number_of_nodes()

    def coord_to_index(self, pos: Tuple[int, int]) -> int:
        """
        坐标转换为标量索引

        Raises:
            ValueError: 坐标不在网格内
        """
        pos = tuple(pos)
        if pos not in self.graph:
            raise ValueError(f"Position {pos} outside grid {self.dims}")
        return int(np.ravel_multi_index(pos, self.dims, order="F"))

    def index_to_coord(self, index: int) -> Tuple[int, int]:
        """标量索引转换回坐标"""
        return tuple(int(c) for c in np.unravel_index(index, self.dims, order="F"))

    def neighbors(self, pos: Tuple[int, int]) -> List[Tuple[int, int]]:
        """返回相邻格子（按坐标排序，保证可重复）"""
        return sorted(self.graph.neighbors(tuple(pos)))

    def random_position(self, rng: np.random.Generator) -> Tuple[int, int]:
        return (int(rng.integers(self.dims[0])), int(rng.integers(self.dims[1])))


# =============================================================================
# 模型容器
# =============================================================================

@dataclass
class AgentBasedModel:
    """
    Agent模型参考实现

    properties 中的键可以直接作为属性访问（model.gini 等价于
    model.properties["gini"]），方便收集器按名称读取模型字段。

    Attributes:
        agents: {agent_id: Agent}
        space: 可选的网格空间
        properties: 模型级属性
        seed: 随机种子
        rng: numpy 随机数生成器（由 seed 创建）

    Example:
        >>> model = AgentBasedModel(properties={"tax": 0.1}, seed=1)
        >>> model.add_agent(Agent(id=1))
        >>> model.tax, model.nagents
        (0.1, 1)
    """

    agents: Dict[int, Agent] = field(default_factory=dict)
    space: Optional[GridSpace] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    seed: Optional[int] = None
    rng: np.random.Generator = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.rng = np.random.default_rng(self.seed)

    def __getattr__(self, name: str) -> Any:
        # 只在常规属性查找失败时调用
        properties = self.__dict__.get("properties")
        if properties is not None and name in properties:
            return properties[name]
        raise AttributeError(f"{type(self).__name__} has no attribute '{name}'")

    # -------------------------------------------------------------------------
    # Agent管理
    # -------------------------------------------------------------------------

    @property
    def nagents(self) -> int:
        return len(self.agents)

    def agent_ids(self) -> List[int]:
        """按升序返回全部Agent ID"""
        return sorted(self.agents)

    def iter_agents(self) -> Iterator[Agent]:
        """按ID升序遍历Agent"""
        for agent_id in self.agent_ids():
            yield self.agents[agent_id]

    def add_agent(self, agent: Agent, pos: Optional[Tuple[int, int]] = None) -> Agent:
        """
        加入一个Agent

        Raises:
            ValueError: ID已存在，或位置不在空间内
        """
        if agent.id in self.agents:
            raise ValueError(f"Agent id {agent.id} already in model")
        if pos is not None:
            agent.pos = tuple(pos)
        if agent.pos is not None and self.space is not None and agent.pos not in self.space:
            raise ValueError(f"Position {agent.pos} outside {self.space}")
        self.agents[agent.id] = agent
        return agent

    def kill_agent(self, agent: Agent | int) -> None:
        agent_id = agent if isinstance(agent, int) else agent.id
        del self.agents[agent_id]

    def move_agent(self, agent: Agent, pos: Tuple[int, int]) -> None:
        if self.space is not None and tuple(pos) not in self.space:
            raise ValueError(f"Position {pos} outside {self.space}")
        agent.pos = tuple(pos)

    def agents_at(self, pos: Tuple[int, int]) -> List[Agent]:
        pos = tuple(pos)
        return [a for a in self.iter_agents() if a.pos == pos]

    def random_agent(self) -> Agent:
        ids = self.agent_ids()
        return self.agents[ids[int(self.rng.integers(len(ids)))]]

    # -------------------------------------------------------------------------
    # 空间能力
    # -------------------------------------------------------------------------

    def coord_to_index(self, pos: Tuple[int, int]) -> int:
        """
        坐标转换为标量索引（委托给空间）

        Raises:
            FieldMissing: 模型没有空间
        """
        if self.space is None:
            raise FieldMissing("space", self)
        return self.space.coord_to_index(pos)


# =============================================================================
# 仿真推进
# =============================================================================


def dummystep(*args) -> None:
    """空更新函数（不做任何事情）"""


def step_model(
    model: AgentBasedModel,
    agent_step: Callable[[Agent, AgentBasedModel], None],
    model_step: Callable[[AgentBasedModel], None] = dummystep,
) -> None:
    """
    推进一步仿真

    执行顺序：
    1. 按ID升序对每个仍然存在的Agent调用 agent_step(agent, model)
       （本步中被移除的Agent会被跳过）
    2. 调用一次 model_step(model)

    Args:
        model: 模型
        agent_step: Agent更新函数
        model_step: 模型更新函数
    """
    for agent_id in model.agent_ids():
        agent = model.agents.get(agent_id)
        if agent is not None:
            agent_step(agent, model)
    model_step(model)
