"""
财富交换示例模型 (Boltzmann Wealth Exchange Model)

一个最小的空间ABM，用于演示和测试数据收集与参数扫描：

    - 每个Agent初始持有 initial_wealth 单位财富，位于网格的随机格子
    - 每一步，每个有财富的Agent移动到一个相邻格子，
      然后把1单位财富交给同一格子中的另一个随机Agent
      （格子中没有其他Agent时，交给全体中的随机Agent）
    - 模型级属性 gini 在每步结束时更新

财富总量守恒；随着时间推移，财富分布趋向指数分布，基尼系数上升。

作者: SuZX
日期: 2024
"""

from dataclasses import dataclass, field
from typing import List, Optional

from abmscan.aggregators import gini
from abmscan.model import Agent, AgentBasedModel, GridSpace


@dataclass
class WealthAgent(Agent):
    """
    财富交换Agent

    Attributes:
        wealth: 当前财富
        history: 最近若干步的财富记录（数组字段，收集时按Agent取均值）
    """

    wealth: int = 1
    history: List[int] = field(default_factory=list)


# 每个Agent保留的历史长度
HISTORY_LENGTH = 5


def wealth_model(
    num_agents: int = 100,
    width: int = 10,
    height: int = 10,
    initial_wealth: int = 1,
    seed: Optional[int] = None,
    periodic: bool = True,
) -> AgentBasedModel:
    """
    创建财富交换模型

    Args:
        num_agents: Agent数量（ID为 1..num_agents）
        width: 网格宽度
        height: 网格高度
        initial_wealth: 每个Agent的初始财富
        seed: 随机种子
        periodic: 网格是否首尾相接

    Returns:
        初始化后的模型
    """
    if num_agents < 0:
        raise ValueError(f"num_agents must be non-negative, got {num_agents}")

    model = AgentBasedModel(
        space=GridSpace((width, height), periodic=periodic),
        properties={"initial_wealth": initial_wealth, "gini": 0.0},
        seed=seed,
    )
    for agent_id in range(1, num_agents + 1):
        agent = WealthAgent(id=agent_id, wealth=initial_wealth, history=[initial_wealth])
        model.add_agent(agent, pos=model.space.random_position(model.rng))
    return model


def wealth_agent_step(agent: WealthAgent, model: AgentBasedModel) -> None:
    """Agent更新：移动一步，然后送出1单位财富"""
    neighbors = model.space.neighbors(agent.pos)
    if neighbors:
        model.move_agent(agent, neighbors[int(model.rng.integers(len(neighbors)))])

    if agent.wealth > 0:
        others = [a for a in model.agents_at(agent.pos) if a.id != agent.id]
        if not others:
            others = [a for a in model.iter_agents() if a.id != agent.id]
        if others:
            recipient = others[int(model.rng.integers(len(others)))]
            recipient.wealth += 1
            agent.wealth -= 1


def wealth_model_step(model: AgentBasedModel) -> None:
    """模型更新：记录历史财富并更新基尼系数"""
    for agent in model.iter_agents():
        agent.history.append(agent.wealth)
        del agent.history[:-HISTORY_LENGTH]
    model.properties["gini"] = gini([a.wealth for a in model.iter_agents()])
