"""Pytest fixtures for abmscan tests."""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from abmscan.model import Agent, AgentBasedModel, GridSpace


@dataclass
class Trader(Agent):
    """Minimal agent with a scalar or array-valued wealth field."""

    wealth: Any = 0
    tags: List[str] = field(default_factory=list)


def make_model(wealth_by_id, space=None, positions=None, **properties):
    """Build a model whose agents carry the given wealth values."""
    model = AgentBasedModel(space=space, properties=properties, seed=0)
    for agent_id, wealth in wealth_by_id.items():
        pos = positions.get(agent_id) if positions else None
        model.add_agent(Trader(id=agent_id, wealth=wealth), pos=pos)
    return model


@pytest.fixture
def scalar_model():
    """Three agents inserted out of id order with wealth 10/20/30."""
    return make_model({3: 30, 1: 10, 2: 20})


@pytest.fixture
def array_model():
    """Agents whose wealth field is an array."""
    return make_model({1: [1, 2, 3], 2: [2, 2, 2], 3: [10, 20, 30]})


@pytest.fixture
def grid_model():
    """Agents on a 3x3 grid at (0, 0), (1, 0) and (0, 1)."""
    return make_model(
        {1: 1, 2: 2, 3: 3},
        space=GridSpace((3, 3)),
        positions={1: (0, 0), 2: (1, 0), 3: (0, 1)},
        tax=0.1,
    )
