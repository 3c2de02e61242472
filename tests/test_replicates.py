"""Tests for replicate runs."""

import numpy as np
import pandas as pd
import pytest

from abmscan.config import ReplicateConfig
from abmscan.errors import JoinKeyMismatch
from abmscan.model import dummystep
from abmscan.scan import ReplicateRunner, merge_replicates, series_replicates
from abmscan.wealth import wealth_agent_step, wealth_model, wealth_model_step


def add_one(agent, model):
    agent.wealth += 1


class TestSeriesReplicates:
    """Tests for series_replicates."""

    def test_single_df_suffixes(self, scalar_model):
        df = series_replicates(
            scalar_model, add_one, dummystep, {"wealth": [np.mean]},
            when=None, n=2, single_df=True, replicates=3,
        )
        assert df.columns.tolist() == ["step", "mean(wealth)", "mean(wealth)_1", "mean(wealth)_2"]
        assert df["step"].tolist() == [0, 1, 2]
        for column in df.columns[1:]:
            assert df[column].tolist() == pytest.approx([20.0, 21.0, 22.0])

    def test_list_form(self, scalar_model):
        tables = series_replicates(
            scalar_model, add_one, dummystep, {"wealth": [np.mean]},
            when=[2], n=2, single_df=False, replicates=2,
        )
        assert isinstance(tables, list)
        assert len(tables) == 2
        for table in tables:
            assert table["step"].tolist() == [0, 2]
            assert table.columns.tolist() == ["step", "mean(wealth)"]

    def test_original_model_untouched(self, scalar_model):
        series_replicates(
            scalar_model, add_one, dummystep, {"wealth": [np.mean]},
            when=None, n=5, single_df=True, replicates=2,
        )
        assert [scalar_model.agents[i].wealth for i in (1, 2, 3)] == [10, 20, 30]

    def test_raw_single_df_needs_id_key(self, scalar_model):
        """Raw tables carry no step column, so the default join key is missing."""
        with pytest.raises(JoinKeyMismatch):
            series_replicates(
                scalar_model, add_one, dummystep, ["wealth"],
                when=None, n=1, single_df=True, replicates=2,
            )

    def test_raw_single_df_on_id(self, scalar_model):
        df = series_replicates(
            scalar_model, add_one, dummystep, ["wealth"],
            when=None, n=1, single_df=True, replicates=2, on="id",
        )
        assert df.columns.tolist() == ["id", "wealth_0", "wealth_1", "wealth_0_1", "wealth_1_1"]
        assert df["wealth_1_1"].tolist() == [11, 21, 31]


class TestReplicateRunner:
    """Tests for ReplicateRunner."""

    def test_reseed_called_per_replicate(self):
        seen = []

        def reseed(model, replicate):
            seen.append(replicate)
            model.rng = np.random.default_rng(100 + replicate)

        model = wealth_model(num_agents=10, width=3, height=3, seed=0)
        runner = ReplicateRunner(
            model,
            wealth_agent_step,
            {"wealth": [np.sum]},
            config=ReplicateConfig(n=4, replicates=3),
            model_step=wealth_model_step,
            reseed=reseed,
        )
        df = runner.run()
        assert seen == [0, 1, 2]
        # wealth is conserved in every replicate
        for column in ("sum(wealth)", "sum(wealth)_1", "sum(wealth)_2"):
            assert (df[column] == 10).all()

    def test_identical_without_reseed(self):
        """Each copy starts from the same generator state."""
        model = wealth_model(num_agents=8, width=3, height=3, seed=5)
        tables = ReplicateRunner(
            model,
            wealth_agent_step,
            ["wealth"],
            config=ReplicateConfig(n=3, replicates=2, single_df=False),
            model_step=wealth_model_step,
        ).run()
        pd.testing.assert_frame_equal(tables[0], tables[1])


class TestMergeReplicates:
    """Tests for merge_replicates."""

    def test_outer_join_on_step(self):
        first = pd.DataFrame({"step": [0, 1], "x": [1.0, 2.0]})
        second = pd.DataFrame({"step": [1, 2], "x": [3.0, 4.0]})
        merged = merge_replicates([first, second])
        assert merged["step"].tolist() == [0, 1, 2]
        assert pd.isna(merged["x_1"].iloc[0])
        assert pd.isna(merged["x"].iloc[2])

    def test_missing_key(self):
        first = pd.DataFrame({"step": [0], "x": [1.0]})
        second = pd.DataFrame({"x": [3.0]})
        with pytest.raises(JoinKeyMismatch):
            merge_replicates([first, second])

    def test_empty(self):
        assert merge_replicates([]).empty

