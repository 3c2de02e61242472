"""Tests for single runs and parameter scans."""

import threading
from dataclasses import dataclass

import numpy as np
import pandas as pd
import pytest

from abmscan.aggregators import gini
from abmscan.config import ScanConfig
from abmscan.errors import ConfigurationError, ScanAborted, SchemaMismatch
from abmscan.model import Agent, AgentBasedModel, step_model
from abmscan.scan import ParamScanner, add_params, paramscan, run_collect
from abmscan.wealth import wealth_agent_step, wealth_model, wealth_model_step


@dataclass
class Counter(Agent):
    wealth: float = 0


def counter_model(a=1, b=0, num_agents=2):
    """Agents start with wealth a; b is only recorded on the model."""
    model = AgentBasedModel(properties={"a": a, "b": b})
    for agent_id in range(1, num_agents + 1):
        model.add_agent(Counter(id=agent_id, wealth=a))
    return model


def grow(agent, model):
    agent.wealth += 1


def fragile_counter_model(a):
    if a == 2:
        raise ValueError("bad a")
    return counter_model(a=a)


def interrupted_counter_model(a):
    if a == 3:
        raise KeyboardInterrupt
    return counter_model(a=a)


MEAN_WEALTH = {"wealth": [np.mean]}


class TestRunCollect:
    """Tests for a single collected run."""

    def test_every_step_by_default(self):
        df = run_collect(counter_model(a=1), grow, MEAN_WEALTH, n=3)
        assert df["step"].tolist() == [0, 1, 2, 3]
        assert df["mean(wealth)"].tolist() == pytest.approx([1.0, 2.0, 3.0, 4.0])

    def test_step_zero_always_collected(self):
        df = run_collect(counter_model(), grow, MEAN_WEALTH, n=5, when=[3])
        assert df["step"].tolist() == [0, 3]

    def test_stepper_called_exactly_n_times(self):
        calls = []

        def counting_stepper(model, agent_step, model_step):
            calls.append(1)
            step_model(model, agent_step, model_step)

        run_collect(counter_model(), grow, MEAN_WEALTH, n=4, when=[], stepper=counting_stepper)
        assert len(calls) == 4


class TestParamScan:
    """Tests for paramscan and ParamScanner."""

    def test_varying_column_only(self):
        """Only list-valued parameters become columns by default."""
        df = paramscan({"a": [1, 2], "b": 3}, counter_model, agent_step=grow, properties=MEAN_WEALTH, n=3)
        assert "b" not in df.columns
        assert set(df["a"]) == {1, 2}
        assert len(df) == 2 * 4

    def test_rows_follow_expansion_order(self):
        df = paramscan({"a": [2, 1]}, counter_model, agent_step=grow, properties=MEAN_WEALTH, n=1)
        assert df["a"].tolist() == [2, 2, 1, 1]
        assert df["mean(wealth)"].tolist() == pytest.approx([2.0, 3.0, 1.0, 2.0])
        assert df.index.tolist() == [0, 1, 2, 3]

    def test_include_constants(self):
        df = paramscan(
            {"a": [1, 2], "b": 3},
            counter_model,
            agent_step=grow,
            properties=MEAN_WEALTH,
            n=2,
            include_constants=True,
        )
        assert df.columns.tolist() == ["step", "mean(wealth)", "a", "b"]
        assert df["b"].tolist() == [3] * 6

    def test_when_subset(self):
        df = paramscan({"a": [1, 2]}, counter_model, agent_step=grow, properties=MEAN_WEALTH, n=4, when=[0, 2, 4])
        assert df["step"].tolist() == [0, 2, 4, 0, 2, 4]

    def test_raw_mode_scan(self):
        df = paramscan({"a": [1, 2]}, counter_model, agent_step=grow, properties=["wealth"], n=2)
        assert df.columns.tolist() == ["id", "wealth_0", "wealth_1", "wealth_2", "a"]
        assert df["id"].tolist() == [1, 2, 1, 2]
        assert df["wealth_2"].tolist() == [3, 3, 4, 4]

    def test_empty_variable_gives_empty_result(self):
        df = paramscan({"a": []}, counter_model, agent_step=grow, properties=MEAN_WEALTH, n=2)
        assert df.empty

    def test_initializer_rejects_keys(self):
        with pytest.raises(ConfigurationError) as excinfo:
            paramscan({"a": [1], "c": 5}, counter_model, agent_step=grow, properties=MEAN_WEALTH, n=1)
        assert excinfo.value.combination == {"a": 1, "c": 5}
        assert isinstance(excinfo.value, TypeError)

    def test_failure_aborts_by_default(self):
        with pytest.raises(ValueError, match="bad a"):
            paramscan({"a": [1, 2, 3]}, fragile_counter_model, agent_step=grow, properties=MEAN_WEALTH, n=1)

    def test_continue_records_failures(self):
        scanner = ParamScanner(
            {"a": [1, 2, 3]},
            fragile_counter_model,
            agent_step=grow,
            properties=MEAN_WEALTH,
            config=ScanConfig(n=1, on_error="continue"),
        )
        df = scanner.run()
        assert df["a"].tolist() == [1, 1, 3, 3]
        assert len(scanner.failures) == 1
        failure = scanner.failures[0]
        assert failure.index == 1
        assert failure.combination == {"a": 2}
        assert isinstance(failure.error, ValueError)

    def test_cancel_keeps_completed_combinations(self):
        event = threading.Event()

        def cancelling_model(a):
            if a == 2:
                event.set()
            return counter_model(a=a)

        scanner = ParamScanner(
            {"a": [1, 2, 3]},
            cancelling_model,
            agent_step=grow,
            properties=MEAN_WEALTH,
            config=ScanConfig(n=3),
        )
        with pytest.raises(ScanAborted) as excinfo:
            scanner.run(cancel_event=event)
        assert excinfo.value.completed == 1
        assert excinfo.value.partial["a"].tolist() == [1, 1, 1, 1]

    def test_keyboard_interrupt_keeps_completed_combinations(self):
        with pytest.raises(ScanAborted) as excinfo:
            paramscan({"a": [1, 2, 3]}, interrupted_counter_model, agent_step=grow, properties=MEAN_WEALTH, n=1)
        assert excinfo.value.completed == 2
        assert excinfo.value.partial["a"].tolist() == [1, 1, 2, 2]

    def test_parallel_matches_sequential(self):
        parameters = {"num_agents": [5, 10, 15], "width": 4, "height": 4, "seed": 1}
        kwargs = dict(
            agent_step=wealth_agent_step,
            model_step=wealth_model_step,
            properties={"wealth": [gini, np.mean]},
            n=5,
        )
        sequential = paramscan(parameters, wealth_model, **kwargs)
        parallel = paramscan(parameters, wealth_model, n_workers=2, **kwargs)
        pd.testing.assert_frame_equal(parallel, sequential)


class TestAddParams:
    """Tests for add_params."""

    def test_constant_column_per_parameter(self):
        df = pd.DataFrame({"step": [0, 1, 2]})
        add_params(df, {"a": 1, "b": (2, 2), "c": "x"}, ["b", "a"])
        assert df.columns.tolist() == ["step", "b", "a"]
        assert df["b"].tolist() == [(2, 2)] * 3
        assert df["a"].tolist() == [1, 1, 1]

    def test_name_clash(self):
        df = pd.DataFrame({"step": [0], "a": [1]})
        with pytest.raises(SchemaMismatch):
            add_params(df, {"a": 2}, ["a"])


class TestParallelScan:
    """Process-pool scans keep failures and completed tables."""

    def test_continue_records_failures(self):
        scanner = ParamScanner(
            {"a": [1, 2, 3]},
            fragile_counter_model,
            agent_step=grow,
            properties=MEAN_WEALTH,
            config=ScanConfig(n=1, on_error="continue", n_workers=2),
        )
        df = scanner.run()
        assert df["a"].tolist() == [1, 1, 3, 3]
        assert [f.index for f in scanner.failures] == [1]
        assert scanner.failures[0].combination == {"a": 2}
        assert isinstance(scanner.failures[0].error, ValueError)

    def test_failure_aborts_by_default(self):
        with pytest.raises(ValueError, match="bad a"):
            paramscan(
                {"a": [1, 2, 3]},
                fragile_counter_model,
                agent_step=grow,
                properties=MEAN_WEALTH,
                n=1,
                n_workers=2,
            )

    def test_cancel_keeps_first_completed(self):
        event = threading.Event()
        event.set()
        with pytest.raises(ScanAborted) as excinfo:
            paramscan(
                {"a": [1, 2, 3]},
                counter_model,
                agent_step=grow,
                properties=MEAN_WEALTH,
                n=2,
                n_workers=2,
                cancel_event=event,
            )
        partial = excinfo.value.partial
        assert excinfo.value.completed == 1
        assert len(partial) == 3
        assert partial["a"].nunique() == 1

    def test_keyboard_interrupt_keeps_completed(self):
        with pytest.raises(ScanAborted) as excinfo:
            paramscan(
                {"a": [1, 2, 3]},
                interrupted_counter_model,
                agent_step=grow,
                properties=MEAN_WEALTH,
                n=1,
                n_workers=2,
            )
        partial = excinfo.value.partial
        assert excinfo.value.completed == len(partial) // 2
        assert 3 not in set(partial.get("a", []))
