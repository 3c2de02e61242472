"""Tests for run configuration."""

import pytest

from abmscan.config import (
    ReplicateConfig,
    ScanConfig,
    get_quick_replicate_config,
    get_quick_scan_config,
    get_standard_scan_config,
)


class TestScanConfig:
    """Tests for ScanConfig."""

    def test_defaults(self):
        config = ScanConfig()
        assert config.n == 100
        assert config.when is None
        assert config.on_error == "raise"
        assert config.steps_to_record() == tuple(range(101))

    def test_when_normalized(self):
        config = ScanConfig(n=10, when=[5, 0, 5, 2])
        assert config.when == (0, 2, 5)
        assert config.to_dict()["when"] == [0, 2, 5]

    @pytest.mark.parametrize("kwargs", [
        {"n": -1},
        {"on_error": "ignore"},
        {"n_workers": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            ScanConfig(**kwargs)


class TestReplicateConfig:
    """Tests for ReplicateConfig."""

    def test_replicates_positive(self):
        with pytest.raises(ValueError):
            ReplicateConfig(replicates=0)

    def test_to_dict(self):
        config = ReplicateConfig(n=3, replicates=2, on="id")
        assert config.to_dict() == {
            "n": 3,
            "when": None,
            "replicates": 2,
            "single_df": True,
            "on": "id",
            "progress_bar": False,
        }


class TestPresets:
    """Tests for preset configurations."""

    def test_quick_scan(self):
        config = get_quick_scan_config()
        assert config.n == 10
        assert config.progress_bar

    def test_standard_scan(self):
        config = get_standard_scan_config()
        assert config.steps_to_record() == tuple(range(0, 101, 10))
        assert config.on_error == "continue"

    def test_quick_replicates(self):
        config = get_quick_replicate_config()
        assert config.replicates == 5
        assert config.single_df
