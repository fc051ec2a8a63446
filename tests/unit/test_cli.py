"""
Unit tests for the command line entry point.
"""

import json

import numpy as np
import pytest

from spksort import cli
from spksort.utils.exceptions import ValidationError
from tests.fixtures.synthetic_clusters import generate_blobs


@pytest.fixture
def spikes_archive(temp_dir):
    """Archive with one sortable electrode and one too small to sort."""
    features, _ = generate_blobs([[0.0, 0.0], [25.0, 25.0]], n_per_blob=60, seed=3)
    path = temp_dir / "spikes.npz"
    np.savez(
        path,
        features_4=features,
        features_9=features[:3],
        unrelated=np.zeros(2),
    )
    return path


@pytest.fixture
def config_file(temp_dir):
    path = temp_dir / "sort.json"
    path.write_text(json.dumps({"spksort": {
        "bisecs": 2, "defcut": 0.0, "nboot": 100, "n_workers": 1, "log_level": "warning",
    }}))
    return path


@pytest.fixture
def logging_levels(monkeypatch):
    """Record the levels passed to setup_logging instead of configuring logging."""
    levels = []
    monkeypatch.setattr(cli, "setup_logging", lambda level, *a, **k: levels.append(level))
    return levels


class TestLoadElectrodes:
    """Tests for reading electrode archives."""

    def test_reads_feature_arrays(self, spikes_archive):
        electrodes = cli.load_electrodes(spikes_archive)
        assert [e.electrode_id for e in electrodes] == [4, 9]
        assert electrodes[0].features.shape == (120, 2)
        assert electrodes[0].waveforms is None

    def test_reads_waveforms(self, temp_dir):
        path = temp_dir / "spikes.npz"
        np.savez(path, features_1=np.zeros((5, 2)), waveforms_1=np.ones((5, 8)))
        electrode, = cli.load_electrodes(path)
        assert electrode.waveforms.shape == (5, 8)

    def test_empty_archive_raises(self, temp_dir):
        path = temp_dir / "empty.npz"
        np.savez(path, other=np.zeros(3))
        with pytest.raises(ValidationError, match="No features"):
            cli.load_electrodes(path)


class TestMain:
    """Tests for the spksort command."""

    def test_log_level_from_config(self, spikes_archive, config_file, logging_levels, capsys):
        code = cli.main([str(spikes_archive), "--config", str(config_file)])

        assert code == 0
        assert logging_levels == ["WARNING"]
        out = capsys.readouterr().out
        assert "Sorted:  1" in out
        assert "Skipped: 1" in out

    def test_debug_flag_overrides_config(self, spikes_archive, config_file, logging_levels):
        cli.main([str(spikes_archive), "--config", str(config_file), "--debug"])
        assert logging_levels == ["DEBUG"]

    def test_invalid_config_exit_code(self, spikes_archive, temp_dir, logging_levels, capsys):
        path = temp_dir / "bad.json"
        path.write_text(json.dumps({"log_level": "LOUD"}))

        assert cli.main([str(spikes_archive), "--config", str(path)]) == 2
        assert "Configuration error" in capsys.readouterr().err
        assert logging_levels == []

    def test_missing_archive_exit_code(self, temp_dir, config_file, logging_levels):
        assert cli.main([str(temp_dir / "missing.npz"), "--config", str(config_file)]) == 1
