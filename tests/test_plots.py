import matplotlib.pyplot as plt
import pytest
from matplotlib.figure import Figure

from plasmafurnace.controller.engine import SimulationEngine
from plasmafurnace.view.plots import plot_probe_history, plot_snapshot


@pytest.fixture(scope="module")
def result():
    from conftest import make_config

    return SimulationEngine(make_config(simulation={"total_time": 2.0})).run()


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


def test_snapshot_plot(tmp_path, result):
    path = tmp_path / "snapshot.png"
    fig = plot_snapshot(result, filename=str(path))
    assert isinstance(fig, Figure)
    assert path.exists()
    assert "t = 2.0 s" in fig.axes[0].get_title()


def test_snapshot_plot_in_kelvin(result):
    fig = plot_snapshot(result, index=0, celsius=False)
    assert "(K)" in fig.axes[1].get_ylabel()


def test_probe_history_plot(tmp_path, result):
    path = tmp_path / "probes.png"
    fig = plot_probe_history(result, [(0.0, 0.5), (0.25, 0.5)], filename=str(path))
    assert len(fig.axes[0].get_lines()) == 2
    assert path.exists()
    with pytest.raises(ValueError):
        plot_probe_history(result, [])
