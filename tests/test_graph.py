import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
from matplotlib.colors import to_hex
import pytest

from mpcqa.graph import compute_domain, edge_bands, plot_metric_trend, shading_bands


def _point(day: str, **values):
    return {"date": day, "fullDate": f"2024-03-{day[-2:]}", **values}


def test_no_selection_gives_global_default() -> None:
    assert compute_domain([], [_point("05", Jaw_X1=9.0)]) == (-6.0, 6.0)


def test_center_shift_only_pads_default_range() -> None:
    lo, hi = compute_domain(["Center Shift"], [])
    assert (lo, hi) == pytest.approx((-4.8, 4.8))


def test_sample_expands_range() -> None:
    lo, hi = compute_domain(["Center Shift"], [_point("05", Center_Shift=5.0)])
    assert hi >= 5.0 + 0.1
    assert hi == pytest.approx(5.0 + 0.9)
    assert lo == pytest.approx(-4.0 - 0.9)


def test_unselected_samples_are_ignored() -> None:
    assert compute_domain(["Center Shift"], [_point("05", Jaw_X1=50.0)]) == pytest.approx((-4.8, 4.8))


def test_threshold_buffer_and_baselines() -> None:
    lo, hi = compute_domain(["Center Shift"], [], effective_threshold=4.0)
    assert hi == pytest.approx(4.5 + 0.9)
    lo, hi = compute_domain(["Center Shift"], [], baseline_values={"Center_Shift": -7.0, "x": None})
    assert lo == pytest.approx(-7.0 - 1.1)


def test_shading_bands() -> None:
    bands = shading_bands(1.0, (-2.0, 2.0))
    assert [(b.y0, b.y1, b.kind) for b in bands] == [
        (pytest.approx(0.9), 1.0, "warning"),
        (1.0, 2.0, "fail"),
        (-1.0, pytest.approx(-0.9), "warning"),
        (-2.0, -1.0, "fail"),
    ]
    assert shading_bands(None, (-2.0, 2.0)) == []


def test_plot_renders_lines_and_bands() -> None:
    series = [_point("04", Center_Shift=0.2), _point("05", Center_Shift=0.4)]
    fig = plot_metric_trend(series, ["Center Shift"], (-4.8, 4.8), threshold=1.0, baselines={"Center_Shift": 0.1})
    ax = fig.axes[0]
    assert ax.get_ylim() == pytest.approx((-4.8, 4.8))
    assert len(ax.patches) == 4
    plt.close(fig)


def test_edge_bands_follow_range_percentages() -> None:
    bands = edge_bands((-4.0, 4.0), 25.0, 12.5)
    assert [(b.y0, b.y1, b.kind) for b in bands] == [(2.0, 4.0, "edge"), (-4.0, -3.0, "edge")]
    assert edge_bands((-4.0, 4.0), 0.0, None) == []


def test_plot_shades_edges_in_configured_color() -> None:
    series = [_point("05", Center_Shift=0.4)]
    fig = plot_metric_trend(
        series, ["Center Shift"], (-4.0, 4.0), threshold=1.0,
        edge_percent=(25.0, 25.0), edge_color="#123456",
    )
    ax = fig.axes[0]
    assert len(ax.patches) == 6
    edges = [p for p in ax.patches if to_hex(p.get_facecolor(), keep_alpha=False) == "#123456"]
    assert len(edges) == 2
    assert ax.get_ylim() == pytest.approx((-4.0, 4.0))
    plt.close(fig)


def test_plot_without_selection_is_placeholder() -> None:
    fig = plot_metric_trend([], [], (-6.0, 6.0))
    assert fig.axes[0].get_title() == "Select metrics to plot"
    plt.close(fig)
