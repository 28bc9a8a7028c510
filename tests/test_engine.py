import pytest
from conftest import beam, geo

from mpcqa.engine import QAEngine
from mpcqa.errors import ValidationError
from mpcqa.models import BaselineManualValues, BaselineSettings, Threshold
from mpcqa.settings import MemorySettingsStore


@pytest.fixture
def engine(client):
    client.beams = [
        beam("6x", "2024-03-04", output=0.2),
        beam("6x", "2024-03-05", output=0.6),
        beam("10x", "2024-03-05", output=-0.4),
    ]
    client.geos = [geo("2024-03-05", couch_lat=0.1)]
    client.thresholds = [
        Threshold(machine_id="M1", check_type="beam", metric_type="Relative Output", value=2.0, beam_variant_id="v-6x"),
    ]
    return QAEngine(client, MemorySettingsStore())


def test_aggregate_day(engine) -> None:
    day = engine.aggregate_day("M1", "2024-03-05")
    assert [g.id for g in day.beam_groups] == ["beam-6x", "beam-10x"]
    assert day.beam_groups[0].metrics[0].value == 0.6
    assert day.beam_groups[0].metrics[0].thresholds == "± 2.00%"
    assert len(day.geo_groups) == 12


def test_approve_routes_by_family(engine, client) -> None:
    day = engine.aggregate_day("M1", "2024-03-05")
    groups = list(day.beam_groups) + list(day.geo_groups)
    result = engine.approve(groups, "Dr. Q")
    assert len(result.beams) == 2
    # twelve geometry groups share one record
    assert len(result.geo_checks) == 1
    assert client.geos[0].approved_by == "Dr. Q"

    with pytest.raises(ValidationError):
        engine.approve(groups, "  ")


def test_graph_uses_raw_values_with_baseline_lines(engine) -> None:
    engine.settings_store.update_baseline(mode="date", date="2024-03-04")
    view = engine.graph_for("M1", "2024-03-04", "2024-03-05", ["Relative Output (6x)"])
    assert not view.deltas
    assert view.series[1]["Relative_Output__6x_"] == 0.6
    assert view.baseline.values_by_key == {"Relative_Output__6x_": 0.2}
    assert view.effective_threshold == 2.0
    assert len(view.bands) == 4


def test_graph_deltas(engine) -> None:
    engine.settings_store.update_baseline(mode="date", date="2024-03-04")
    view = engine.graph_for("M1", "2024-03-04", "2024-03-05", ["Relative Output (6x)"], deltas=True)
    assert view.deltas
    assert view.series[1]["Relative_Output__6x_"] == 0.4


def test_baseline_day_outside_range_is_fetched(engine, client) -> None:
    settings = BaselineSettings(mode="date", date="2024-03-04")
    series = engine.build_series("M1", "2024-03-05", "2024-03-05", ["Relative Output (6x)"])
    out, comp = engine.normalize_for_baseline(settings, ["Relative Output (6x)"], series, machine_id="M1")
    assert not comp.baseline_date_in_range
    assert comp.values_by_key["Relative_Output__6x_"] == 0.2
    assert out[0]["Relative_Output__6x_"] == 0.4
    assert "beams 2024-03-04..2024-03-04" in client.calls


def test_manual_baseline_leaves_relative_output_raw(engine) -> None:
    settings = BaselineSettings(mode="manual", manual_values=BaselineManualValues(output_change=0.5))
    series = engine.build_series("M1", "2024-03-05", "2024-03-05", ["Relative Output (10x)"])
    out, comp = engine.normalize_for_baseline(settings, ["Relative Output (10x)"], series)
    assert comp.values_by_key == {"Relative_Output__10x_": 0.0}
    assert out[0]["Relative_Output__10x_"] == -0.4


def test_domain_without_selection(engine) -> None:
    view = engine.graph_for("M1", "2024-03-04", "2024-03-05", [])
    assert view.domain == (-6.0, 6.0)
    assert view.effective_threshold is None
    assert view.bands == ()


def test_report_request(engine, client) -> None:
    pdf = engine.request_report("M1", "2024-03-01", "2024-03-05", ["Beam Check (6x)"])
    assert pdf.startswith(b"%PDF")
    assert client.reports[0]["selectedChecks"] == ["Beam Check (6x)"]
    with pytest.raises(ValidationError):
        engine.request_report("M1", "2024-03-01", "2024-03-05", [])
