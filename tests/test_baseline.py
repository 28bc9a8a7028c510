from mpcqa.baseline import baseline_summary, compute_baseline, manual_baseline_for, normalize_for_baseline
from mpcqa.models import BaselineManualValues, BaselineSettings


def _series():
    return [
        {"date": "Mar 4", "fullDate": "2024-03-04", "Output_Change__6x_": 1.0},
        {"date": "Mar 5", "fullDate": "2024-03-05", "Output_Change__6x_": 2.0, "Jaw_X1": 0.3},
    ]


def test_manual_mode_subtracts_configured_value() -> None:
    settings = BaselineSettings(mode="manual", manual_values=BaselineManualValues(output_change=1.5))
    out, comp = normalize_for_baseline(settings, ["Output Change (6x)"], _series())
    assert comp.values_by_key == {"Output_Change__6x_": 1.5}
    assert [p["Output_Change__6x_"] for p in out] == [-0.5, 0.5]


def test_manual_mode_unmatched_metric_is_zero() -> None:
    manual = BaselineManualValues(output_change=1.5, uniformity_change=0.7, center_shift=0.2)
    settings = BaselineSettings(mode="manual", manual_values=manual)
    assert manual_baseline_for(settings, "Jaw X1") == 0.0
    assert manual_baseline_for(settings, "Center Shift (10x)") == 0.2
    assert manual_baseline_for(settings, "Relative Output (6x)") == 0.0
    assert manual_baseline_for(settings, "Relative Uniformity") == 0.0
    assert manual_baseline_for(settings, "Uniformity Change (10x)") == 0.7


def test_input_series_is_not_mutated() -> None:
    series = _series()
    settings = BaselineSettings(mode="manual", manual_values=BaselineManualValues(output_change=1.0))
    normalize_for_baseline(settings, ["Output Change (6x)"], series)
    assert series[1]["Output_Change__6x_"] == 2.0


def test_date_mode_in_range() -> None:
    settings = BaselineSettings(mode="date", date="2024-03-04")
    out, comp = normalize_for_baseline(settings, ["Output Change (6x)", "Jaw X1"], _series())
    assert comp.baseline_date_in_range
    assert comp.values_by_key == {"Output_Change__6x_": 1.0, "Jaw_X1": None}
    assert out[1]["Output_Change__6x_"] == 1.0
    # no baseline for Jaw X1: left raw
    assert out[1]["Jaw_X1"] == 0.3


def test_date_mode_fetches_out_of_range_day() -> None:
    requested = []

    def fetch(date: str):
        requested.append(date)
        return {"date": "Feb 1", "fullDate": date, "Output_Change__6x_": 0.25}

    settings = BaselineSettings(mode="date", date="2024-02-01")
    comp = compute_baseline(settings, ["Output Change (6x)"], _series(), fetch_day=fetch)
    assert requested == ["2024-02-01"]
    assert not comp.baseline_date_in_range
    assert comp.values_by_key["Output_Change__6x_"] == 0.25
    assert comp.has_numeric_baseline


def test_date_mode_unmeasured_day_is_none() -> None:
    settings = BaselineSettings(mode="date", date="2024-02-01")
    comp = compute_baseline(settings, ["Output Change (6x)"], _series(), fetch_day=lambda d: None)
    assert comp.values_by_key == {"Output_Change__6x_": None}
    assert not comp.has_numeric_baseline
    message, tone = baseline_summary(settings, 1, comp)
    assert tone == "warning"
    assert "2024-02-01" in message


def test_summary_without_date() -> None:
    message, tone = baseline_summary(BaselineSettings(mode="date"), 2)
    assert tone == "muted"
    assert baseline_summary(BaselineSettings(mode="manual"), 1)[1] == "info"
