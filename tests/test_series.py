from conftest import beam, geo

from mpcqa.models import BeamCheckRecord
from mpcqa.series import available_metrics, build_series, series_frame


def test_one_point_per_day_with_labels() -> None:
    series = build_series("2024-03-04", "2024-03-06", [beam("6x", output=0.7)], [])
    assert [p["fullDate"] for p in series] == ["2024-03-04", "2024-03-05", "2024-03-06"]
    assert series[1]["date"] == "Mar 5"
    assert series[1]["Relative_Output__6x_"] == 0.7
    assert "Relative_Output__6x_" not in series[0]


def test_record_matched_on_timestamp_when_date_missing() -> None:
    rec = BeamCheckRecord(
        id="b1", machine_id="M1", beam_variant_id="v-6x", beam_variant_name="6x",
        timestamp="2024-03-05T23:10:00", date=None, relative_output=1.1,
    )
    series = build_series("2024-03-05", "2024-03-05", [rec], [])
    assert series[0]["Relative_Output__6x_"] == 1.1


def test_latest_record_of_day_wins() -> None:
    early = beam("6x", time="06:00:00", shift=0.1)
    late = beam("6x", time="20:00:00", shift=0.3)
    series = build_series("2024-03-05", "2024-03-05", [late, early], [])
    assert series[0]["Center_Shift__6x_"] == 0.3


def test_geometry_values_and_leaves() -> None:
    g = geo(couch_vrt=0.2, mlc_backlash_b={"7": 0.04})
    series = build_series("2024-03-05", "2024-03-05", [], [g])
    assert series[0]["Couch_Vrt"] == 0.2
    assert series[0]["Backlash_B_Leaf_7"] == 0.04


def test_selection_filters_keys() -> None:
    series = build_series("2024-03-05", "2024-03-05", [beam("6x")], [geo(jaw_x1=0.1)], ["Jaw X1"])
    assert set(series[0]) == {"date", "fullDate", "Jaw_X1"}


def test_reversed_range_is_empty() -> None:
    assert build_series("2024-03-06", "2024-03-05", [beam("6x")], []) == []


def test_available_metrics_beam_first() -> None:
    labels = available_metrics(
        [beam("10x", uniformity=None), beam("6x", shift=None)],
        [geo(gantry_absolute=0.01)],
    )
    assert labels == [
        "Center Shift (10x)",
        "Relative Output (6x)",
        "Relative Output (10x)",
        "Relative Uniformity (6x)",
        "Gantry Absolute",
    ]


def test_series_frame_is_wide() -> None:
    series = build_series("2024-03-04", "2024-03-05", [beam("6x", output=0.5)], [])
    df = series_frame(series, ["Relative Output (6x)"])
    assert list(df.columns) == ["Date", "Relative Output (6x)"]
    assert df["Relative Output (6x)"].isna().tolist() == [True, False]
