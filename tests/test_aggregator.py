import datetime as dt

from conftest import beam, geo

from mpcqa.aggregator import aggregate_beams, aggregate_geometry, group_status, pick_geo_record
from mpcqa.models import BeamVariant, CheckMetric, DocFactor, Threshold

DAY = "2024-03-05"


def _variants(*names: str):
    return [BeamVariant(id=f"v-{n}", variant=n) for n in names]


def test_missing_variant_gets_placeholder_rows() -> None:
    groups = aggregate_beams([beam("6x")], _variants("6x", "10x"), on_date=DAY, machine_id="M1")
    ten = next(g for g in groups if g.id == "beam-10x")
    assert [m.value for m in ten.metrics] == ["-", "-", "-"]
    assert {m.status for m in ten.metrics} == {"warning"}
    assert ten.status == "PASS"
    assert ten.source_id is None


def test_groups_sorted_naturally() -> None:
    groups = aggregate_beams([], _variants("10x", "6x", "2.5x"), on_date=DAY, machine_id="M1")
    assert [g.id for g in groups] == ["beam-2.5x", "beam-6x", "beam-10x"]


def test_unlisted_variant_record_still_shown() -> None:
    groups = aggregate_beams([beam("15x")], _variants("6x"), on_date=DAY, machine_id="M1")
    assert [g.id for g in groups] == ["beam-6x", "beam-15x"]
    assert groups[1].source_id


def test_latest_timestamp_wins() -> None:
    early = beam("6x", time="07:00:00", output=1.0)
    late = beam("6x", time="18:00:00", output=2.0)
    groups = aggregate_beams([late, early], _variants("6x"), on_date=DAY, machine_id="M1")
    assert groups[0].metrics[0].value == 2.0
    assert groups[0].source_id == late.id


def test_records_from_other_days_are_ignored() -> None:
    groups = aggregate_beams([beam("6x", "2024-03-04")], _variants("6x"), on_date=DAY, machine_id="M1")
    assert groups[0].metrics[0].value == "-"


def test_beam_status_and_thresholds() -> None:
    rec = beam("6x", rel_output_status="FAIL")
    thresholds = [
        Threshold(machine_id="M1", check_type="beam", metric_type="Relative Output", value=3.0, beam_variant_id="v-6x"),
        Threshold(machine_id="M1", check_type="beam", metric_type="Center Shift", value=0.5, beam_variant_id="v-6x"),
    ]
    group = aggregate_beams([rec], _variants("6x"), thresholds, on_date=DAY, machine_id="M1")[0]
    output, uniformity, shift = group.metrics
    assert output.name == "Relative Output (6x)"
    assert output.status == "fail"
    assert output.thresholds == "± 3.00%"
    assert uniformity.thresholds == ""
    assert shift.thresholds == "≤ 0.500"
    assert group.status == "FAIL"


def test_absolute_output_uses_current_doc_factor() -> None:
    factor = DocFactor(
        machine_id="M1", beam_variant_id="v-6x", beam_id="", msd_abs=1.0, mpc_rel=0.0, doc_factor=1.02,
        measurement_date=dt.date(2024, 1, 1), start_date=dt.date(2024, 1, 1),
    )
    group = aggregate_beams([beam("6x", output=0.5)], _variants("6x"), doc_factors=[factor],
                            on_date=DAY, machine_id="M1")[0]
    assert group.metrics[0].absolute_value == "0.5100"
    assert group.metrics[1].absolute_value == ""


def test_group_status_rules() -> None:
    def m(status: str) -> CheckMetric:
        return CheckMetric("x", 1.0, "", "", status)

    assert group_status([m("pass"), m("pass"), m("fail")]) == "FAIL"
    assert group_status([m("pass"), m("pass")]) == "PASS"
    assert group_status([m("warning"), m("warning")]) == "PASS"


def test_geometry_layout_and_failures() -> None:
    rec = geo(
        iso_center_size=0.3,
        couch_lat=-0.4,
        mlc_leaves_a={"2": 0.1, "1": -0.05},
        metric_statuses={"CouchLat": "FAIL", "mlc_leaf_position": "FAIL"},
    )
    groups = aggregate_geometry(rec, [
        Threshold(machine_id="M1", check_type="geometry", metric_type="Couch Lat", value=0.5),
    ])
    assert len(groups) == 12
    by_id = {g.id: g for g in groups}

    iso = by_id["geo-isocenter"]
    assert iso.status == "PASS"
    assert iso.metrics[1].value == ""

    couch = by_id["geo-couch"]
    assert couch.status == "FAIL"
    lat = couch.metrics[0]
    assert lat.absolute_value == "0.400"
    assert lat.thresholds == "± 0.50"

    leaves = by_id["geo-mlc-a"]
    assert [m.name for m in leaves.metrics] == ["MLC A Leaf 1", "MLC A Leaf 2"]
    assert {m.status for m in leaves.metrics} == {"pass"}
    assert leaves.status == "FAIL"
    # no leaves on B: nothing to fail
    assert by_id["geo-mlc-b"].status == "PASS"
    assert by_id["geo-mlc-b"].metrics == ()


def test_no_geometry_record_means_no_groups() -> None:
    assert aggregate_geometry(None) == []


def test_pick_geo_record_latest_of_day() -> None:
    a = geo(time="07:00:00")
    b = geo(time="19:00:00")
    other = geo("2024-03-04")
    assert pick_geo_record([a, b, other], DAY) is b
    assert pick_geo_record([other], DAY) is None


def test_aggregation_is_idempotent() -> None:
    records = [beam("6x"), beam("10x", rel_uniformity_status="FAIL")]
    variants = _variants("6x", "10x")
    first = [g.to_dict() for g in aggregate_beams(records, variants, on_date=DAY, machine_id="M1")]
    second = [g.to_dict() for g in aggregate_beams(records, variants, on_date=DAY, machine_id="M1")]
    assert first == second
    geo_rec = geo(jaw_x1=0.1)
    assert [g.to_dict() for g in aggregate_geometry(geo_rec)] == [g.to_dict() for g in aggregate_geometry(geo_rec)]
