import datetime as dt

import pytest

from mpcqa.errors import ValidationError
from mpcqa.models import (
    BaselineSettings,
    BeamCheckRecord,
    GeoCheckRecord,
    Threshold,
    normalize_leaf_map,
    parse_date,
    sorted_leaves,
    to_camel_case,
)


def test_to_camel_case_is_recursive() -> None:
    blob = {"machine_id": "M1", "metric_statuses": {"iso_center_size": "FAIL"}, "rows": [{"leaf_number": 1}]}
    out = to_camel_case(blob)
    assert out == {"machineId": "M1", "metricStatuses": {"isoCenterSize": "FAIL"}, "rows": [{"leafNumber": 1}]}


def test_parse_date_accepts_timestamps_and_rejects_garbage() -> None:
    assert parse_date("2024-03-05T10:11:12Z") == dt.date(2024, 3, 5)
    assert parse_date(dt.datetime(2024, 3, 5, 9)) == dt.date(2024, 3, 5)
    with pytest.raises(ValidationError):
        parse_date("05/03/2024")
    with pytest.raises(ValidationError):
        parse_date("")


def test_leaf_map_from_list_payload() -> None:
    data = [
        {"leafNumber": 12, "value": 0.1},
        {"leaf_number": 2, "leafValue": -0.2},
        {"leafNumber": 3},
    ]
    leaves = normalize_leaf_map(data)
    assert leaves == {"12": 0.1, "2": -0.2}
    assert [k for k, _ in sorted_leaves(leaves)] == ["2", "12"]


def test_leaf_map_from_dict_payload() -> None:
    assert normalize_leaf_map({1: 0.3}) == {"1": 0.3}
    assert normalize_leaf_map([]) is None


def test_beam_record_legacy_aliases() -> None:
    r = BeamCheckRecord.from_dict({
        "id": "b1",
        "machineId": "M1",
        "typeID": "v-6x",
        "type": "6x",
        "relOutput": "0.42",
        "date": "2024-03-05",
    })
    assert r.beam_variant_id == "v-6x"
    assert r.beam_variant_name == "6x"
    assert r.relative_output == 0.42
    assert r.relative_uniformity is None
    assert r.days == ("2024-03-05",)


def test_geo_record_from_service_payload() -> None:
    payload = to_camel_case({
        "id": "g1",
        "machine_id": "M1",
        "date": "2024-03-05",
        "iso_center_size": 0.3,
        "rotation_induced_couch_shift_full_range": 0.25,
        "mlc_leaves_a": [{"leaf_number": 1, "value": 0.05}],
        "metric_statuses": {"IsoCenterSize": "fail"},
    })
    g = GeoCheckRecord.from_dict(payload)
    assert g.iso_center_size == 0.3
    assert g.rotation_induced_couch_shift == 0.25
    assert g.mlc_leaves_a == {"1": 0.05}
    assert g.status_for("IsoCenterSize") == "FAIL"
    assert g.status_for("iso_center_size") == "FAIL"
    assert g.status_for("CouchLat") == "PASS"


def test_threshold_dict_uses_camel_case() -> None:
    t = Threshold(machine_id="M1", check_type="beam", metric_type="Center Shift", value=0.5, beam_variant_id="v1")
    d = t.to_dict()
    assert d == {
        "machineId": "M1",
        "checkType": "beam",
        "metricType": "Center Shift",
        "value": 0.5,
        "beamVariantId": "v1",
    }
    assert Threshold.from_dict(d) == t


def test_threshold_rejects_non_numeric_value() -> None:
    with pytest.raises(ValidationError):
        Threshold.from_dict({"machineId": "M1", "checkType": "beam", "metricType": "x", "value": "abc"})


def test_baseline_settings_validation() -> None:
    s = BaselineSettings.from_dict({"mode": "Manual", "manualValues": {"outputChange": "1.5"}})
    assert s.mode == "manual"
    assert s.manual_values.output_change == 1.5
    assert s.manual_values.center_shift == 0.0
    with pytest.raises(ValidationError):
        BaselineSettings.from_dict({"mode": "weekly"})
