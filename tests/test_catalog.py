from mpcqa.catalog import (
    GEO_GROUPS,
    MetricFamily,
    MetricId,
    default_domain,
    detect_key_collisions,
    format_value,
    metric_color,
    natural_sort_key,
    sanitize_key,
    split_qualified_metric,
    to_finite_float,
)


def test_format_value_rules() -> None:
    assert format_value("Output Change (6x)", 1.2345) == "1.23%"
    assert format_value("Uniformity Change (6x)", 0.5) == "0.50%"
    assert format_value("Center Shift", 0.1) == "0.100"
    assert format_value("Gantry Absolute", 0.12345) == "0.123"
    assert format_value("anything", "") == "-"
    assert format_value("anything", None) == "-"
    assert format_value("anything", "n/a") == "n/a"


def test_default_domain_by_name() -> None:
    assert default_domain("Output Change (6x)") == (-6.0, 6.0)
    assert default_domain("uniformity change") == (-5.0, 5.0)
    assert default_domain("Center Shift (10x)") == (-4.0, 4.0)
    assert default_domain("Jaw X1") == (-6.0, 6.0)


def test_sanitize_key_replaces_non_alphanumerics() -> None:
    assert sanitize_key("Relative Output (6x)") == "Relative_Output__6x_"
    assert sanitize_key("MLC A Leaf 12") == "MLC_A_Leaf_12"


def test_key_collisions_are_reported() -> None:
    collisions = detect_key_collisions(["Jaw X1", "Jaw-X1", "Jaw Y1"])
    assert collisions == {"Jaw_X1": ["Jaw X1", "Jaw-X1"]}


def test_natural_sort_orders_numeric_variants() -> None:
    names = ["beam-10x", "beam-6x", "beam-2.5x", "beam-15x"]
    assert sorted(names, key=natural_sort_key) == ["beam-2.5x", "beam-6x", "beam-10x", "beam-15x"]


def test_metric_id_round_trip_through_label() -> None:
    m = MetricId.from_label("Center Shift (6xFFF)")
    assert m.family is MetricFamily.BEAM
    assert (m.base, m.variant) == ("Center Shift", "6xFFF")
    assert m.label == "Center Shift (6xFFF)"
    assert m.check_type == "beam"

    g = MetricId.from_label("Couch Lat")
    assert g.family is MetricFamily.GEO
    assert g.variant is None
    assert g.key == "Couch_Lat"


def test_split_unqualified_metric() -> None:
    assert split_qualified_metric("Iso Center Size") == ("Iso Center Size", None)


def test_to_finite_float_rejects_bools_and_nan() -> None:
    assert to_finite_float("1.5") == 1.5
    assert to_finite_float(True) is None
    assert to_finite_float(float("nan")) is None
    assert to_finite_float("abc") is None


def test_geo_layout_is_fixed() -> None:
    assert len(GEO_GROUPS) == 12
    assert GEO_GROUPS[0].name == "IsoCenter Group"
    assert metric_color(0) == metric_color(8)
