import pytest

from core.errors import ValidationError
from media.transform_spec import PRESETS, TransformSpec, parse_spec, resolve


def test_negative_width_is_rejected():
    with pytest.raises(ValidationError) as ei:
        resolve(TransformSpec(width=-1))
    assert any("width" in v for v in ei.value.violations)


def test_all_violations_are_reported_together():
    with pytest.raises(ValidationError) as ei:
        parse_spec({"width": "-5", "quality": "150", "fit": "diagonal", "preset": "poster"})
    v = ei.value.violations
    assert len(v) == 4
    assert any("width" in x for x in v)
    assert any("quality" in x for x in v)
    assert any("diagonal" in x for x in v)
    assert any("poster" in x for x in v)


def test_dimension_upper_bound():
    with pytest.raises(ValidationError):
        resolve(TransformSpec(width=16385))
    assert resolve(TransformSpec(width=16384)).width == 16384


def test_non_integer_dimension_is_a_violation():
    with pytest.raises(ValidationError) as ei:
        parse_spec({"width": "abc"})
    assert "width must be an integer" in ei.value.violations[0]


def test_unknown_crop_and_format_rejected():
    with pytest.raises(ValidationError) as ei:
        parse_spec({"crop": "middle", "format": "tiff"})
    assert len(ei.value.violations) == 2


def test_jpg_alias_and_case_normalization():
    spec = parse_spec({"format": "JPG", "fit": "Cover", "width": "10"})
    assert spec.format == "jpeg"
    assert spec.fit == "cover"


def test_preset_expands_to_table_values():
    spec = parse_spec({"preset": "thumbnail"})
    p = PRESETS["thumbnail"]
    assert (spec.width, spec.height, spec.fit, spec.quality) == (p.width, p.height, p.fit, p.quality)


def test_explicit_fields_win_over_preset():
    spec = parse_spec({"preset": "banner", "width": "800", "quality": "70"})
    assert spec.width == 800
    assert spec.height == 400
    assert spec.fit == "cover"
    assert spec.quality == 70


def test_fresh_flag_parsing():
    assert parse_spec({"fresh": "true"}).fresh is True
    assert parse_spec({"fresh": "1"}).fresh is True
    assert parse_spec({"fresh": "no"}).fresh is False
    assert parse_spec({}).fresh is False


def test_fit_alone_is_not_a_directive():
    assert not parse_spec({"fit": "cover"}).has_directive
    assert parse_spec({"crop": "top"}).has_directive
    assert parse_spec({"format": "png"}).has_directive
