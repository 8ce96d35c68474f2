import pytest

from alertcompliance.services.labels import Labels


def test_sorted_string_form():
    lbls = Labels.from_strings("b", "2", "a", "1")

    assert str(lbls) == '{a="1", b="2"}'
    assert list(lbls) == [("a", "1"), ("b", "2")]


def test_string_form_escapes_values():
    assert str(Labels.from_map({"a": 'say "hi"'})) == '{a="say \\"hi\\""}'


def test_string_form_keeps_control_characters_distinct():
    newline = Labels.from_map({"a": "x\ny"})
    tab = Labels.from_map({"a": "x\ty"})

    assert str(newline) == '{a="x\\ny"}'
    assert str(newline) != str(tab)
    assert str(Labels.from_map({"a": "é"})) == '{a="é"}'


def test_equality_and_hash():
    a = Labels.from_map({"x": "1", "y": "2"})
    b = Labels.from_strings("y", "2", "x", "1")

    assert a == b
    assert hash(a) == hash(b)
    assert len({a, b}) == 1


def test_ordering_shorter_prefix_first():
    short = Labels.from_strings("a", "1")
    longer = Labels.from_strings("a", "1", "b", "2")

    assert short < longer
    assert sorted([longer, short]) == [short, longer]


def test_merge_overrides_and_without():
    lbls = Labels.from_strings("alertname", "X", "foo", "bar")

    merged = lbls.merge({"foo": "baz", "__name__": "ALERTS"})
    assert merged.get("foo") == "baz"
    assert merged.get("__name__") == "ALERTS"
    assert merged.without("__name__") == Labels.from_strings("alertname", "X", "foo", "baz")
    assert lbls.get("missing") == ""


def test_from_strings_needs_pairs():
    with pytest.raises(ValueError):
        Labels.from_strings("a")
