"""Tests for tri-state attribute documents."""

from __future__ import annotations

import pytest

from streamplane.attributes import (
    ABSENT,
    UNKNOWN,
    Document,
    Field,
    FieldKind,
    Shape,
    carry_forward,
    collapse,
    is_known,
    is_zero,
    merge_intent,
)
from streamplane.differ import FieldPath

MTLS = (
    Field("enabled", FieldKind.BOOL),
    Field("ca_certificates_pem", FieldKind.LIST),
)

SHAPE = Shape(
    "sample",
    (
        Field("id", FieldKind.STRING, identifier=True, computed=True),
        Field("name", FieldKind.STRING),
        Field("count", FieldKind.INT, computed=True),
        Field("flag", FieldKind.BOOL),
        Field("tags", FieldKind.MAP, empty_as_absent=True),
        Field("labels", FieldKind.MAP, keyed=True, empty_as_absent=True),
        Field("endpoint", FieldKind.OBJECT, fields=(Field("mtls", FieldKind.OBJECT, fields=MTLS),)),
    ),
)


class TestSentinels:
    """Tests for ABSENT / UNKNOWN handling."""

    def test_known_values(self) -> None:
        """Zero values are known values."""
        assert is_known("")
        assert is_known(False)
        assert is_known(0)
        assert not is_known(ABSENT)
        assert not is_known(UNKNOWN)

    def test_zero_values(self) -> None:
        """ABSENT and empty leaves count as zero, UNKNOWN does not."""
        assert is_zero(ABSENT)
        assert is_zero("")
        assert is_zero(())
        assert not is_zero("x")
        assert not is_zero(UNKNOWN)


class TestDocument:
    """Tests for Document construction and access."""

    def test_unset_fields_are_absent(self) -> None:
        """Fields not given are ABSENT."""
        doc = SHAPE.document(name="a")
        assert doc["name"] == "a"
        assert doc["count"] is ABSENT
        assert doc.identifier is ABSENT

    def test_unknown_field_rejected(self) -> None:
        """Undeclared fields raise ValueError."""
        with pytest.raises(ValueError, match="no fields"):
            SHAPE.document(bogus=1)

    def test_from_mapping_converts_plain_data(self) -> None:
        """None becomes ABSENT, nested mappings become documents."""
        doc = SHAPE.from_mapping(
            {"name": None, "flag": False, "endpoint": {"mtls": {"enabled": True, "ca_certificates_pem": ["x"]}}}
        )
        assert doc["name"] is ABSENT
        assert doc["flag"] is False
        assert isinstance(doc["endpoint"], Document)
        assert doc.get_path(FieldPath.of("endpoint", "mtls", "ca_certificates_pem")) == ("x",)

    def test_from_mapping_reads_unknown_marker(self) -> None:
        """The canonical UNKNOWN marker decodes to UNKNOWN."""
        doc = SHAPE.from_mapping({"count": {"$unknown": True}})
        assert doc["count"] is UNKNOWN

    def test_with_values_copies(self) -> None:
        """with_values leaves the original untouched."""
        doc = SHAPE.document(name="a")
        changed = doc.with_values(name="b")
        assert doc["name"] == "a"
        assert changed["name"] == "b"

    def test_set_path_creates_intermediate_objects(self) -> None:
        """Writing a nested path creates the parents."""
        doc = SHAPE.document().set_path(FieldPath.of("endpoint", "mtls", "enabled"), True)
        assert doc.get_path(FieldPath.of("endpoint", "mtls", "enabled")) is True

    def test_set_path_absent_removes_map_key(self) -> None:
        """ABSENT written to a map key deletes it."""
        doc = SHAPE.document(labels={"a": "1", "b": "2"})
        doc = doc.set_path(FieldPath.of("labels", "a"), ABSENT)
        assert doc["labels"] == {"b": "2"}

    def test_assert_observed_rejects_unknown(self) -> None:
        """UNKNOWN must never appear in an observed document."""
        with pytest.raises(ValueError, match="unknown"):
            SHAPE.document(count=UNKNOWN).assert_observed()

    def test_fingerprint_is_stable(self) -> None:
        """Equal documents hash identically regardless of construction order."""
        first = SHAPE.document(name="a", tags={"x": "1", "y": "2"})
        second = SHAPE.document(tags={"y": "2", "x": "1"}, name="a")
        assert first.fingerprint() == second.fingerprint()
        assert first.fingerprint() != first.with_values(name="b").fingerprint()

    def test_to_dict_omits_unset(self) -> None:
        """to_dict drops ABSENT and UNKNOWN fields."""
        doc = SHAPE.document(name="a", count=UNKNOWN)
        assert doc.to_dict() == {"name": "a"}

    def test_canonical_round_trip_keeps_unknown(self) -> None:
        """Canonical form preserves UNKNOWN through from_mapping."""
        doc = SHAPE.document(name="a", count=UNKNOWN)
        assert SHAPE.from_mapping(doc.canonical()) == doc


class TestCollapse:
    """Tests for folding empty substructures to ABSENT."""

    def test_empty_object_collapses(self) -> None:
        """An object with only zero leaves becomes ABSENT."""
        doc = SHAPE.from_mapping({"endpoint": {"mtls": {"enabled": False, "ca_certificates_pem": []}}})
        assert collapse(doc)["endpoint"] is ABSENT

    def test_configured_object_survives(self) -> None:
        """A non-zero leaf keeps the whole path alive."""
        doc = SHAPE.from_mapping({"endpoint": {"mtls": {"enabled": True}}})
        assert collapse(doc).get_path(FieldPath.of("endpoint", "mtls", "enabled")) is True

    def test_unknown_leaf_keeps_object(self) -> None:
        """UNKNOWN is not zero."""
        doc = SHAPE.document(endpoint=SHAPE.field("endpoint").shape.document(mtls=UNKNOWN))
        assert collapse(doc)["endpoint"] is not ABSENT

    def test_empty_map_collapses_when_declared(self) -> None:
        """empty_as_absent maps fold to ABSENT."""
        assert collapse(SHAPE.document(tags={}))["tags"] is ABSENT

    def test_plan_and_apply_agree(self) -> None:
        """Unset configuration and an empty API response collapse to the same document."""
        from_configuration = collapse(SHAPE.from_mapping({"name": "a"}))
        from_api = collapse(
            SHAPE.from_mapping({"name": "a", "tags": {}, "labels": {}, "endpoint": {"mtls": None}})
        )
        assert from_configuration == from_api


class TestContingentFields:
    """Tests for merge_intent and carry_forward."""

    def test_merge_intent_fills_unset(self) -> None:
        """Unset desired fields take the tracked value."""
        desired = SHAPE.document(name="a")
        tracked = SHAPE.document(name="a", flag=True)
        assert merge_intent(desired, tracked, ("flag",))["flag"] is True

    def test_merge_intent_keeps_explicit_value(self) -> None:
        """An explicitly configured value wins, even a zero value."""
        desired = SHAPE.document(flag=False)
        tracked = SHAPE.document(flag=True)
        assert merge_intent(desired, tracked, ("flag",))["flag"] is False

    def test_carry_forward_prefers_tracked(self) -> None:
        """The caller's last-known intent overrides the observed value."""
        observed = SHAPE.document(flag=False)
        tracked = SHAPE.document(flag=True)
        assert carry_forward(observed, tracked, ("flag",))["flag"] is True

    def test_carry_forward_without_tracked(self) -> None:
        """Nothing to carry without tracked state."""
        observed = SHAPE.document(flag=False)
        assert carry_forward(observed, None, ("flag",)) is observed
