"""Tests for graph-local identities and templates."""

import pytest

from relgraph import DanglingReferenceError
from relgraph.graph.identity import PENDING, IdentityMap, template_refs


@pytest.fixture
def identities() -> IdentityMap[str]:
    identity_map: IdentityMap[str] = IdentityMap()
    identity_map.declare("jen", "node-jen")
    identity_map.declare("brad", "node-brad")
    return identity_map


class TestIdentityMap:
    """Test declaring and resolving graph ids."""

    def test_declare_duplicate(self, identities: IdentityMap[str]) -> None:
        """Test that an id can only be declared once."""
        with pytest.raises(ValueError, match="Duplicate graph id 'jen'"):
            identities.declare("jen", "other")

    def test_node(self, identities: IdentityMap[str]) -> None:
        """Test looking up declared nodes."""
        assert identities.node("jen") == "node-jen"
        assert "brad" in identities
        assert len(identities) == 2
        with pytest.raises(DanglingReferenceError):
            identities.node("nobody")

    def test_pending_until_assigned(self, identities: IdentityMap[str]) -> None:
        """Test the pending state before a row is written."""
        assert identities.resolve("jen") is PENDING
        assert not PENDING
        with pytest.raises(DanglingReferenceError, match="not been written"):
            identities.require("jen")

        identities.assign("jen", {"id": 7, "name": "Jennifer"})
        assert identities.resolve("jen") == {"id": 7, "name": "Jennifer"}
        assert identities.require("jen")["id"] == 7

    def test_assign_undeclared(self, identities: IdentityMap[str]) -> None:
        """Test that only declared ids can be assigned."""
        with pytest.raises(DanglingReferenceError):
            identities.assign("nobody", {"id": 1})


class TestTemplates:
    """Test #ref{id.prop} substitution."""

    def test_template_refs(self) -> None:
        """Test extracting referenced ids and properties."""
        assert template_refs("#ref{jen.id}-#ref{brad.name}") == [("jen", "id"), ("brad", "name")]
        assert template_refs("plain") == []
        assert template_refs(42) == []

    def test_whole_value_keeps_type(self, identities: IdentityMap[str]) -> None:
        """Test that a whole-value template yields the property value itself."""
        identities.assign("jen", {"id": 7})
        assert identities.resolve_template("#ref{jen.id}") == 7

    def test_embedded(self, identities: IdentityMap[str]) -> None:
        """Test substitution inside a longer string."""
        identities.assign("jen", {"id": 7, "name": "Jennifer"})
        identities.assign("brad", {"id": 8, "name": "Brad"})
        value = identities.resolve_template("#ref{jen.name} and #ref{brad.name} (#ref{jen.id})")
        assert value == "Jennifer and Brad (7)"

    def test_passthrough(self, identities: IdentityMap[str]) -> None:
        """Test that other values are returned unchanged."""
        assert identities.resolve_template(5) == 5
        assert identities.resolve_template("no templates") == "no templates"
        assert identities.resolve_template(None) is None

    def test_missing_property(self, identities: IdentityMap[str]) -> None:
        """Test that the referenced row must have the property."""
        identities.assign("jen", {"id": 7})
        with pytest.raises(DanglingReferenceError, match="no property 'nickname'"):
            identities.resolve_template("#ref{jen.nickname}")

    def test_unwritten_reference(self, identities: IdentityMap[str]) -> None:
        """Test that the referenced node must be written first."""
        with pytest.raises(DanglingReferenceError):
            identities.resolve_template("#ref{brad.id}")
