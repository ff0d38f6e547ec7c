"""Tests for parsing and resolving Fleet documents."""

from pathlib import Path

import pytest
import yaml

from krm_functions.exceptions import (
    DuplicateName,
    FleetException,
    MalformedInput,
    MissingReference,
    ReservedKeyConflict,
    TemplateEvaluationError,
)
from krm_functions.fleet import FleetSpec, parse_fleet_spec, resolve_fleet

TESTDATA_DIR = Path("tests/testdata/fleet")

MINIMAL_FLEET = """
apiVersion: fn.kpt.dev/v1alpha1
kind: Fleet
metadata:
  name: minimal
spec:
  upstreams:
  - name: example
    type: git
    git:
      repo: https://example.com/repo.git
"""


def fleet_with_packages(packages: str, defaults: str = "") -> str:
    """Return a Fleet document with the indented packages and defaults blocks."""
    return MINIMAL_FLEET + defaults + "  packages:\n" + packages


def test_parse_example() -> None:
    """Test parsing a valid Fleet document."""
    fleet = parse_fleet_spec((TESTDATA_DIR / "example.yaml").read_text())
    assert fleet.name == "example-fleet"
    assert [u.name for u in fleet.upstreams] == ["example"]
    assert fleet.upstreams[0].location == "https://github.com/krm-functions/catalog.git"
    assert fleet.defaults
    assert fleet.defaults.ref == "main"
    assert [p.name for p in fleet.packages] == ["foo", "bar", "zap"]
    assert [p.name for p in fleet.packages[2].packages] == ["zap1", "zap2"]
    assert fleet.packages[2].stub
    assert not fleet.packages[2].packages[1].metadata.inherit_from_parent


def test_metadata_propagation() -> None:
    """Test the merged metadata of every package in the example Fleet."""
    fleet = parse_fleet_spec((TESTDATA_DIR / "example.yaml").read_text())
    foo, bar, zap = fleet.packages
    assert foo.merged_metadata == {"name": "foo", "k1": "v1", "k2": "v2"}
    assert bar.merged_metadata == {"name": "bar", "k1": "v1", "k2": "v2", "k3": "v3"}
    assert bar.packages[0].merged_metadata == {
        "name": "bar1",
        "k1": "v1",
        "k2": "v2",
        "k3": "v3",
        "k3-2": "v3-2",
        "k4-2": "v4-2",
    }
    assert zap.packages[0].merged_metadata == {
        "name": "zap1",
        "k1": "v1",
        "k2": "v2",
        "k4": "v4",
        "k5": "v5",
        "k5-2": "v5-2",
        "k6-2": "v6-2",
    }
    assert zap.packages[1].merged_metadata == {
        "name": "zap2",
        "k7": "v7",
        "k8": "zap2",
    }


def test_effective_refs() -> None:
    """Test refs are inherited from the defaults."""
    fleet = parse_fleet_spec((TESTDATA_DIR / "example.yaml").read_text())
    assert fleet.packages[0].effective_ref == "main"
    assert fleet.packages[2].packages[1].effective_ref == "main"


@pytest.mark.parametrize(
    ("filename", "exc"),
    [
        ("missing-ref.yaml", MissingReference),
        ("defaults-name.yaml", ReservedKeyConflict),
    ],
)
def test_parse_failures(filename: str, exc: type[FleetException]) -> None:
    """Test invalid Fleet documents."""
    with pytest.raises(exc):
        parse_fleet_spec((TESTDATA_DIR / filename).read_text())


@pytest.mark.parametrize(
    "content",
    [
        "xxx",
        "",
        "[1, 2]",
        "apiVersion: fn.kpt.dev/v1alpha1\nkind: Fleet\nspec: {}\n",
        "apiVersion: v1\nkind: Fleet\nmetadata:\n  name: x\n",
        "apiVersion: fn.kpt.dev/v1alpha1\nkind: Other\nmetadata:\n  name: x\n",
        "apiVersion: fn.kpt.dev/v1alpha1\nkind: Fleet\nmetadata: {name: x\n",
    ],
    ids=[
        "scalar",
        "empty",
        "list",
        "no-name",
        "api-version",
        "kind",
        "invalid-yaml",
    ],
)
def test_malformed_input(content: str) -> None:
    """Test documents that are not Fleets."""
    with pytest.raises(MalformedInput):
        parse_fleet_spec(content)


def test_missing_ref_names_package_path() -> None:
    """Test the error identifies the nested package without a ref."""
    content = fleet_with_packages(
        """\
  - name: group
    stub: true
    packages:
    - name: leaf
      sourcePath: leaf
"""
    )
    with pytest.raises(MissingReference, match="package group/leaf"):
        parse_fleet_spec(content)


def test_stub_without_ref() -> None:
    """Test a stub package does not need a ref."""
    content = fleet_with_packages(
        """\
  - name: group
    stub: true
"""
    )
    fleet = parse_fleet_spec(content)
    assert fleet.packages[0].effective_ref is None
    assert fleet.packages[0].merged_metadata == {"name": "group"}


def test_ref_from_ancestor() -> None:
    """Test a ref declared on a stub is inherited by its descendants."""
    content = fleet_with_packages(
        """\
  - name: group
    stub: true
    ref: v1.0.0
    packages:
    - name: leaf
      sourcePath: leaf
    - name: pinned
      sourcePath: pinned
      ref: v2.0.0
"""
    )
    fleet = parse_fleet_spec(content)
    leaf, pinned = fleet.packages[0].packages
    assert leaf.effective_ref == "v1.0.0"
    assert pinned.effective_ref == "v2.0.0"


def test_content_package_requires_source_path() -> None:
    """Test a package that is not a stub must have content."""
    content = fleet_with_packages(
        """\
  - name: empty
    ref: main
"""
    )
    with pytest.raises(MalformedInput, match="sourcePath"):
        parse_fleet_spec(content)


def test_duplicate_sibling_names() -> None:
    """Test sibling packages must have unique names."""
    content = fleet_with_packages(
        """\
  - name: group
    stub: true
    packages:
    - name: leaf
      sourcePath: a
      ref: main
    - name: leaf
      sourcePath: b
      ref: main
"""
    )
    with pytest.raises(DuplicateName, match="leaf"):
        parse_fleet_spec(content)


def test_same_name_in_different_subtrees() -> None:
    """Test names only need to be unique among siblings."""
    content = fleet_with_packages(
        """\
  - name: a
    stub: true
    packages:
    - name: leaf
      sourcePath: a
  - name: b
    stub: true
    packages:
    - name: leaf
      sourcePath: b
""",
        defaults="  defaults:\n    ref: main\n",
    )
    fleet = parse_fleet_spec(content)
    assert [p.path for p in resolve_fleet(fleet)] == ["a/leaf", "b/leaf"]


def test_duplicate_upstreams() -> None:
    """Test upstream names must be unique."""
    content = MINIMAL_FLEET + (
        """\
  - name: example
    git:
      repo: https://example.com/other.git
"""
    )
    with pytest.raises(DuplicateName, match="upstream"):
        parse_fleet_spec(content)


def test_unknown_upstream() -> None:
    """Test a package referencing an upstream that is not declared."""
    content = fleet_with_packages(
        """\
  - name: leaf
    sourcePath: leaf
    ref: main
    upstream: missing
"""
    )
    with pytest.raises(MalformedInput, match="unknown upstream 'missing'"):
        parse_fleet_spec(content)


def test_unsupported_upstream_type() -> None:
    """Test only git upstreams are supported."""
    content = MINIMAL_FLEET.replace("type: git", "type: oci")
    with pytest.raises(MalformedInput, match="unsupported type"):
        parse_fleet_spec(content)


def test_ambiguous_upstream() -> None:
    """Test a package must select an upstream when several are declared."""
    content = (TESTDATA_DIR / "multi-upstream.yaml").read_text()
    content = content.replace("    upstream: catalog\n", "")
    with pytest.raises(MalformedInput, match="no upstream"):
        parse_fleet_spec(content)


def test_unknown_template_field() -> None:
    """Test a template referencing a field that does not exist."""
    content = fleet_with_packages(
        """\
  - name: leaf
    sourcePath: leaf
    ref: main
    metadata:
      templated:
        owner: "{{.owner}}"
""",
    )
    with pytest.raises(TemplateEvaluationError, match="package leaf"):
        parse_fleet_spec(content)


def test_defaults_templated_name() -> None:
    """Test defaults cannot define the name key with a template either."""
    content = fleet_with_packages(
        "  - name: leaf\n    sourcePath: leaf\n    ref: main\n",
        defaults=(
            "  defaults:\n"
            "    metadata:\n"
            "      templated:\n"
            "        name: fixed\n"
        ),
    )
    with pytest.raises(ReservedKeyConflict):
        parse_fleet_spec(content)


def test_name_cannot_be_overridden() -> None:
    """Test user supplied name values are replaced by the package name."""
    content = fleet_with_packages(
        """\
  - name: leaf
    sourcePath: leaf
    ref: main
    metadata:
      spec:
        name: literal
      templated:
        name: "templated-{{.name}}"
"""
    )
    fleet = parse_fleet_spec(content)
    assert fleet.packages[0].merged_metadata == {"name": "leaf"}


def test_scalar_metadata_values() -> None:
    """Test non-string scalar metadata values are converted to strings."""
    content = fleet_with_packages(
        """\
  - name: leaf
    sourcePath: leaf
    ref: main
    metadata:
      spec:
        replicas: 3
        enabled: true
"""
    )
    fleet = parse_fleet_spec(content)
    assert fleet.packages[0].merged_metadata == {
        "name": "leaf",
        "replicas": "3",
        "enabled": "true",
    }


def test_nested_metadata_value() -> None:
    """Test metadata values must be scalars."""
    content = fleet_with_packages(
        """\
  - name: leaf
    sourcePath: leaf
    ref: main
    metadata:
      spec:
        nested:
          a: b
"""
    )
    with pytest.raises(MalformedInput, match="metadata.spec.nested"):
        parse_fleet_spec(content)


def test_parse_doc_is_unresolved() -> None:
    """Test the structural parse does not resolve packages."""
    content = (TESTDATA_DIR / "missing-ref.yaml").read_text()
    fleet = FleetSpec.parse_doc(yaml.safe_load(content))
    assert fleet.packages[0].merged_metadata is None
    with pytest.raises(MissingReference):
        resolve_fleet(fleet)
