"""Tests for the source-packages function."""

import json
from pathlib import Path
from typing import Any

import git
import pytest
import yaml

from krm_functions import source_packages
from krm_functions.config import SourcePackagesConfig
from krm_functions.exceptions import FetchException, InputException
from krm_functions.fetch import GitFetcher
from krm_functions.fleet import ResolvedPackage, Upstream
from krm_functions.fleet.model import GitUpstream
from krm_functions.resource_list import ResourceList

AUTHOR = git.Actor("Test", "test@example.com")

DEPLOYMENT = """
apiVersion: apps/v1
kind: Deployment
metadata:
  name: app
---
apiVersion: v1
kind: Service
metadata:
  name: app
"""


@pytest.fixture(name="upstream_repo")
def upstream_repo_fixture(tmp_path: Path) -> Path:
    """Fixture for a git repository with two package versions."""
    path = tmp_path / "upstream"
    path.mkdir()
    repo = git.Repo.init(str(path))
    pkg1 = path / "pkgs" / "pkg1"
    pkg1.mkdir(parents=True)
    (pkg1 / "deployment.yaml").write_text(DEPLOYMENT)
    (pkg1 / "Kptfile").write_text(
        "apiVersion: kpt.dev/v1\nkind: Kptfile\nmetadata:\n  name: pkg1\n"
    )
    (pkg1 / "README.md").write_text("Not an object\n")
    (pkg1 / ".hidden").mkdir()
    (pkg1 / ".hidden" / "ignored.yaml").write_text("kind: Ignored\n")
    repo.index.add(
        [
            "pkgs/pkg1/deployment.yaml",
            "pkgs/pkg1/Kptfile",
            "pkgs/pkg1/README.md",
            "pkgs/pkg1/.hidden/ignored.yaml",
        ]
    )
    repo.index.commit("Initial package", author=AUTHOR, committer=AUTHOR)
    repo.git.branch("-M", "main")
    repo.create_tag("v1.0.0")

    pkg2 = path / "pkgs" / "pkg2"
    pkg2.mkdir()
    (pkg2 / "configmap.yaml").write_text(
        "apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: pkg2\n"
    )
    repo.index.add(["pkgs/pkg2/configmap.yaml"])
    repo.index.commit("Add pkg2", author=AUTHOR, committer=AUTHOR)
    return path


def fleet_input(repo: Path) -> str:
    """Return a ResourceList with a Fleet sourcing from the repository."""
    return yaml.dump(
        {
            "apiVersion": "config.kubernetes.io/v1",
            "kind": "ResourceList",
            "functionConfig": {
                "apiVersion": "fn.kpt.dev/v1alpha1",
                "kind": "Fleet",
                "metadata": {"name": "local"},
                "spec": {
                    "upstreams": [
                        {"name": "local", "type": "git", "git": {"repo": str(repo)}}
                    ],
                    "defaults": {"ref": "main", "metadata": {"spec": {"team": "a"}}},
                    "packages": [
                        {
                            "name": "group",
                            "stub": True,
                            "packages": [
                                {
                                    "name": "app",
                                    "sourcePath": "pkgs/pkg1",
                                    "ref": "v1.0.0",
                                },
                                {"name": "config", "sourcePath": "pkgs/pkg2"},
                            ],
                        }
                    ],
                },
            },
            "items": [],
        }
    )


def paths(items: list[dict[str, Any]]) -> list[str]:
    return [
        item["metadata"]["annotations"]["internal.config.kubernetes.io/path"]
        for item in items
    ]


def test_find_fleet() -> None:
    """Test the Fleet is found in the items when not the function config."""
    fleet = {"apiVersion": "fn.kpt.dev/v1alpha1", "kind": "Fleet"}
    resource_list = ResourceList(
        items=[{"apiVersion": "v1", "kind": "ConfigMap"}, fleet],
        function_config={"apiVersion": "v1", "kind": "ConfigMap"},
    )
    assert source_packages.find_fleet(resource_list) is fleet


def test_find_fleet_missing() -> None:
    """Test an input without a Fleet."""
    with pytest.raises(InputException, match="No Fleet found"):
        source_packages.find_fleet(ResourceList())


async def test_run_without_fetcher(upstream_repo: Path) -> None:
    """Test the resolved packages are reported without fetching."""
    resource_list = ResourceList.parse_yaml(fleet_input(upstream_repo))
    packages = await source_packages.run(resource_list)
    assert [p.path for p in packages] == ["group/app", "group/config"]
    assert resource_list.items == []
    assert [json.loads(r.message)["ref"] for r in resource_list.results] == [
        "v1.0.0",
        "main",
    ]


async def test_run_with_fetcher(upstream_repo: Path, tmp_path: Path) -> None:
    """Test package content is fetched at each package ref."""
    resource_list = ResourceList.parse_yaml(fleet_input(upstream_repo))
    fetcher = GitFetcher(tmp_path / "cache")
    config = SourcePackagesConfig(annotate_metadata=True)
    await source_packages.run(resource_list, fetcher, config)

    assert paths(resource_list.items) == [
        "group/app/Kptfile",
        "group/app/deployment.yaml",
        "group/app/deployment.yaml",
        "group/config/configmap.yaml",
    ]
    deployment = resource_list.items[1]
    assert deployment["kind"] == "Deployment"
    annotations = deployment["metadata"]["annotations"]
    assert annotations["internal.config.kubernetes.io/index"] == "0"
    assert annotations["fleet.fn.kpt.dev/name"] == "app"
    assert annotations["fleet.fn.kpt.dev/team"] == "a"
    assert resource_list.items[2]["metadata"]["annotations"][
        "internal.config.kubernetes.io/index"
    ] == "1"


async def test_run_fetch_disabled(upstream_repo: Path, tmp_path: Path) -> None:
    """Test the fetch can be disabled by the config."""
    resource_list = ResourceList.parse_yaml(fleet_input(upstream_repo))
    fetcher = GitFetcher(tmp_path / "cache")
    await source_packages.run(
        resource_list, fetcher, SourcePackagesConfig(fetch=False)
    )
    assert resource_list.items == []
    assert list((tmp_path / "cache").iterdir()) == []


async def test_fetch_ref(upstream_repo: Path, tmp_path: Path) -> None:
    """Test each ref is checked out into its own directory."""
    fetcher = GitFetcher(tmp_path / "cache")
    upstream = Upstream(name="local", git=GitUpstream(repo=str(upstream_repo)))
    tagged = await fetcher.fetch(upstream, "v1.0.0")
    latest = await fetcher.fetch(upstream, "main")
    assert tagged != latest
    assert (tagged / "pkgs" / "pkg1").is_dir()
    assert not (tagged / "pkgs" / "pkg2").exists()
    assert (latest / "pkgs" / "pkg2").is_dir()
    assert await fetcher.fetch(upstream, "main") == latest


async def test_fetch_existing_clone(upstream_repo: Path, tmp_path: Path) -> None:
    """Test a clone left by a previous fetcher is updated."""
    upstream = Upstream(name="local", git=GitUpstream(repo=str(upstream_repo)))
    await GitFetcher(tmp_path / "cache").fetch(upstream, "main")

    repo = git.Repo(str(upstream_repo))
    (upstream_repo / "pkgs" / "pkg3").mkdir()
    (upstream_repo / "pkgs" / "pkg3" / "secret.yaml").write_text("kind: Secret\n")
    repo.index.add(["pkgs/pkg3/secret.yaml"])
    repo.index.commit("Add pkg3", author=AUTHOR, committer=AUTHOR)

    path = await GitFetcher(tmp_path / "cache").fetch(upstream, "main")
    assert (path / "pkgs" / "pkg3" / "secret.yaml").exists()


async def test_fetch_unknown_ref(upstream_repo: Path, tmp_path: Path) -> None:
    """Test fetching a ref that does not exist."""
    fetcher = GitFetcher(tmp_path / "cache")
    upstream = Upstream(name="local", git=GitUpstream(repo=str(upstream_repo)))
    with pytest.raises(FetchException, match="Unable to fetch upstream local"):
        await fetcher.fetch(upstream, "does-not-exist")


async def test_read_package_outside_upstream(tmp_path: Path) -> None:
    """Test a sourcePath may not escape the upstream directory."""
    package = ResolvedPackage(
        name="escape",
        path="escape",
        ref="main",
        source_path="../outside",
        upstream=Upstream(name="local", git=GitUpstream(repo="unused")),
    )
    (tmp_path / "outside").mkdir()
    (tmp_path / "upstream").mkdir()
    with pytest.raises(InputException, match="outside of the upstream"):
        await source_packages.read_package(tmp_path / "upstream", package)


async def test_read_package_skips_links(tmp_path: Path) -> None:
    """Test files linking outside of the upstream are not read."""
    (tmp_path / "outside.yaml").write_text(
        "apiVersion: v1\nkind: Secret\nmetadata:\n  name: host-secret\n"
    )
    package_dir = tmp_path / "upstream" / "pkgs" / "pkg1"
    package_dir.mkdir(parents=True)
    (package_dir / "leak.yaml").symlink_to(tmp_path / "outside.yaml")
    (package_dir / "configmap.yaml").write_text(
        "apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: app\n"
    )
    package = ResolvedPackage(
        name="app",
        path="app",
        ref="main",
        source_path="pkgs/pkg1",
        upstream=Upstream(name="local", git=GitUpstream(repo="unused")),
    )
    objects = await source_packages.read_package(tmp_path / "upstream", package)
    assert [obj["metadata"]["name"] for obj in objects] == ["app"]


async def test_read_package_missing(tmp_path: Path) -> None:
    """Test a sourcePath that does not exist in the upstream."""
    package = ResolvedPackage(
        name="missing",
        path="missing",
        ref="main",
        source_path="pkgs/missing",
        upstream=Upstream(name="local", git=GitUpstream(repo="unused")),
    )
    with pytest.raises(FetchException, match="not found in upstream local"):
        await source_packages.read_package(tmp_path, package)
