"""
Pytest configuration and shared fixtures for cargo-hyperlight tests.
"""

import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest

from cargo_hyperlight.target.descriptor import (
    TARGET_TRIPLE,
    TargetDescriptor,
    load_bundled_spec,
)
from cargo_hyperlight.toolchain.cargo import CargoBinary, ToolchainInfo
from cargo_hyperlight.toolchain.compilers import NativeCompilers

# Variables that change cargo-hyperlight behaviour when set on the host
HOST_VARIABLES = (
    "CARGO",
    "RUSTC",
    "RUSTUP_TOOLCHAIN",
    "RUSTFLAGS",
    "RUSTDOCFLAGS",
    "CARGO_ENCODED_RUSTFLAGS",
    "CARGO_ENCODED_RUSTDOCFLAGS",
    "CARGO_BUILD_TARGET",
    "CARGO_TARGET_DIR",
    "CARGO_HYPERLIGHT_CACHE_DIR",
    "CARGO_HYPERLIGHT_PROVIDER",
    "CARGO_HYPERLIGHT_LOCK_TIMEOUT",
    "CARGO_HYPERLIGHT_TARGET_SPEC",
    "CARGO_HYPERLIGHT_CLANG",
    "CARGO_HYPERLIGHT_AR",
    "CLANG",
    "CLANG_PATH",
    "AR",
    "CC",
    "CFLAGS",
    "HYPERLIGHT_CFLAGS",
    "TARGET_CFLAGS",
    "BINDGEN_EXTRA_CLANG_ARGS",
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def isolated_env(temp_dir: Path, monkeypatch) -> Path:
    """Clear host toolchain variables and isolate HOME. Returns the fake home."""
    for name in HOST_VARIABLES:
        monkeypatch.delenv(name, raising=False)

    fake_home = temp_dir / "home"
    fake_home.mkdir()
    monkeypatch.setenv("HOME", str(fake_home))
    monkeypatch.setenv("USERPROFILE", str(fake_home))
    return fake_home


@pytest.fixture
def descriptor() -> TargetDescriptor:
    """Descriptor built from the bundled target specification."""
    return TargetDescriptor.from_spec(TARGET_TRIPLE, load_bundled_spec())


@pytest.fixture
def toolchain_info() -> ToolchainInfo:
    """A nightly toolchain as reported by rustc -vV."""
    return ToolchainInfo(
        release="1.89.0-nightly",
        commit_hash="60dabef95a3de3ec974dcb50926e4bfe743f078f",
        host="x86_64-unknown-linux-gnu",
        llvm_version="20.1.5",
        rustc=Path("/opt/rust/bin/rustc"),
    )


@pytest.fixture
def cargo_binary() -> CargoBinary:
    return CargoBinary(path=Path("/opt/rust/bin/cargo"))


@pytest.fixture
def compilers() -> NativeCompilers:
    """A clang/llvm-ar pair as found on a typical Linux host."""
    return NativeCompilers(
        clang=Path("/usr/lib/llvm-20/bin/clang"),
        ar=Path("/usr/bin/llvm-ar-20"),
        resource_dir=Path("/usr/lib/llvm-20/lib/clang/20"),
    )


# ============================================================================
# cargo metadata
# ============================================================================


def package_id(name: str, version: str = "0.1.0") -> str:
    """Package id in the format cargo 1.77+ prints."""
    return f"registry+https://github.com/rust-lang/crates.io-index#{name}@{version}"


def make_metadata(
    crates: Dict[str, List[str]],
    root: Optional[str] = "mycrate",
    bins: Optional[Dict[str, List[str]]] = None,
    members: Optional[List[str]] = None,
    target_directory: str = "/work/target",
    kinds: Optional[Dict[str, Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """
    Build a ``cargo metadata --format-version=1`` document.

    Args:
        crates: Package name -> names of its direct dependencies
        root: Root package name, or None for a virtual workspace
        bins: Package name -> its bin target names
        members: Workspace members (default: the root package)
        target_directory: Reported target directory
        kinds: Package name -> {dependency name: "dev" or "build"}; unlisted
            dependencies are normal
    """
    bins = bins or {}
    kinds = kinds or {}
    if members is None:
        members = [root] if root else []

    packages = []
    for name in crates:
        targets = [{"name": name.replace("-", "_"), "kind": ["lib"], "src_path": "src/lib.rs"}]
        targets += [
            {"name": bin_name, "kind": ["bin"], "src_path": f"src/bin/{bin_name}.rs"}
            for bin_name in bins.get(name, [])
        ]
        packages.append(
            {"id": package_id(name), "name": name, "version": "0.1.0", "targets": targets}
        )

    nodes = [
        {
            "id": package_id(name),
            "dependencies": [package_id(dep) for dep in deps],
            "deps": [
                {
                    "name": dep.replace("-", "_"),
                    "pkg": package_id(dep),
                    "dep_kinds": [{"kind": kinds.get(name, {}).get(dep), "target": None}],
                }
                for dep in deps
            ],
        }
        for name, deps in crates.items()
    ]

    return {
        "packages": packages,
        "workspace_members": [package_id(m) for m in members],
        "workspace_default_members": [package_id(m) for m in members],
        "resolve": {"nodes": nodes, "root": package_id(root) if root else None},
        "target_directory": target_directory,
        "workspace_root": "/work",
        "version": 1,
    }


@pytest.fixture
def metadata_factory():
    """The make_metadata helper, as a fixture."""
    return make_metadata
