"""
Tests for the toolchain environment shim.
"""

from pathlib import Path

from cargo_hyperlight.toolchain.cargo import ENCODED_SEPARATOR
from cargo_hyperlight.toolchain.compilers import NativeCompilers
from cargo_hyperlight.toolchain.environment import (
    EnvVar,
    Scope,
    ToolchainEnvironment,
    compute_environment,
    host_scoped_variables,
)

SYSROOT = Path("/cache/sysroots/x86_64-hyperlight-none-1.89.0-nightly-0123456789abcdef")

# A host with its own native toolchain configured
HOST_ENV = {
    "PATH": "/usr/bin",
    "CC": "gcc",
    "AR": "gcc-ar",
    "CFLAGS": "-O2 -march=native",
    "CXX": "g++",
    "HOST_CC": "gcc",
    "HOST_CFLAGS": "-O2",
    "CC_x86_64-unknown-linux-gnu": "gcc-13",
    "CFLAGS_x86_64_unknown_linux_gnu": "-g",
    "BINDGEN_EXTRA_CLANG_ARGS": "-I/usr/include/host",
}


class TestComputeEnvironment:
    """Tests for compute_environment."""

    def test_target_scoped_compilers(self, descriptor, compilers):
        """Test guest C code gets clang and the archiver via scoped names."""
        environment = compute_environment(descriptor, SYSROOT, compilers, base_env={})
        values = environment.describe()

        assert values["CC_x86_64-hyperlight-none"] == "/usr/lib/llvm-20/bin/clang"
        assert values["AR_x86_64-hyperlight-none"] == "/usr/bin/llvm-ar-20"
        assert values["CARGO_BUILD_TARGET"] == "x86_64-hyperlight-none"
        assert values["RUSTC_BOOTSTRAP"] == "1"

    def test_cflags(self, descriptor, compilers):
        """Test guest cflags select the freestanding cross configuration."""
        environment = compute_environment(descriptor, SYSROOT, compilers, base_env={})
        cflags = environment.get(EnvVar.CFLAGS).split()

        assert "--target=x86_64-unknown-none" in cflags
        assert "-ffreestanding" in cflags
        assert "-nostdlibinc" in cflags
        assert "-fPIC" in cflags
        include = SYSROOT / "lib" / "rustlib" / "x86_64-hyperlight-none" / "include"
        assert cflags[cflags.index("-isystem") + 1] == str(include)

    def test_user_cflags_are_kept(self, descriptor, compilers):
        """Test flags the user set for the guest come first."""
        env = {"CFLAGS_x86_64_hyperlight_none": "-DGUEST_DEBUG=1", "CFLAGS": "-O2"}

        environment = compute_environment(descriptor, SYSROOT, compilers, base_env=env)

        assert environment.get(EnvVar.CFLAGS).startswith("-DGUEST_DEBUG=1 --target=")

    def test_hyperlight_cflags_fallback(self, descriptor, compilers):
        """Test HYPERLIGHT_CFLAGS is used when no triple-scoped cflags exist."""
        env = {"HYPERLIGHT_CFLAGS": "-DHL=1", "CFLAGS": "-O2"}

        environment = compute_environment(descriptor, SYSROOT, compilers, base_env=env)

        assert environment.get(EnvVar.CFLAGS).startswith("-DHL=1 ")

    def test_bindgen_args(self, descriptor, compilers):
        """Test bindgen parses headers for the guest with clang's builtins."""
        environment = compute_environment(descriptor, SYSROOT, compilers, base_env={})
        args = environment.get(EnvVar.BINDGEN_EXTRA_CLANG_ARGS)

        assert "--target=x86_64-unknown-none" in args
        assert "-resource-dir=/usr/lib/llvm-20/lib/clang/20" in args

    def test_guest_toolchain_includes(self, descriptor):
        """Test headers exported by the guest toolchain are searched."""
        compilers = NativeCompilers(
            clang=Path("/work/target/hyperlight-toolchain/clang"),
            include_dirs=[Path("/work/target/hyperlight-toolchain/include")],
        )

        environment = compute_environment(descriptor, SYSROOT, compilers, base_env={})

        assert "-isystem /work/target/hyperlight-toolchain/include" in environment.get(
            EnvVar.CFLAGS
        )
        assert EnvVar.AR not in environment.values

    def test_rustflags(self, descriptor, compilers):
        """Test rustc gets the sysroot and entry point after user flags."""
        env = {"RUSTFLAGS": " -Cdebuginfo=2  -Copt-level=1 ", "RUSTDOCFLAGS": "--cfg docs"}

        environment = compute_environment(descriptor, SYSROOT, compilers, base_env=env)

        parts = environment.get(EnvVar.ENCODED_RUSTFLAGS).split(ENCODED_SEPARATOR)
        assert parts == [
            "-Cdebuginfo=2",
            "-Copt-level=1",
            "--sysroot",
            str(SYSROOT),
            "-Clink-args=-eentrypoint",
        ]
        doc_parts = environment.get(EnvVar.ENCODED_RUSTDOCFLAGS).split(ENCODED_SEPARATOR)
        assert doc_parts == ["--cfg", "docs", "--sysroot", str(SYSROOT)]

    def test_encoded_rustflags(self, descriptor, compilers):
        """Test the encoded form is extended when the caller uses it."""
        env = {
            "CARGO_ENCODED_RUSTFLAGS": f"-C{ENCODED_SEPARATOR}debuginfo=2",
            "RUSTFLAGS": "-Cignored",
        }

        environment = compute_environment(descriptor, SYSROOT, compilers, base_env=env)

        parts = environment.get(EnvVar.ENCODED_RUSTFLAGS).split(ENCODED_SEPARATOR)
        assert parts == ["-C", "debuginfo=2", "--sysroot", str(SYSROOT), "-Clink-args=-eentrypoint"]

    def test_sysroot_path_with_spaces(self, descriptor, compilers):
        """Test a sysroot path containing spaces reaches rustc as one argument."""
        sysroot = Path("/home/A User/.cargo-hyperlight/sysroots/s")

        environment = compute_environment(descriptor, sysroot, compilers, base_env={})
        env = environment.to_env({"RUSTFLAGS": ""})

        parts = env["CARGO_ENCODED_RUSTFLAGS"].split(ENCODED_SEPARATOR)
        assert parts[parts.index("--sysroot") + 1] == str(sysroot)
        doc_parts = env["CARGO_ENCODED_RUSTDOCFLAGS"].split(ENCODED_SEPARATOR)
        assert doc_parts == ["--sysroot", str(sysroot)]


class TestHostIsolation:
    """The shim never touches host-scoped native compiler variables."""

    def test_host_variables_untouched(self, descriptor, compilers):
        """Test every host-scoped variable keeps its value."""
        environment = compute_environment(descriptor, SYSROOT, compilers, base_env=HOST_ENV)

        env = environment.to_env(HOST_ENV)

        for name in host_scoped_variables("x86_64-unknown-linux-gnu"):
            assert env.get(name) == HOST_ENV.get(name), name

    def test_written_names_are_never_host_scoped(self, descriptor, compilers):
        """Test no written name is a host-scoped variable."""
        environment = compute_environment(descriptor, SYSROOT, compilers, base_env=HOST_ENV)
        host_names = set(host_scoped_variables("x86_64-unknown-linux-gnu"))

        assert host_names.isdisjoint(environment.describe())

    def test_clang_path_only_when_unset(self, descriptor, compilers):
        """Test a user's CLANG_PATH wins over the discovered clang."""
        environment = compute_environment(descriptor, SYSROOT, compilers, base_env={})

        assert environment.to_env({})["CLANG_PATH"] == str(compilers.clang)
        assert environment.to_env({"CLANG_PATH": "/opt/clang"})["CLANG_PATH"] == "/opt/clang"

    def test_base_env_not_mutated(self, descriptor, compilers):
        """Test rendering returns a new mapping."""
        base = dict(HOST_ENV)
        environment = compute_environment(descriptor, SYSROOT, compilers, base_env=base)

        environment.to_env(base)

        assert base == HOST_ENV


class TestToolchainEnvironment:
    """Tests for the typed record itself."""

    def test_scoped_excludes_invocation_settings(self):
        """Test scoped() lists only the native toolchain variables."""
        environment = ToolchainEnvironment(
            triple="x86_64-hyperlight-none",
            values={EnvVar.CC: "clang", EnvVar.RUSTC_BOOTSTRAP: "1"},
        )

        assert environment.scoped() == {"CC_x86_64-hyperlight-none": "clang"}

    def test_env_var_metadata(self):
        """Test every variable declares its scope and a description."""
        for var in EnvVar:
            assert isinstance(var.scope, Scope)
            assert var.description
        assert EnvVar.CC.name_for("x86_64-hyperlight-none") == "CC_x86_64-hyperlight-none"
