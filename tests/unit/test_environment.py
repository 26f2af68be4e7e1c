"""Tests for EnvironmentComposer: per-role compiler variables and static link flags."""

from __future__ import annotations

import logging

import pytest

from crossforge.core.dependencies import DependencyLocator
from crossforge.core.environment import (
    RUSTFLAGS_VAR,
    VERSION_EXTRA_VAR,
    EnvironmentBuilder,
    EnvironmentComposer,
    EnvironmentMap,
    static_rustflags,
)
from crossforge.errors import DependencyNotFound
from crossforge.models.config import NativeDependencyConfig
from crossforge.models.platforms import (
    CcToolchain,
    LinkerFamily,
    PlatformRoles,
    PlatformTriple,
    RoleBinding,
)

GNU = PlatformTriple.parse("x86_64-unknown-linux-gnu")
X86_MUSL = PlatformTriple.parse("x86_64-unknown-linux-musl")
ARM_MUSL = PlatformTriple.parse("aarch64-unknown-linux-musl")
ARM_GNU = PlatformTriple.parse("aarch64-unknown-linux-gnu")
DARWIN = PlatformTriple.parse("aarch64-apple-darwin")


def binding(triple: PlatformTriple, *, cross: bool = True, **kwargs) -> RoleBinding:
    return RoleBinding(
        triple=triple,
        toolchain=CcToolchain.for_triple(triple, "/cross", cross=cross, **kwargs),
    )


def cross_roles(target: RoleBinding, *, build: RoleBinding | None = None) -> PlatformRoles:
    native = binding(GNU, cross=False)
    return PlatformRoles(build=build or native, host=native, target=target)


@pytest.fixture
def composer(rocksdb_prefixes) -> EnvironmentComposer:
    locator = DependencyLocator(
        {"rocksdb": NativeDependencyConfig(env_prefix="ROCKSDB", prefixes=rocksdb_prefixes)}
    )
    return EnvironmentComposer(locator, version_extra="abc1234")


class TestNativeComposition:
    def test_native_binds_only_own_triple(self):
        env = EnvironmentComposer().compose(PlatformRoles.native(binding(GNU, cross=False)))
        assert env["CC_X86_64_UNKNOWN_LINUX_GNU"] == "/cross/bin/cc"
        assert env["CXX_X86_64_UNKNOWN_LINUX_GNU"] == "/cross/bin/c++"
        assert env["CARGO_TARGET_X86_64_UNKNOWN_LINUX_GNU_LINKER"] == "/cross/bin/cc"
        assert env["CARGO_BUILD_TARGET"] == GNU.rustc_target
        per_triple = [k for k in env if k.startswith(("CC_", "CXX_", "CARGO_TARGET_"))]
        assert all("X86_64_UNKNOWN_LINUX_GNU" in k for k in per_triple)

    def test_native_has_no_host_cc_or_rustflags(self):
        env = EnvironmentComposer().compose(PlatformRoles.native(binding(GNU, cross=False)))
        assert "HOST_CC" not in env
        assert "HOST_CXX" not in env
        assert RUSTFLAGS_VAR not in env
        assert env.rustflags == []

    def test_version_extra(self, composer):
        env = composer.compose(
            PlatformRoles.native(binding(GNU, cross=False)),
            dependencies=[("rocksdb", "default")],
        )
        assert env[VERSION_EXTRA_VAR] == "abc1234"
        assert env["ROCKSDB_INCLUDE_DIR"].endswith("include")
        assert env["ROCKSDB_LIB_DIR"].endswith("lib")
        assert "ROCKSDB_STATIC" not in env


class TestCrossComposition:
    def test_target_compilers_bound(self, composer, cxx_runtime_root):
        target = binding(ARM_MUSL, cxx_runtime_root=str(cxx_runtime_root))
        env = composer.compose(cross_roles(target), static=True)
        suffix = ARM_MUSL.cargo_env_suffix
        assert env[f"CC_{suffix}"] == "/cross/bin/aarch64-unknown-linux-musl-cc"
        assert env[f"CXX_{suffix}"] == "/cross/bin/aarch64-unknown-linux-musl-c++"
        assert env[f"CARGO_TARGET_{suffix}_LINKER"] == "/cross/bin/aarch64-unknown-linux-musl-cc"
        assert env["CARGO_BUILD_TARGET"] == "aarch64-unknown-linux-musl"
        assert "CC_X86_64_UNKNOWN_LINUX_GNU" in env

    def test_static_dependency_marker(self, composer, cxx_runtime_root):
        target = binding(X86_MUSL, cxx_runtime_root=str(cxx_runtime_root))
        env = composer.compose(
            cross_roles(target), static=True, dependencies=[("rocksdb", "jemalloc")]
        )
        assert env["ROCKSDB_STATIC"] == ""
        assert "jemalloc" in env["ROCKSDB_LIB_DIR"]
        assert X86_MUSL.rustc_target in env["ROCKSDB_LIB_DIR"]

    def test_missing_dependency_names_triple(self, rocksdb_prefixes):
        del rocksdb_prefixes["default"][ARM_MUSL.rustc_target]
        locator = DependencyLocator(
            {"rocksdb": NativeDependencyConfig(env_prefix="ROCKSDB", prefixes=rocksdb_prefixes)}
        )
        with pytest.raises(DependencyNotFound) as excinfo:
            EnvironmentComposer(locator).compose(
                cross_roles(binding(ARM_MUSL)), static=True, dependencies=[("rocksdb", "default")]
            )
        assert excinfo.value.triple == ARM_MUSL.rustc_target

    def test_host_cc_when_build_differs(self):
        build = binding(ARM_GNU)
        env = EnvironmentComposer().compose(cross_roles(binding(X86_MUSL), build=build))
        assert env["HOST_CC"] == build.toolchain.cc
        assert env["HOST_CXX"] == build.toolchain.cxx

    def test_composition_is_deterministic(self, composer, cxx_runtime_root):
        roles = cross_roles(binding(ARM_MUSL, cxx_runtime_root=str(cxx_runtime_root)))
        first = composer.compose(roles, static=True, dependencies=[("rocksdb", "default")])
        second = composer.compose(roles, static=True, dependencies=[("rocksdb", "default")])
        assert first.as_dict() == second.as_dict()
        assert list(first) == sorted(first)


class TestStaticRustflags:
    def test_not_static_means_no_flags(self):
        assert static_rustflags(cross_roles(binding(X86_MUSL)), static=False) == []

    def test_gnu_linker_adds_stdcxx(self, cxx_runtime_root):
        target = binding(ARM_MUSL, cxx_runtime_root=str(cxx_runtime_root))
        flags = static_rustflags(cross_roles(target), static=True)
        assert flags == [
            "-C",
            "relocation-model=static",
            "-l",
            "c",
            "-l",
            "stdc++",
            "-L",
            str(cxx_runtime_root / "aarch64-unknown-linux-musl" / "lib"),
        ]

    def test_stdcxx_requires_configured_runtime(self):
        with pytest.raises(DependencyNotFound) as excinfo:
            static_rustflags(cross_roles(binding(ARM_MUSL)), static=True)
        assert excinfo.value.dependency == "c++ runtime"
        assert excinfo.value.triple == ARM_MUSL.rustc_target

    def test_stdcxx_requires_existing_runtime_dir(self, tmp_dir):
        target = binding(X86_MUSL, cxx_runtime_root=str(tmp_dir / "no-gcc"))
        with pytest.raises(DependencyNotFound, match="does not exist"):
            static_rustflags(cross_roles(target), static=True)

    def test_llvm_linker_skips_stdcxx(self):
        target = binding(X86_MUSL, linker_family=LinkerFamily.LLVM)
        flags = static_rustflags(cross_roles(target), static=True)
        assert flags == ["-C", "relocation-model=static", "-l", "c"]

    def test_darwin_skips_stdcxx(self):
        flags = static_rustflags(cross_roles(binding(DARWIN)), static=True)
        assert "stdc++" not in flags

    def test_other_architectures_skip_stdcxx(self):
        riscv = PlatformTriple.parse("riscv64gc-unknown-linux-musl")
        flags = static_rustflags(cross_roles(binding(riscv)), static=True)
        assert "stdc++" not in flags

    def test_libc_when_build_differs_from_target(self, cxx_runtime_root):
        target = binding(X86_MUSL, cxx_runtime_root=str(cxx_runtime_root))
        flags = static_rustflags(cross_roles(target, build=binding(ARM_GNU)), static=True)
        assert flags[2:4] == ["-l", "c"]

    def test_no_libc_when_building_on_target_platform(self):
        musl = binding(X86_MUSL, cross=False, linker_family=LinkerFamily.LLVM)
        flags = static_rustflags(PlatformRoles.native(musl), static=True)
        assert flags == ["-C", "relocation-model=static"]

    def test_composer_emits_rustflags_and_warns(self, caplog, cxx_runtime_root):
        target = binding(X86_MUSL, cxx_runtime_root=str(cxx_runtime_root))
        with caplog.at_level(logging.WARNING, logger="crossforge.core.environment"):
            env = EnvironmentComposer().compose(cross_roles(target), static=True)
        assert env.rustflags[:2] == ["-C", "relocation-model=static"]
        assert "PIE disabled" in caplog.text


class TestEnvironmentBuilder:
    def test_later_rule_overrides(self, caplog):
        builder = EnvironmentBuilder()
        builder.set("CC", "gcc", rule="base")
        with caplog.at_level(logging.DEBUG, logger="crossforge.core.environment"):
            builder.set("CC", "clang", rule="build")
        assert builder.build()["CC"] == "clang"
        assert "overrides" in caplog.text

    def test_map_is_read_only(self):
        env = EnvironmentMap({"B": "2", "A": "1"})
        assert list(env) == ["A", "B"]
        with pytest.raises(TypeError):
            env["C"] = "3"
