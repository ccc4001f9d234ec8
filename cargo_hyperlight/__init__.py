"""
cargo-hyperlight: build Rust crates as Hyperlight guests.

Wraps cargo so that a guest crate builds for the freestanding
``x86_64-hyperlight-none`` target: a custom target specification, a cached
core/alloc sysroot, and a native toolchain environment scoped to the guest.
"""
