"""Test fixtures for ReleaseKit tests.

This package provides reusable pytest fixtures and helpers. They are
organized by type:

- binaries: Executable headers (ELF, PE, Mach-O) for verification tests
- toolchains: Fake provisioning strategies
- projects: A fake project whose build command writes a chosen binary

Import fixtures in your tests using:
    from tests.fixtures.binaries import elf_header, BINARIES
    from tests.fixtures.projects import fake_project
"""

__all__ = [
    "binaries",
    "toolchains",
    "projects",
]
