"""
Cross-compilation support for ReleaseKit.

Known target triples, per-entry TargetSpec records and the build matrix.
"""

from releasekit.cross.targets import (
    KNOWN_STRATEGIES,
    KNOWN_TARGETS,
    InstallerAsset,
    InstallerSpec,
    KnownTarget,
    TargetMatrix,
    TargetSpec,
    ToolchainSpec,
    describe_triple,
    resolve_known_target,
)

__all__ = [
    "KNOWN_STRATEGIES",
    "KNOWN_TARGETS",
    "InstallerAsset",
    "InstallerSpec",
    "KnownTarget",
    "TargetMatrix",
    "TargetSpec",
    "ToolchainSpec",
    "describe_triple",
    "resolve_known_target",
]
