"""Build stages: run, verify, package and orchestrate."""

from releasekit.build.orchestrator import (
    MANIFEST_NAME,
    EntryReport,
    EntryState,
    Orchestrator,
    RunReport,
)
from releasekit.build.packager import Artifact, ArtifactKind, Packager
from releasekit.build.runner import BuildResult, BuildRunner, scoped_build_config
from releasekit.build.verifier import ArtifactVerifier, VerificationResult

__all__ = [
    "MANIFEST_NAME",
    "Artifact",
    "ArtifactKind",
    "ArtifactVerifier",
    "BuildResult",
    "BuildRunner",
    "EntryReport",
    "EntryState",
    "Orchestrator",
    "Packager",
    "RunReport",
    "VerificationResult",
    "scoped_build_config",
]
