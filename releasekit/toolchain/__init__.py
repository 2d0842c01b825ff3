"""
Toolchain management for ReleaseKit.

Provides provisioning strategies and the cached, idempotent provisioner.
"""

from releasekit.toolchain.provisioner import ToolchainHandle, ToolchainProvisioner
from releasekit.toolchain.strategies import (
    STRATEGIES,
    DownloadStrategy,
    ProvisioningStrategy,
    RustupStrategy,
    SystemStrategy,
    create_strategies,
)

__all__ = [
    "ToolchainHandle",
    "ToolchainProvisioner",
    "STRATEGIES",
    "DownloadStrategy",
    "ProvisioningStrategy",
    "RustupStrategy",
    "SystemStrategy",
    "create_strategies",
]
