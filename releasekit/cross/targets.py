"""
Target triples and the build matrix.

This module describes what can be built: the table of known target triples
(architecture, operating system, float ABI, default compilers and strip
tools), the per-entry TargetSpec, and the TargetMatrix that validates a set
of entries before any work starts.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from releasekit.core.exceptions import ConfigError, UnknownTargetError

KNOWN_STRATEGIES = ("rustup", "download", "system")

# Target architecture name -> host platform architecture name
ARCH_TO_HOST = {
    "x86_64": "x64",
    "x86": "x86",
    "aarch64": "arm64",
    "arm": "arm",
}


@dataclass(frozen=True)
class KnownTarget:
    """
    Static facts about a target triple.

    Attributes:
        triple: Canonical target triple
        arch: Binary architecture ('x86_64', 'x86', 'arm', 'aarch64')
        os: Target operating system ('windows', 'linux', 'macos')
        float_abi: 'hard' for hard-float ARM ABIs, otherwise None
        exe_suffix: Executable file suffix ('.exe' on Windows)
        compiler: Default C compiler for the target
        cxx_compiler: Default C++ compiler for the target
        linker: Linker to use when cross-compiling to this target
        strip_tool: Tool that strips binaries of this target, None if unsupported
    """

    triple: str
    arch: str
    os: str
    float_abi: Optional[str] = None
    exe_suffix: str = ""
    compiler: str = "cc"
    cxx_compiler: Optional[str] = None
    linker: Optional[str] = None
    strip_tool: Optional[str] = "strip"

    @property
    def platform(self) -> str:
        """Platform string of a host that runs this target natively."""
        return f"{self.os}-{ARCH_TO_HOST.get(self.arch, self.arch)}"


def _gnu_cross(triple, arch, prefix, float_abi=None) -> KnownTarget:
    return KnownTarget(
        triple=triple,
        arch=arch,
        os="linux",
        float_abi=float_abi,
        compiler=f"{prefix}gcc",
        cxx_compiler=f"{prefix}g++",
        linker=f"{prefix}gcc",
        strip_tool=f"{prefix}strip",
    )


# Ordered: prefix lookups return the first match
KNOWN_TARGETS: Dict[str, KnownTarget] = {
    t.triple: t
    for t in (
        KnownTarget(
            triple="x86_64-pc-windows-msvc",
            arch="x86_64",
            os="windows",
            exe_suffix=".exe",
            compiler="cl.exe",
            cxx_compiler="cl.exe",
            linker="link.exe",
            strip_tool=None,
        ),
        KnownTarget(
            triple="x86_64-pc-windows-gnu",
            arch="x86_64",
            os="windows",
            exe_suffix=".exe",
            compiler="x86_64-w64-mingw32-gcc",
            cxx_compiler="x86_64-w64-mingw32-g++",
            linker="x86_64-w64-mingw32-gcc",
            strip_tool="x86_64-w64-mingw32-strip",
        ),
        KnownTarget(
            triple="x86_64-unknown-linux-gnu",
            arch="x86_64",
            os="linux",
            compiler="gcc",
            cxx_compiler="g++",
            linker="x86_64-linux-gnu-gcc",
            strip_tool="strip",
        ),
        _gnu_cross("i686-unknown-linux-gnu", "x86", "i686-linux-gnu-"),
        _gnu_cross(
            "arm-unknown-linux-gnueabihf", "arm", "arm-linux-gnueabihf-", "hard"
        ),
        _gnu_cross(
            "armv7-unknown-linux-gnueabihf", "arm", "arm-linux-gnueabihf-", "hard"
        ),
        _gnu_cross("aarch64-unknown-linux-gnu", "aarch64", "aarch64-linux-gnu-"),
        KnownTarget(
            triple="x86_64-apple-darwin",
            arch="x86_64",
            os="macos",
            compiler="clang",
            cxx_compiler="clang++",
        ),
        KnownTarget(
            triple="aarch64-apple-darwin",
            arch="aarch64",
            os="macos",
            compiler="clang",
            cxx_compiler="clang++",
        ),
    )
}


def resolve_known_target(triple: str) -> Optional[KnownTarget]:
    """
    Look up a triple in the known target table.

    Exact matches win; otherwise a shortened triple such as
    'x86_64-pc-windows' resolves to the first canonical triple it prefixes.

    Returns:
        KnownTarget, or None if the triple is not known
    """
    if triple in KNOWN_TARGETS:
        return KNOWN_TARGETS[triple]

    for name, target in KNOWN_TARGETS.items():
        if name.startswith(triple + "-"):
            return target

    return None


def normalize_arch(name: str) -> str:
    """Normalize the architecture component of a triple."""
    name = name.lower()
    if name in ("x86_64", "amd64", "x64"):
        return "x86_64"
    if re.fullmatch(r"i[3-6]86|x86", name):
        return "x86"
    if name in ("aarch64", "arm64"):
        return "aarch64"
    if name.startswith(("arm", "thumb")):
        return "arm"
    return name


def describe_triple(triple: str) -> KnownTarget:
    """
    Describe any triple, known or not.

    Unknown triples are decoded from their components so that verification
    still knows which architecture to expect.
    """
    known = resolve_known_target(triple)
    if known is not None:
        return known

    parts = triple.split("-")
    arch = normalize_arch(parts[0])
    if "windows" in parts:
        os_name = "windows"
    elif "darwin" in parts or "apple" in parts:
        os_name = "macos"
    else:
        os_name = "linux"

    return KnownTarget(
        triple=triple,
        arch=arch,
        os=os_name,
        float_abi="hard" if triple.endswith("hf") else None,
        exe_suffix=".exe" if os_name == "windows" else "",
        strip_tool=None,
    )


@dataclass(frozen=True)
class ToolchainSpec:
    """
    How to provision the toolchain of one target.

    Attributes:
        strategy: Provisioning strategy ('rustup', 'download', 'system')
        version: Toolchain version (rustup channel or archive version)
        url: Archive URL for the 'download' strategy
        sha256: Expected archive checksum for the 'download' strategy
        bin_subdir: Directory holding executables inside a downloaded archive
        install_args: Arguments for running a downloaded installer executable;
            '{dest}' expands to the installation directory
    """

    strategy: str = "rustup"
    version: str = "stable"
    url: Optional[str] = None
    sha256: Optional[str] = None
    bin_subdir: str = "bin"
    install_args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class InstallerAsset:
    """A file the installer script needs next to it (e.g. a redistributable)."""

    url: str
    path: str
    sha256: Optional[str] = None


@dataclass(frozen=True)
class InstallerSpec:
    """
    Installer generation settings.

    Attributes:
        script: Installer script path, relative to the project root
        tool: Installer generator executable
        defines: Extra preprocessor defines passed to the tool
        assets: Files downloaded before the tool runs
    """

    script: str
    tool: str = "makensis"
    defines: Tuple[Tuple[str, str], ...] = ()
    assets: Tuple[InstallerAsset, ...] = ()


@dataclass(frozen=True)
class TargetSpec:
    """
    One entry of the build matrix.

    Attributes:
        target_triple: Triple to build for; identifies the required toolchain
        host_platform: Platform the entry must be built on (e.g. 'linux-x64')
        compiler_binary: C compiler used by the build
        linker_override: Linker for cross targets only
        strip: Strip symbols from the packaged copy
        cxx_compiler: C++ compiler used by the build
        strip_tool: Explicit strip executable
        env: Extra environment for the build process
        installer: Produce an installer instead of a raw binary
        artifact_name: Human readable artifact label
        toolchain: Provisioning settings (None: default for known triples)
    """

    target_triple: str
    host_platform: str
    compiler_binary: str
    linker_override: Optional[str] = None
    strip: bool = False
    cxx_compiler: Optional[str] = None
    strip_tool: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict, hash=False)
    installer: Optional[InstallerSpec] = None
    artifact_name: Optional[str] = None
    toolchain: Optional[ToolchainSpec] = None

    @property
    def target(self) -> KnownTarget:
        return describe_triple(self.target_triple)

    @property
    def is_cross(self) -> bool:
        """True when the target does not run natively on the host platform."""
        return self.target.platform != self.host_platform

    @property
    def resolved_toolchain(self) -> ToolchainSpec:
        return self.toolchain or ToolchainSpec()

    @property
    def resolved_strip_tool(self) -> Optional[str]:
        return self.strip_tool or self.target.strip_tool

    @property
    def artifact_extension(self) -> str:
        if self.installer is not None or self.target.os == "windows":
            return "exe"
        return "bin"

    def artifact_filename(self, project: str) -> str:
        """Deterministic artifact name: <project>-<triple>.<ext>."""
        return f"{project}-{self.target_triple}.{self.artifact_extension}"

    @classmethod
    def for_triple(cls, triple: str, host_platform: Optional[str] = None, **kwargs):
        """
        Build a spec with defaults from the known target table.

        Cross targets get the table's linker as linker override unless one is
        given explicitly.

        Raises:
            UnknownTargetError: If triple is not a known target
        """
        known = resolve_known_target(triple)
        if known is None:
            raise UnknownTargetError(triple)

        host = host_platform or known.platform
        kwargs.setdefault("compiler_binary", known.compiler)
        kwargs.setdefault("cxx_compiler", known.cxx_compiler)
        if host != known.platform:
            kwargs.setdefault("linker_override", known.linker)
        return cls(target_triple=triple, host_platform=host, **kwargs)


class TargetMatrix:
    """
    Ordered, validated, non-empty set of build entries.

    Example:
        >>> matrix = TargetMatrix([
        ...     TargetSpec.for_triple("x86_64-pc-windows-msvc"),
        ...     TargetSpec.for_triple("arm-unknown-linux-gnueabihf",
        ...                           host_platform="linux-x64", strip=True),
        ... ])
        >>> [e.target_triple for e in matrix.entries()]
        ['x86_64-pc-windows-msvc', 'arm-unknown-linux-gnueabihf']
    """

    def __init__(
        self,
        entries: Iterable[TargetSpec],
        known_strategies: Sequence[str] = KNOWN_STRATEGIES,
    ):
        """
        Validate and freeze the matrix.

        Raises:
            ConfigError: If the matrix is empty or an entry is invalid
            UnknownTargetError: If a triple has no known provisioning strategy
        """
        self.known_strategies = tuple(known_strategies)
        self._entries: Tuple[TargetSpec, ...] = tuple(entries)
        self._validate()

    def _validate(self):
        if not self._entries:
            raise ConfigError("Build matrix is empty: at least one target is required")

        # Short forms such as x86_64-pc-windows share the canonical triple's
        # toolchain and build directory
        seen = {}
        for spec in self._entries:
            canonical = spec.target.triple
            if canonical in seen:
                first = seen[canonical]
                also = "" if first == spec.target_triple else f" (same as {first})"
                raise ConfigError(
                    f"Duplicate target in matrix: {spec.target_triple}{also}"
                )
            seen[canonical] = spec.target_triple
            self._validate_entry(spec)

    def _validate_entry(self, spec: TargetSpec):
        if spec.toolchain is None and resolve_known_target(spec.target_triple) is None:
            raise UnknownTargetError(spec.target_triple)

        if spec.resolved_toolchain.strategy not in self.known_strategies:
            raise UnknownTargetError(spec.target_triple)

        toolchain = spec.resolved_toolchain
        if toolchain.strategy == "download" and not toolchain.url:
            raise ConfigError(
                f"{spec.target_triple}: 'download' toolchain strategy requires a url"
            )

        if not spec.compiler_binary:
            raise ConfigError(f"{spec.target_triple}: compiler binary is required")

        if spec.linker_override and not spec.is_cross:
            raise ConfigError(
                f"{spec.target_triple}: linker override is only allowed for cross "
                f"targets (target runs natively on {spec.host_platform})"
            )

        if spec.strip and not spec.resolved_strip_tool:
            raise ConfigError(
                f"{spec.target_triple}: strip requested but no strip tool is known"
            )

    def entries(self) -> Tuple[TargetSpec, ...]:
        return self._entries

    def triples(self) -> List[str]:
        return [spec.target_triple for spec in self._entries]

    def select(self, triples: Iterable[str]) -> "TargetMatrix":
        """
        Sub-matrix containing only the given triples, in matrix order.

        Raises:
            ConfigError: If a requested triple is not in the matrix
        """
        wanted = list(dict.fromkeys(triples))
        missing = [t for t in wanted if t not in self.triples()]
        if missing:
            raise ConfigError(
                f"Target(s) not in matrix: {', '.join(missing)}. "
                f"Available: {', '.join(self.triples())}"
            )
        return TargetMatrix(
            [s for s in self._entries if s.target_triple in wanted],
            self.known_strategies,
        )

    def for_host(self, host_platform: str) -> List[TargetSpec]:
        """Entries buildable on the given host platform."""
        return [s for s in self._entries if s.host_platform == host_platform]

    def __iter__(self) -> Iterator[TargetSpec]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
