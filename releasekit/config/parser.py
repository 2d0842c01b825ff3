"""YAML configuration parser for ReleaseKit.

This module parses and validates releasekit.yaml: the project build command,
global run options, per-triple toolchain settings and the target matrix.

Example releasekit.yaml:

    version: 1
    project: parity
    build:
      command: [cargo, build, --release, --target, "{triple}", --config, "{config}"]
      binary: "target/{triple}/release/{project}{exe}"
      test_command: [cargo, test, --release]
      env: {RUST_BACKTRACE: "1"}
    options:
      concurrency: 2
      output_dir: dist
    targets:
      - triple: x86_64-pc-windows-msvc
        installer: {script: nsis/installer.nsi}
      - triple: arm-unknown-linux-gnueabihf
        host: linux-x64
        strip: true
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from releasekit.core.exceptions import ConfigError, UnknownTargetError
from releasekit.cross.targets import (
    KNOWN_STRATEGIES,
    InstallerAsset,
    InstallerSpec,
    TargetMatrix,
    TargetSpec,
    ToolchainSpec,
    describe_triple,
    resolve_known_target,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "releasekit.yaml"

DEFAULT_BUILD_COMMAND = [
    "cargo",
    "build",
    "--release",
    "--target",
    "{triple}",
    "--config",
    "{config}",
]
DEFAULT_BINARY = "target/{triple}/release/{project}{exe}"


@dataclass
class BuildConfig:
    """How the project is built. Placeholders are expanded per target."""

    command: List[str] = field(default_factory=lambda: list(DEFAULT_BUILD_COMMAND))
    binary: str = DEFAULT_BINARY
    test_command: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class RunOptions:
    """Global run options (CLI flags override these)."""

    concurrency: Optional[int] = None  # None: one task per core
    timeout: Optional[float] = None  # None: no per-entry timeout
    cache_dir: Optional[Path] = None  # None: global cache dir
    output_dir: Path = Path("dist")
    max_attempts: int = 3
    toolchain_version: str = "stable"


@dataclass
class ReleaseConfig:
    """Complete ReleaseKit configuration."""

    version: int
    project: str
    project_root: Path
    matrix: TargetMatrix
    build: BuildConfig = field(default_factory=BuildConfig)
    options: RunOptions = field(default_factory=RunOptions)


def parse_config(
    config_path: Path, project_root: Optional[Path] = None
) -> ReleaseConfig:
    """
    Parse a releasekit.yaml configuration file.

    Args:
        config_path: Path to releasekit.yaml
        project_root: Project checkout (default: directory of the config file)

    Returns:
        Parsed and validated configuration

    Raises:
        ConfigError: If configuration is invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}") from e

    if data is None:
        raise ConfigError("Configuration file is empty")

    root = Path(project_root) if project_root else config_path.resolve().parent
    logger.debug(f"Loaded configuration from {config_path}")
    return load_config(data, root)


def load_config(data: Any, project_root: Path) -> ReleaseConfig:
    """Validate an already loaded configuration mapping."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    if "version" not in data:
        raise ConfigError("Missing required field: version")

    if data["version"] != 1:
        raise ConfigError(f"Unsupported version: {data['version']} (expected 1)")

    project = data.get("project")
    if not project or not isinstance(project, str):
        raise ConfigError("Missing required field: project")

    build = _parse_build(data.get("build") or {})
    options = _parse_options(data.get("options") or {}, project_root)
    toolchains = _parse_toolchains(data.get("toolchains") or {}, options)

    targets_data = data.get("targets")
    if not targets_data or not isinstance(targets_data, list):
        raise ConfigError("At least one target must be defined")

    entries = [_parse_target(t, toolchains, options) for t in targets_data]

    return ReleaseConfig(
        version=1,
        project=project,
        project_root=Path(project_root),
        matrix=TargetMatrix(entries),
        build=build,
        options=options,
    )


def _parse_build(data: Any) -> BuildConfig:
    if not isinstance(data, dict):
        raise ConfigError("'build' must be a mapping")

    config = BuildConfig()
    if "command" in data:
        config.command = _string_list(data["command"], "build.command")
        if not config.command:
            raise ConfigError("build.command must not be empty")
    if "binary" in data:
        config.binary = str(data["binary"])
    if "test_command" in data:
        config.test_command = _string_list(data["test_command"], "build.test_command")
    if "env" in data:
        config.env = _string_map(data["env"], "build.env")
    return config


def _project_path(value: Any, project_root: Path) -> Path:
    """Expand ~ and anchor relative paths at the project root."""
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else Path(project_root) / path


def _parse_options(data: Any, project_root: Path) -> RunOptions:
    if not isinstance(data, dict):
        raise ConfigError("'options' must be a mapping")

    options = RunOptions()

    if data.get("concurrency") is not None:
        options.concurrency = _positive_int(data["concurrency"], "options.concurrency")

    if data.get("timeout") is not None:
        try:
            options.timeout = float(data["timeout"])
        except (TypeError, ValueError):
            raise ConfigError("options.timeout must be a number of seconds")
        if options.timeout <= 0:
            raise ConfigError("options.timeout must be positive")

    if data.get("cache_dir"):
        options.cache_dir = _project_path(data["cache_dir"], project_root)

    options.output_dir = _project_path(
        data.get("output_dir") or options.output_dir, project_root
    )

    if data.get("max_attempts") is not None:
        options.max_attempts = _positive_int(
            data["max_attempts"], "options.max_attempts"
        )

    if data.get("toolchain_version"):
        options.toolchain_version = str(data["toolchain_version"])

    return options


def _parse_toolchains(data: Any, options: RunOptions) -> Dict[str, ToolchainSpec]:
    if not isinstance(data, dict):
        raise ConfigError("'toolchains' must be a mapping of triple to settings")

    toolchains = {}
    for triple, tc in data.items():
        if not isinstance(tc, dict):
            raise ConfigError(f"toolchains.{triple} must be a mapping")

        strategy = tc.get("strategy", "rustup")
        if strategy not in KNOWN_STRATEGIES:
            raise ConfigError(
                f"toolchains.{triple}: unknown strategy '{strategy}' "
                f"(expected one of: {', '.join(KNOWN_STRATEGIES)})"
            )

        toolchains[str(triple)] = ToolchainSpec(
            strategy=strategy,
            version=str(tc.get("version", options.toolchain_version)),
            url=tc.get("url"),
            sha256=tc.get("sha256"),
            bin_subdir=str(tc.get("bin_subdir", "bin")),
            install_args=tuple(
                _string_list(tc.get("install_args", []), f"{triple}.install_args")
            ),
        )
    return toolchains


def _parse_target(
    data: Any, toolchains: Dict[str, ToolchainSpec], options: RunOptions
) -> TargetSpec:
    if isinstance(data, str):
        data = {"triple": data}
    if not isinstance(data, dict) or not data.get("triple"):
        raise ConfigError(f"Target must define a triple: {data!r}")

    triple = str(data["triple"])
    known = resolve_known_target(triple)
    toolchain = toolchains.get(triple)

    if known is None and toolchain is None:
        raise UnknownTargetError(triple)

    if toolchain is None:
        toolchain = ToolchainSpec(version=options.toolchain_version)

    target = describe_triple(triple)
    host = str(data.get("host") or target.platform)
    is_cross = host != target.platform

    compiler = data.get("compiler") or target.compiler
    linker = data.get("linker")
    if linker is None and is_cross:
        linker = target.linker

    return TargetSpec(
        target_triple=triple,
        host_platform=host,
        compiler_binary=str(compiler),
        linker_override=linker,
        strip=bool(data.get("strip", False)),
        cxx_compiler=data.get("cxx") or target.cxx_compiler,
        strip_tool=data.get("strip_tool"),
        env=_string_map(data.get("env") or {}, f"{triple}.env"),
        installer=_parse_installer(data.get("installer"), triple),
        artifact_name=data.get("artifact_name"),
        toolchain=toolchain,
    )


def _parse_installer(data: Any, triple: str) -> Optional[InstallerSpec]:
    if data is None:
        return None
    if not isinstance(data, dict) or not data.get("script"):
        raise ConfigError(f"{triple}.installer must define a script")

    assets = []
    for asset in data.get("assets") or []:
        if not isinstance(asset, dict) or not asset.get("url") or not asset.get("path"):
            raise ConfigError(f"{triple}.installer.assets entries need url and path")
        assets.append(
            InstallerAsset(
                url=str(asset["url"]),
                path=str(asset["path"]),
                sha256=asset.get("sha256"),
            )
        )

    defines = _string_map(data.get("defines") or {}, f"{triple}.installer.defines")
    return InstallerSpec(
        script=str(data["script"]),
        tool=str(data.get("tool", "makensis")),
        defines=tuple(sorted(defines.items())),
        assets=tuple(assets),
    )


def _string_list(value: Any, name: str) -> List[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{name} must be a list")
    return [str(v) for v in value]


def _string_map(value: Any, name: str) -> Dict[str, str]:
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer")
    if number < 1:
        raise ConfigError(f"{name} must be at least 1")
    return number
