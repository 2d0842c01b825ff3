"""
Binary architecture verification.

This module reads the executable header of a built binary (ELF, PE or
Mach-O), decodes its machine field and compares it with the architecture
the target triple expects. Hard-float ARM triples additionally require the
ELF hard-float ABI flag. A file in any other format never matches.
"""

import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from releasekit.core.exceptions import BuildError
from releasekit.cross.targets import KnownTarget, TargetSpec, describe_triple

logger = logging.getLogger(__name__)

HEADER_SIZE = 4096

ELF_MAGIC = b"\x7fELF"
PE_MAGIC = b"MZ"
MACHO_MAGICS = {
    b"\xcf\xfa\xed\xfe": ("<", 64),
    b"\xce\xfa\xed\xfe": ("<", 32),
    b"\xfe\xed\xfa\xcf": (">", 64),
    b"\xfe\xed\xfa\xce": (">", 32),
}

ELF_MACHINES = {
    0x03: "x86",
    0x08: "mips",
    0x14: "powerpc",
    0x15: "powerpc64",
    0x28: "arm",
    0x3E: "x86_64",
    0xB7: "aarch64",
    0xF3: "riscv",
}

PE_MACHINES = {
    0x014C: "x86",
    0x01C0: "arm",
    0x01C4: "arm",
    0x8664: "x86_64",
    0xAA64: "aarch64",
}

MACHO_CPU_TYPES = {
    0x00000007: "x86",
    0x01000007: "x86_64",
    0x0000000C: "arm",
    0x0100000C: "aarch64",
}

EF_ARM_ABI_FLOAT_HARD = 0x400

# Executable format produced for each target operating system
FORMAT_FOR_OS = {"linux": "elf", "windows": "pe", "macos": "macho"}


@dataclass(frozen=True)
class VerificationResult:
    """Result of comparing a binary with its target architecture."""

    binary_path: Path
    detected_architecture: str
    expected_architecture: str
    matched: bool
    binary_format: str = "unknown"
    details: Dict[str, str] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class HeaderInfo:
    """Decoded executable header."""

    binary_format: str
    arch: str
    float_abi: Optional[str] = None
    bits: Optional[int] = None


def read_header(path: Path) -> HeaderInfo:
    """
    Decode the executable header of a file.

    Returns:
        HeaderInfo; binary_format is 'unknown' when the file is not a
        recognizable ELF, PE or Mach-O executable
    """
    with open(path, "rb") as f:
        data = f.read(HEADER_SIZE)

    try:
        if data.startswith(ELF_MAGIC):
            return _read_elf(data)
        if data.startswith(PE_MAGIC):
            return _read_pe(data)
        if data[:4] in MACHO_MAGICS:
            return _read_macho(data)
    except (struct.error, IndexError):
        logger.debug(f"Truncated executable header in {path}")

    return HeaderInfo(binary_format="unknown", arch="unknown")


def _read_elf(data: bytes) -> HeaderInfo:
    bits = 64 if data[4] == 2 else 32
    order = ">" if data[5] == 2 else "<"
    (machine,) = struct.unpack_from(f"{order}H", data, 18)
    flags_offset = 0x30 if bits == 64 else 0x24
    (flags,) = struct.unpack_from(f"{order}I", data, flags_offset)

    arch = ELF_MACHINES.get(machine, f"unknown(0x{machine:x})")
    float_abi = None
    if arch == "arm":
        float_abi = "hard" if flags & EF_ARM_ABI_FLOAT_HARD else "soft"
    return HeaderInfo(binary_format="elf", arch=arch, float_abi=float_abi, bits=bits)


def _read_pe(data: bytes) -> HeaderInfo:
    (pe_offset,) = struct.unpack_from("<I", data, 0x3C)
    if data[pe_offset : pe_offset + 4] != b"PE\0\0":
        return HeaderInfo(binary_format="unknown", arch="unknown")
    (machine,) = struct.unpack_from("<H", data, pe_offset + 4)
    arch = PE_MACHINES.get(machine, f"unknown(0x{machine:x})")
    return HeaderInfo(binary_format="pe", arch=arch)


def _read_macho(data: bytes) -> HeaderInfo:
    order, bits = MACHO_MAGICS[data[:4]]
    (cputype,) = struct.unpack_from(f"{order}I", data, 4)
    arch = MACHO_CPU_TYPES.get(cputype, f"unknown(0x{cputype:x})")
    return HeaderInfo(binary_format="macho", arch=arch, bits=bits)


def _label(arch: str, float_abi: Optional[str]) -> str:
    return f"{arch} ({float_abi}-float)" if float_abi else arch


class ArtifactVerifier:
    """
    Confirms that a binary was built for the expected target.

    Example:
        >>> verifier = ArtifactVerifier()
        >>> result = verifier.verify(Path("target/release/parity"), spec)
        >>> result.matched
        True
    """

    def verify(self, binary_path: Path, spec: TargetSpec) -> VerificationResult:
        """
        Compare the binary header with the entry's target triple.

        Args:
            binary_path: Built binary
            spec: Matrix entry the binary was built for

        Returns:
            VerificationResult; matched is False on any mismatch

        Raises:
            BuildError: If the binary cannot be read
        """
        return self.verify_triple(binary_path, spec.target_triple)

    def verify_triple(self, binary_path: Path, triple: str) -> VerificationResult:
        """Same as verify, for a bare triple."""
        binary_path = Path(binary_path)
        target = describe_triple(triple)

        try:
            header = read_header(binary_path)
        except OSError as e:
            raise BuildError(f"Cannot read binary {binary_path}: {e}") from e

        matched, reason = self._compare(header, target)
        details = {"expected_format": FORMAT_FOR_OS.get(target.os, "unknown")}
        if header.bits:
            details["bits"] = str(header.bits)
        if header.float_abi:
            details["float_abi"] = header.float_abi
        if reason:
            details["reason"] = reason

        result = VerificationResult(
            binary_path=binary_path,
            detected_architecture=_label(header.arch, header.float_abi),
            expected_architecture=_label(target.arch, target.float_abi),
            matched=matched,
            binary_format=header.binary_format,
            details=details,
        )

        if matched:
            logger.debug(f"{binary_path}: {result.detected_architecture} matches")
        else:
            logger.warning(
                f"{binary_path}: expected {result.expected_architecture}, "
                f"detected {result.detected_architecture} ({reason})"
            )
        return result

    def _compare(self, header: HeaderInfo, target: KnownTarget) -> Tuple[bool, str]:
        if header.binary_format == "unknown":
            return False, "not an ELF, PE or Mach-O executable"

        expected_format = FORMAT_FOR_OS.get(target.os)
        if expected_format and header.binary_format != expected_format:
            return False, (
                f"{header.binary_format} binary, {target.os} targets "
                f"produce {expected_format}"
            )

        if header.arch != target.arch:
            return False, "machine type differs"

        if target.float_abi == "hard" and header.float_abi != "hard":
            return False, "hard-float ABI flag not set"

        return True, ""


__all__ = [
    "ArtifactVerifier",
    "HeaderInfo",
    "VerificationResult",
    "read_header",
]
