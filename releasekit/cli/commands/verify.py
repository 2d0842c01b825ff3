"""
Verify command implementation.

Checks that a binary was built for a target triple by reading its header.
"""

import logging

from releasekit.build.verifier import ArtifactVerifier
from releasekit.cli.utils import print_error

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the verify command.

    Returns:
        0 if the binary matches the target, 1 otherwise
    """
    if not args.binary.is_file():
        print_error(f"Binary not found: {args.binary}")
        return 1

    result = ArtifactVerifier().verify_triple(args.binary, args.target)

    print(f"Binary:   {result.binary_path}")
    print(f"Format:   {result.binary_format}")
    print(f"Detected: {result.detected_architecture}")
    print(f"Expected: {result.expected_architecture}")

    if not result.matched:
        print_error("Architecture mismatch", result.details.get("reason"))
        return 1

    print("OK")
    return 0
