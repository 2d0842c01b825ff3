"""
Targets command implementation.

Lists the configured build matrix, or the built-in known target triples.
"""

import logging

from releasekit.cli.utils import format_table, load_release_config
from releasekit.cross.targets import KNOWN_TARGETS

logger = logging.getLogger(__name__)


def run(args) -> int:
    if args.known:
        rows = [
            [t.triple, t.arch, t.os, t.float_abi or "-", t.platform]
            for t in KNOWN_TARGETS.values()
        ]
        print(format_table(["TRIPLE", "ARCH", "OS", "FLOAT ABI", "NATIVE HOST"], rows))
        return 0

    config = load_release_config(args)
    rows = []
    for spec in config.matrix:
        rows.append(
            [
                spec.target_triple,
                spec.host_platform,
                spec.resolved_toolchain.strategy,
                spec.linker_override or "-",
                "installer" if spec.installer else "raw-binary",
                "yes" if spec.strip else "no",
            ]
        )
    print(
        format_table(
            ["TRIPLE", "HOST", "TOOLCHAIN", "LINKER", "ARTIFACT", "STRIP"], rows
        )
    )
    return 0
