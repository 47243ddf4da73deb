"""Command line entry points: ``melt`` and ``docker-melt``."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .core.types import MeltConfig, default_tmp_prefix
from .exceptions import MeltError
from .melt import PHASE_LAYERS, PHASE_MERGE, PHASE_UNTAR, melt_config

logger = logging.getLogger(__name__)

UNTAR_FAILED = "Failed to untar original image."
EXTRACT_FAILED = "Failed to extract layers."
INSPECT_FAILED = "Failed to inspect layers."
MERGE_FAILED = "Failed merging layers."


def build_parser(prog: str, legacy: bool = False) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog=prog,
        description="Flatten a multi-layer image archive into a single layer.",
    )

    p.add_argument('-i', '--image',
                   required=True,
                   help='Specify the location of the image.')
    p.add_argument('-o', '--output',
                   required=True,
                   help='Specify where to store the new image.')
    p.add_argument('-t', '--tmpdir',
                   default=default_tmp_prefix(),
                   help='Specify a location where temporary files produced by '
                        'this executable are stored (default: %(default)s).')
    p.add_argument('-c', '--compress',
                   action='store_true',
                   help='Compress tar file through xz.')
    if legacy:
        p.add_argument('-w', '--delete-whiteouts',
                       action='store_true',
                       help='Delete whiteouts in final rootfs.')

    g = p.add_argument_group('Logging options')
    g.add_argument('--verbose', '-v',
                   action='store_const',
                   const=logging.INFO,
                   dest='loglevel')
    g.add_argument('--debug', '-d',
                   action='store_const',
                   const=logging.DEBUG,
                   dest='loglevel')

    p.set_defaults(loglevel=logging.WARNING, delete_whiteouts=False)
    return p


async def run(config: MeltConfig, metadata_failed: str = EXTRACT_FAILED) -> int:
    """Run all phases, reporting the failing one on stderr.

    Returns:
        Process exit code
    """
    phase_messages = {
        PHASE_UNTAR: UNTAR_FAILED,
        PHASE_LAYERS: metadata_failed,
        PHASE_MERGE: MERGE_FAILED,
    }

    try:
        await melt_config(config)
    except MeltError as e:
        logger.debug("Run failed in %s phase: %s", e.phase or "setup", e)
        print(phase_messages.get(e.phase, str(e)), file=sys.stderr)
        return 1

    return 0


def _main(argv: Optional[List[str]], prog: str, legacy: bool) -> int:
    args = build_parser(prog, legacy).parse_args(argv)
    logging.basicConfig(
        level=args.loglevel,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = MeltConfig(
            image=args.image,
            output=args.output,
            tmp_prefix=args.tmpdir,
            compress=args.compress,
            purge_whiteouts=args.delete_whiteouts,
            layer_format="graph" if legacy else "auto",
        )
    except MeltError as e:
        print(str(e), file=sys.stderr)
        return 1

    metadata_failed = INSPECT_FAILED if legacy else EXTRACT_FAILED
    return asyncio.run(run(config, metadata_failed))


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for ``melt``."""
    return _main(argv, "melt", legacy=False)


def main_legacy(argv: Optional[List[str]] = None) -> int:
    """Entry point for ``docker-melt``, the per-layer json image format."""
    return _main(argv, "docker-melt", legacy=True)


if __name__ == '__main__':
    sys.exit(main())
