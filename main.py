"""
sharpei - colour-managed batch thumbnailer
"""

import argparse
import logging
import sys
from typing import List, Optional

from config import ConfigError, cli_config, resolve_config
from core.constants import BatchConstants, SystemConstants
from services import image_service
from services.batch_service import BatchProcessor, get_paths_to_process, is_image

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sharpei",
        description="Resize images between ICC profiles for every configured output profile.",
    )
    parser.add_argument(
        "paths", nargs="*", default=["."], metavar="PATH", help="files or directories"
    )
    parser.add_argument("--config", default="", help="path to config")
    parser.add_argument("--output", default=BatchConstants.DEFAULT_OUTPUT, help="output directory")
    parser.add_argument(
        "--format", default=BatchConstants.DEFAULT_FORMAT, help="format of output filenames"
    )
    parser.add_argument("--rewrite", action="store_true", help="rewrite existing files")
    parser.add_argument("--recursive", action="store_true", help="process directories recursively")
    parser.add_argument("--width", type=int, default=0, help="width of the output image")
    parser.add_argument("--height", type=int, default=0, help="height of the output image")
    parser.add_argument("--input-profile", default="", help="input icc profile")
    parser.add_argument("--output-profile", default="", help="output icc profile")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="logging level (defaults to the config's, then INFO)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level or SystemConstants.LOG_LEVEL_DEFAULT),
        format=SystemConstants.LOG_FORMAT,
    )

    cli = None
    if args.width != 0 or args.height != 0 or args.input_profile or args.output_profile:
        cli = cli_config(
            output=args.output,
            format=args.format,
            rewrite=args.rewrite,
            width=args.width,
            height=args.height,
            input_profile=args.input_profile,
            output_profile=args.output_profile,
        )

    try:
        config = resolve_config(args.config, cli)
    except ConfigError as e:
        logger.error(str(e))
        return EXIT_USAGE

    if args.log_level is None:
        logging.getLogger().setLevel(config.log_level)

    try:
        paths = get_paths_to_process(args.paths, args.recursive)
    except OSError as e:
        logger.error(str(e))
        return EXIT_USAGE

    images = []
    for path in paths:
        if not is_image(path):
            logger.warning(f"{path}: not an image, skipping")
            continue
        images.append(path)

    if not images:
        logger.info("No images to process")
        return EXIT_OK

    image_service.init(sys.argv[0])
    try:
        processor = BatchProcessor(config)
        results = []
        for path in images:
            results.extend(processor.process_image(path))
    finally:
        image_service.shutdown()

    failed = [r for r in results if not r.ok]
    logger.info(
        f"Processed {len(images)} images: "
        f"{len(results) - len(failed)} outputs, {len(failed)} failures"
    )
    return EXIT_FAILURES if failed else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
