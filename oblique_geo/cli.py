"""
Command-line interface for oblique image geolocation.

Usage:
    oblique-geo config.yaml --image NAME --pixel X Y [--no-terrain]
    oblique-geo config.yaml --image NAME --world X Y [Z]
    oblique-geo config.yaml --image NAME --neighbor ANGLE_DEG
    oblique-geo config.yaml --nearest X Y --direction north
"""

import argparse
import json
import logging
import math
import sys

from .collection import ObliqueCollection
from .config import Config
from .terrain import TerrainHeightResolver
from .view_direction import direction_from_name


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Convert between oblique image pixels and world coordinates',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
    # World position seen at a pixel, refined against the terrain
    oblique-geo config.yaml --image 010_north --pixel 5800 4300

    # Pixel showing a world coordinate at a known height
    oblique-geo config.yaml --image 010_north --world 565230.5 5934120.0 12.5

    # Image best covering a coordinate
    oblique-geo config.yaml --nearest 565230.5 5934120.0 --direction north
'''
    )

    parser.add_argument(
        'config',
        type=str,
        help='Path to YAML configuration file'
    )

    parser.add_argument('--image', type=str, help='Name of the image to work on')

    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument('--pixel', type=float, nargs=2, metavar=('X', 'Y'),
                        help='Pixel (origin bottom-left) to resolve into world coordinates')
    action.add_argument('--world', type=float, nargs='+', metavar='C',
                        help='World X Y [Z] to project into the image')
    action.add_argument('--neighbor', type=float, metavar='ANGLE_DEG',
                        help='Find the neighbor image in this direction (0 = east, 90 = north)')
    action.add_argument('--nearest', type=float, nargs=2, metavar=('X', 'Y'),
                        help='Find the image whose footprint center is closest')

    parser.add_argument('--direction', type=str, default='north',
                        help='View direction for --nearest (default: north)')
    parser.add_argument('--no-terrain', action='store_true',
                        help='Do not query the elevation source')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose output')
    return parser


def main(argv=None) -> int:
    """Main entry point for CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.world is not None and len(args.world) not in (2, 3):
        parser.error('--world takes X Y or X Y Z')
    if args.nearest is None and not args.image:
        parser.error('--image is required for --pixel, --world and --neighbor')

    service = None
    try:
        config = Config.from_yaml(args.config)
        service = None if args.no_terrain else config.build_elevation_service()
        collection = ObliqueCollection(
            crs=config.crs,
            elevation_service=service,
            neighbor_count=config.navigation.neighbor_count,
        )
        for path in config.metadata:
            collection.load_file(path)

        resolver = TerrainHeightResolver(
            tolerance=config.terrain.tolerance,
            max_iterations=config.terrain.max_iterations,
        )

        if args.nearest is not None:
            bucket = collection.get_direction(direction_from_name(args.direction))
            name = bucket.image_name_for_coordinate(args.nearest) if bucket else None
            output = {'image': name}
        else:
            image = collection.image_by_name(args.image)
            if image is None:
                logger.error(f"Unknown image: {args.image}")
                return 1

            if args.pixel is not None:
                result = resolver.transform_from_image(
                    image, args.pixel, skip_elevation_source=args.no_terrain,
                )
                output = {'image': image.name, 'world': list(result.coordinate),
                          'elevation': result.elevation, 'estimated': result.estimated}
            elif args.world is not None:
                result = resolver.transform_to_image(
                    image, args.world, skip_elevation_source=args.no_terrain,
                )
                output = {'image': image.name, 'pixel': list(result.coordinate),
                          'elevation': result.elevation, 'estimated': result.estimated}
            else:
                bucket = collection.get_direction(image.view_direction)
                name = bucket.image_name_in_direction(
                    image, math.radians(args.neighbor), config.navigation.deviation,
                )
                output = {'image': image.name, 'neighbor': name}

        print(json.dumps(output))
        return 0

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        if service is not None:
            service.close()


if __name__ == '__main__':
    sys.exit(main())
