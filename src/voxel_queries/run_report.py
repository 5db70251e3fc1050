#!/usr/bin/env python3
"""
Voxel Queries - Report

Compute bounding box, volume and centre of gravity for voxel fields or meshes.

Usage:
    voxel-report part.stl bracket.obj --voxel-size 0.25
    voxel-report fields/*.npz --output outputs/report.json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional
from datetime import datetime

from common.config import QueryConfig, EmptyPolicy
from common.errors import VoxelQueryError
from common.io import FIELD_SUFFIX, load_field, load_mesh
from common.voxel import VoxelField
from voxel_queries.functions import bounding_box, compute_centre_of_gravity, get_volume

logger = logging.getLogger(__name__)


def load_input(path: Path, config: QueryConfig) -> VoxelField:
    """Load a saved field, or voxelise a mesh file at config.voxel_size."""
    if path.suffix == FIELD_SUFFIX:
        return load_field(path)
    mesh = load_mesh(path)
    return VoxelField.from_mesh(mesh, config.voxel_size)


def report_field(field: VoxelField, config: QueryConfig) -> dict:
    """Bounding box, volume and centre of gravity of one field."""
    cog = compute_centre_of_gravity(field, config)
    return {
        "voxel_dimensions": list(field.get_voxel_dimensions()),
        "voxel_size": field.voxel_size,
        "bbox": bounding_box(field).to_dict(),
        "volume": get_volume(field),
        "centre_of_gravity": cog.to_dict()
    }


def run_report(input_files: List[Path], config: QueryConfig) -> dict:
    """
    Report on every input file.

    Args:
        input_files: Field (.npz) or mesh file paths
        config: Configuration

    Returns:
        Summary dictionary
    """
    summary = {
        "timestamp": datetime.now().isoformat(),
        "config": config.to_dict(),
        "fields": [],
        "errors": []
    }

    for input_file in input_files:
        logger.info(f"Processing: {input_file}")
        try:
            field = load_input(input_file, config)
            result = report_field(field, config)
        except (VoxelQueryError, ValueError, OSError) as e:
            logger.error(f"Failed on {input_file}: {e}")
            summary["errors"].append({"file": str(input_file), "error": str(e)})
            continue

        point = result["centre_of_gravity"]["point"]
        logger.info(f"  volume={result['volume']:.3f}, centre of gravity={point}")
        summary["fields"].append({"file": str(input_file), **result})

    return summary


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Voxel Queries - report bounding box, volume and centre of gravity"
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        type=Path,
        help="Field (.npz) or mesh files"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="JSON config file"
    )
    parser.add_argument(
        "--voxel-size", "-s",
        type=float,
        default=None,
        help="Voxel size used for mesh inputs"
    )
    parser.add_argument(
        "--empty-policy", "-e",
        choices=[p.value for p in EmptyPolicy],
        default=None,
        help="Centre of gravity of an empty field: raise or nan"
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Report path (default: <output_dir>/report.json)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )

    args = parser.parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    # Build config
    try:
        config = QueryConfig.from_json(args.config) if args.config else QueryConfig()
    except (ValueError, OSError) as e:
        logger.error(f"Invalid config {args.config}: {e}")
        return 1
    if args.voxel_size is not None:
        config.voxel_size = args.voxel_size
    if args.empty_policy is not None:
        config.empty_policy = EmptyPolicy(args.empty_policy)

    if not args.inputs:
        logger.error("No input files given!")
        return 1

    summary = run_report(args.inputs, config)

    # Save summary
    report_path = args.output or config.output_dir / "report.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    with open(report_path, 'w') as f:
        json.dump(summary, f, indent=2)

    logger.info(f"Report saved to: {report_path}")

    n_errors = len(summary["errors"])
    logger.info(f"COMPLETE: {len(summary['fields'])} fields, {n_errors} errors")

    return 1 if n_errors > 0 else 0


if __name__ == "__main__":
    sys.exit(main())
