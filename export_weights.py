#!/usr/bin/env python3
"""
Convert a PyTorch DeOldify generator checkpoint into a flat model file.

Usage:
    python export_weights.py ColorizeStable_gen.pth models/Stable.model --variant stable
"""

import argparse
import sys

from deoldify_engine.models.architecture import get_architecture
from deoldify_engine.models.weight_manager import export_state_dict, validate_model_file
from deoldify_engine.utils.exceptions import ColorizationError
from deoldify_engine.utils.logging_utils import setup_logging


def main(argv=None):
    parser = argparse.ArgumentParser(description="Export a .pth checkpoint to the engine's model format.")
    parser.add_argument("checkpoint", type=str, help="path to the .pth checkpoint")
    parser.add_argument("output", type=str, help="destination model file")
    parser.add_argument("--variant", choices=("stable", "artistic"), default="stable")
    parser.add_argument("--half", action="store_true", help="store 16-bit floats")
    args = parser.parse_args(argv)

    setup_logging("INFO")
    spec = get_architecture(args.variant)

    try:
        written = export_state_dict(args.checkpoint, spec, args.output, half=args.half)
    except ColorizationError as e:
        print(f"Export failed: {e}")
        return 1

    report = validate_model_file(args.output, spec, half=args.half)
    print(f"Wrote {written} bytes to {args.output} (valid: {report['valid']})")
    return 0 if report['valid'] else 1


if __name__ == "__main__":
    sys.exit(main())
