#!/usr/bin/env python3
"""
Colorize black-and-white photographs with a DeOldify generator.

Usage:
    python colorize.py photo.jpg old_photos/ -o colorized/ --variant artistic
"""

import argparse
import sys
from pathlib import Path

from tqdm import tqdm

from deoldify_engine.data.preprocessor import ImagePreprocessor
from deoldify_engine.inference.inference_wrapper import ColorizationInference
from deoldify_engine.utils.config import load_engine_config
from deoldify_engine.utils.exceptions import ColorizationError
from deoldify_engine.utils.logging_utils import setup_logging


def collect_inputs(paths):
    files = []
    for path in map(Path, paths):
        if path.is_dir():
            files.extend(sorted(p for p in path.iterdir()
                                if p.suffix.lower() in ImagePreprocessor.SUPPORTED_FORMATS))
        else:
            files.append(path)
    return files


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Colorize grayscale photographs.")
    parser.add_argument("inputs", nargs="+", help="image files or directories of images")
    parser.add_argument("-o", "--output-dir", type=str, default=None,
                        help="directory for results (default: next to each input)")
    parser.add_argument("--config", type=str, default=None, help="YAML or JSON engine config")
    parser.add_argument("--variant", choices=("stable", "artistic"), default=None)
    parser.add_argument("--half", action="store_true", default=None,
                        help="model files store 16-bit floats")
    parser.add_argument("--models-dir", type=str, default=None)
    parser.add_argument("--suffix", type=str, default=None, help="appended to output file stems")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config = load_engine_config(args.config, overrides={
        'variant': args.variant,
        'half': args.half,
        'models_dir': args.models_dir,
        'output_suffix': args.suffix,
    })
    setup_logging(config.log_level, config.log_dir)

    engine = ColorizationInference(config=config)
    try:
        engine.initialize()
    except ColorizationError as e:
        print(f"Error loading model: {e}")
        return 1

    files = collect_inputs(args.inputs)
    print(f"Found {len(files)} images")

    failed = 0
    for path in files:
        with tqdm(total=100, desc=path.name, unit="%",
                  bar_format="{l_bar}{bar}| {n:.0f}/{total_fmt}") as bar:
            def on_progress(value, bar=bar):
                bar.update(value - bar.n)

            result = engine.colorize_batch([path], args.output_dir, progress_callback=on_progress)[0]
        if result is None:
            failed += 1
        else:
            print(f"Saved {result}")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
