"""Command-line tool for inspecting, fetching and evaluating ONNX models.

Examples
- ``onnx-adapter inspect model.onnx``
- ``onnx-adapter fetch Analysis/PID/TPC/ML --timestamp 1700000000000 --output model.onnx``
- ``onnx-adapter eval model.onnx 0.1 0.2 0.3 0.4``
"""

import argparse
import sys
from typing import List, Optional

import numpy as np
import structlog

from .common.config import OnnxAdapterConfig
from .common.logging import configure_logging
from .runtime.errors import OnnxAdapterError
from .runtime.model import OnnxModel
from .runtime.shape import format_shape
from .store.fetcher import parse_validity

logger = structlog.get_logger("onnx_adapter.cli")


def inspect_model(args: argparse.Namespace, config: OnnxAdapterConfig) -> int:
    model = OnnxModel(args.model, config=config)
    io = model.io
    print("Inputs:")
    for name, shape in zip(io.input_names, io.input_shapes):
        print(f"  {name} : {format_shape(shape)}")
    print("Outputs:")
    for name, shape in zip(io.output_names, io.output_shapes):
        print(f"  {name} : {format_shape(shape)}")
    return 0


def fetch_model(args: argparse.Namespace, config: OnnxAdapterConfig) -> int:
    with OnnxModel("", config=config) as model:
        if args.url:
            model.set_ccdb_url(args.url)
        result = model.fetch(args.remote_path, args.timestamp, args.output)
        if not result.success:
            print(f"Failed to fetch {args.remote_path}: {result.error}", file=sys.stderr)
            return 1

    valid_from, valid_until = parse_validity(result.headers)
    print(f"Fetched {args.remote_path} to {result.local_file}")
    print(f"Valid from: {valid_from if valid_from is not None else 'unset'}")
    print(f"Valid until: {valid_until if valid_until is not None else 'unset'}")
    return 0


def eval_model(args: argparse.Namespace, config: OnnxAdapterConfig) -> int:
    model = OnnxModel(args.model, config=config)
    if args.threads is not None:
        model.set_active_threads(args.threads)
        model.reload()

    result = model.evaluate_flat(np.asarray(args.values, dtype=np.float32))
    if not result.ok:
        print(f"Evaluation failed: {result.error}", file=sys.stderr)
        return 1

    for row in np.atleast_2d(result.output):
        print(" ".join(f"{value:.6g}" for value in row))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="onnx-adapter", description="ONNX model adapter tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect_parser = subparsers.add_parser("inspect", help="Print model inputs and outputs")
    inspect_parser.add_argument("model", help="Local model file")
    inspect_parser.set_defaults(handler=inspect_model)

    fetch_parser = subparsers.add_parser("fetch", help="Download a model from the artifact store")
    fetch_parser.add_argument("remote_path", help="Object path, e.g. Analysis/PID/TPC/ML")
    fetch_parser.add_argument("--timestamp", type=int, default=-1, help="Epoch milliseconds (default: now)")
    fetch_parser.add_argument("--output", default="model.onnx", help="Local destination")
    fetch_parser.add_argument("--url", help="Artifact store URL (default: ML_ONNX_CCDB_URL)")
    fetch_parser.set_defaults(handler=fetch_model)

    eval_parser = subparsers.add_parser("eval", help="Evaluate a flat input buffer")
    eval_parser.add_argument("model", help="Local model file")
    eval_parser.add_argument("values", nargs="+", type=float, help="Row-major input values")
    eval_parser.add_argument("--threads", type=int, help="Intra-op thread count")
    eval_parser.set_defaults(handler=eval_model)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main function for CLI."""
    args = build_parser().parse_args(argv)

    config = OnnxAdapterConfig()
    configure_logging("onnx-adapter", config.ml_log_level, config.ml_log_format)

    try:
        return args.handler(args, config)
    except OnnxAdapterError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
