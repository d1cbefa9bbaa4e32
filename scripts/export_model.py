#!/usr/bin/env python3
"""Export a Hugging Face question answering checkpoint to ONNX.

The exported file is what the inference pipeline loads from ``model.path``.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from onnx_extractive_qa.models.export import export_qa_model
from onnx_extractive_qa.utils.config import Config


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Export a QA model to ONNX",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file"
    )

    parser.add_argument(
        "--model-name",
        type=str,
        default=None,
        help="Checkpoint to export (defaults to model.name)"
    )

    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output .onnx file (defaults to model.path)"
    )

    parser.add_argument(
        "--opset",
        type=int,
        default=None,
        help="ONNX opset version (defaults to export.opset_version)"
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Main export function."""
    args = parse_arguments(argv)
    config = Config(args.config)
    logger = logging.getLogger(__name__)

    model_name = args.model_name or config.get('model.name')
    output = args.output or config.get('model.path')
    opset = args.opset or config.get('export.opset_version', 14)

    try:
        path = export_qa_model(model_name, output, opset_version=opset)
    except Exception as e:
        logger.error(f"Export failed with error: {e}", exc_info=True)
        sys.exit(1)

    print(f"Exported {model_name} to {path}")


if __name__ == "__main__":
    main()
