#!/usr/bin/env python3
"""Prediction script for ONNX Extractive QA.

This script answers questions from a context passage with an exported ONNX
question answering model.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from onnx_extractive_qa.models.pipeline import QAInferencePipeline
from onnx_extractive_qa.utils.config import Config
from onnx_extractive_qa.utils.errors import QAInferenceError


def setup_logging(log_level: str = "INFO") -> None:
    """Setup logging configuration.

    Args:
        log_level: Logging level to use.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Answer questions from a context passage with an ONNX QA model",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file"
    )

    parser.add_argument(
        "--model-path",
        type=str,
        default=None,
        help="Path to the ONNX model (overrides config)"
    )

    parser.add_argument(
        "--model-name",
        type=str,
        default=None,
        help="Tokenizer name or directory (overrides config)"
    )

    parser.add_argument(
        "--max-length",
        type=int,
        default=None,
        help="Maximum encoded length (overrides config)"
    )

    parser.add_argument(
        "--question",
        type=str,
        default=None,
        help="Question to answer"
    )

    parser.add_argument(
        "--context",
        type=str,
        default=None,
        help="Context passage"
    )

    parser.add_argument(
        "--context-file",
        type=str,
        default=None,
        help="Text file holding the context passage"
    )

    parser.add_argument(
        "--questions-file",
        type=str,
        default=None,
        help="JSON file with a list of questions or {\"questions\": [...]}"
    )

    parser.add_argument(
        "--output-file",
        type=str,
        default=None,
        help="Output file for predictions (JSON format)"
    )

    parser.add_argument(
        "--allow-single-token",
        action="store_true",
        help="Accept single-token answers on the primary argmax path"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )

    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Run in interactive mode"
    )

    return parser.parse_args(argv)


def load_questions(
    question: Optional[str] = None,
    questions_file: Optional[str] = None
) -> List[str]:
    """Load questions from command line or file.

    Args:
        question: Single question from command line.
        questions_file: Path to JSON file with questions.

    Returns:
        List of questions.
    """
    if question:
        return [question]

    if questions_file:
        with open(questions_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
            if isinstance(data, list):
                return data
            elif isinstance(data, dict) and 'questions' in data:
                return data['questions']
            else:
                raise ValueError("Invalid questions file format. Expected list or dict with 'questions' key.")

    return []


def load_context(context: Optional[str] = None, context_file: Optional[str] = None) -> str:
    """Return the context passage from the command line or a text file."""
    if context:
        return context
    if context_file:
        return Path(context_file).read_text(encoding='utf-8')
    return ""


def build_pipeline(args: argparse.Namespace) -> QAInferencePipeline:
    """Create the pipeline, applying command line overrides to the configuration."""
    config = Config(args.config)

    if args.model_path:
        config.set('model.path', args.model_path)
    if args.model_name:
        config.set('model.name', args.model_name)
    if args.max_length:
        config.set('model.max_seq_length', args.max_length)
    if args.allow_single_token:
        config.set('span.allow_single_token', True)

    return QAInferencePipeline(config)


async def predict_single(
    pipeline: QAInferencePipeline,
    question: str,
    context: str
) -> Dict[str, Any]:
    """Run prediction on a single question.

    Args:
        pipeline: QA pipeline.
        question: Question text.
        context: Context passage.

    Returns:
        Prediction results dictionary.
    """
    result = await pipeline(question, context)
    return {
        'question': question,
        'answer': result.answer,
        'score': result.score,
        'is_answered': not result.is_sentinel,
    }


def print_prediction(prediction: Dict[str, Any]) -> None:
    """Print prediction results in a readable format.

    Args:
        prediction: Prediction results.
    """
    print("\n" + "=" * 80)
    print(f"Question: {prediction['question']}")
    print("-" * 80)
    print(f"Answer: {prediction['answer']}")
    print(f"Score: {prediction['score']:.4f}")
    print("=" * 80)


async def interactive_mode(pipeline: QAInferencePipeline, context: str) -> None:
    """Run model in interactive mode.

    Args:
        pipeline: QA pipeline.
        context: Initial context passage.
    """
    print("\n" + "=" * 80)
    print("ONNX Extractive QA - Interactive Mode")
    print("=" * 80)
    print("Enter questions to get answers. Type 'quit' or 'exit' to stop.")
    print("Type 'help' for available commands.")
    print("=" * 80 + "\n")

    while True:
        try:
            question = input("\nQuestion: ").strip()

            if not question:
                continue

            if question.lower() in ['quit', 'exit', 'q']:
                print("Exiting interactive mode.")
                break

            if question.lower() == 'help':
                print("\nAvailable commands:")
                print("  - Enter a question to get an answer")
                print("  - 'context' - Enter a new context passage")
                print("  - 'help' - Show this help message")
                print("  - 'quit' or 'exit' - Exit interactive mode")
                continue

            if question.lower() == 'context' or not context:
                context = input("\nContext: ").strip()
                if question.lower() == 'context':
                    continue

            prediction = await predict_single(pipeline, question, context)
            print_prediction(prediction)

        except KeyboardInterrupt:
            print("\n\nExiting interactive mode.")
            break
        except QAInferenceError as e:
            print(f"\nError: {e}")


async def run(args: argparse.Namespace) -> List[Dict[str, Any]]:
    """Answer every requested question against the context."""
    logger = logging.getLogger(__name__)
    pipeline = build_pipeline(args)
    context = load_context(args.context, args.context_file)

    if args.interactive:
        await interactive_mode(pipeline, context)
        return []

    questions = load_questions(args.question, args.questions_file)

    if not questions:
        logger.info("No questions provided. Running demo with an example question.")
        questions = ["When is the event held?"]
        context = context or "The event will be held on November 15, 2024 in Tokyo."

    predictions = []
    for question in questions:
        logger.info(f"Processing: {question}")
        prediction = await predict_single(pipeline, question, context)
        predictions.append(prediction)
        print_prediction(prediction)

    return predictions


def main(argv: Optional[List[str]] = None) -> None:
    """Main prediction function."""
    args = parse_arguments(argv)

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    logger.info("Starting ONNX Extractive QA prediction")

    try:
        predictions = asyncio.run(run(args))

        if args.output_file:
            output_path = Path(args.output_file)
            output_path.parent.mkdir(parents=True, exist_ok=True)

            with open(output_path, 'w', encoding='utf-8') as f:
                json.dump(predictions, f, indent=2, ensure_ascii=False)

            logger.info(f"Predictions saved to {args.output_file}")

        logger.info("Prediction completed successfully!")

    except KeyboardInterrupt:
        logger.info("Prediction interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Prediction failed with error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
