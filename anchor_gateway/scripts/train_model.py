#!/usr/bin/env python3
"""
Train the gambling classifier from labeled JSON examples.

Usage:
    anchor-train --data-file data/training.json
    anchor-train --data-file data/training.json --epochs 100 --seed 7

The data file is a JSON array of records:
    {"features": {...named features...} | [122 floats],
     "isGambling": true, "gamblingType": "online", "trigger": "payday",
     "relapseRisk": 0.4}
"""

import argparse
import json
import logging
import sys

from anchor_gateway.config import settings
from anchor_gateway.domain.exceptions import InvalidTrainingDataError
from anchor_gateway.infrastructure.observability.logging import setup_logging
from anchor_gateway.ml.classifier import RiskClassifier
from anchor_gateway.ml.training import label_statistics, load_training_data, split_data, validate_examples

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Anchor - train the gambling risk classifier")
    parser.add_argument("--data-file", required=True, help="JSON file with labeled examples")
    parser.add_argument("--epochs", type=int, default=50, help="Training epochs")
    parser.add_argument("--batch-size", type=int, default=32, help="Mini-batch size")
    parser.add_argument("--validation", type=float, default=0.2, help="Validation fraction of the training split")
    parser.add_argument("--learning-rate", type=float, default=0.001, help="Adam learning rate")
    parser.add_argument("--save-path", default=settings.model_path, help="Where to write the model bundle")
    parser.add_argument("--test-fraction", type=float, default=0.1, help="Held-out test fraction")
    parser.add_argument("--seed", type=int, default=None, help="Seed for shuffling and initialisation")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(settings.log_level, "anchor-train")

    try:
        records = load_training_data(args.data_file)
        examples = validate_examples(records)
    except (InvalidTrainingDataError, json.JSONDecodeError) as e:
        logger.error("Training data rejected: %s", e)
        return 1

    if not examples:
        logger.error("No valid training examples in %s", args.data_file)
        return 1

    print(json.dumps(label_statistics(examples), indent=2))

    train_set, test_set = split_data(examples, test_fraction=args.test_fraction, seed=args.seed)
    classifier = RiskClassifier(model_path=args.save_path)
    classifier.load()

    try:
        history = classifier.train(
            train_set,
            epochs=args.epochs,
            batch_size=args.batch_size,
            validation_fraction=args.validation,
            learning_rate=args.learning_rate,
            seed=args.seed,
        )
        summary = {"history": history.to_dict(), "model_path": str(classifier.model_path)}
        if test_set:
            summary["test"] = classifier.evaluate(test_set)
    except InvalidTrainingDataError as e:
        logger.error("Training failed: %s", e)
        return 1

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
