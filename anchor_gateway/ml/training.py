"""Training loop, loss functions and training-data preparation"""

import json
import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn.functional as F

from anchor_gateway.domain.exceptions import InvalidTrainingDataError
from anchor_gateway.domain.features import FeatureExtractor, FeatureVector
from anchor_gateway.domain.models import GAMBLING_TYPES, TRIGGERS, LabeledExample
from anchor_gateway.ml.network import GamblingRiskNet, HeadOutputs

logger = logging.getLogger(__name__)

MAX_INVALID_FRACTION = 0.10


@dataclass
class TrainingTensors:
    """Encoded inputs and per-head targets"""

    inputs: torch.Tensor  # (N, 122)
    detection: torch.Tensor  # (N,)
    gambling_type: torch.Tensor  # (N, 4) one-hot, all zero when unlabeled
    trigger: torch.Tensor  # (N, 8) one-hot, all zero when unlabeled
    relapse: torch.Tensor  # (N,)

    def __len__(self) -> int:
        return self.inputs.shape[0]

    def take(self, index) -> "TrainingTensors":
        return TrainingTensors(
            inputs=self.inputs[index],
            detection=self.detection[index],
            gambling_type=self.gambling_type[index],
            trigger=self.trigger[index],
            relapse=self.relapse[index],
        )


@dataclass
class TrainingHistory:
    """Per-epoch metrics recorded during fit"""

    epochs: int = 0
    loss: List[float] = field(default_factory=list)
    accuracy: List[float] = field(default_factory=list)
    val_loss: List[float] = field(default_factory=list)
    val_accuracy: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epochs": self.epochs,
            "loss": self.loss,
            "accuracy": self.accuracy,
            "val_loss": self.val_loss,
            "val_accuracy": self.val_accuracy,
        }


def _one_hot(label: Optional[str], labels: Sequence[str]) -> List[float]:
    row = [0.0] * len(labels)
    if label in labels:
        row[labels.index(label)] = 1.0
    return row


def encode_examples(
    examples: Sequence[LabeledExample],
    extractor: Optional[FeatureExtractor] = None,
) -> TrainingTensors:
    """
    Encode labeled examples into tensors.

    Raises:
        InvalidTrainingDataError: no examples, or an example's features are
            neither a mapping nor a sequence of at most 122 numbers
    """
    if not examples:
        raise InvalidTrainingDataError("No training examples")

    extractor = extractor or FeatureExtractor()
    type_labels = [t.value for t in GAMBLING_TYPES]
    trigger_labels = [t.value for t in TRIGGERS]

    inputs, detection, types, triggers, relapse = [], [], [], [], []
    for i, example in enumerate(examples):
        if isinstance(example.features, FeatureVector):
            vector = example.features
        elif isinstance(example.features, Mapping):
            vector = extractor.encode(example.features)
        else:
            try:
                vector = FeatureVector(example.features)
            except (TypeError, ValueError) as e:
                raise InvalidTrainingDataError(f"Example {i} has invalid features: {e}") from e

        inputs.append(vector.values)
        detection.append(1.0 if example.is_gambling else 0.0)
        types.append(_one_hot(example.gambling_type, type_labels))
        triggers.append(_one_hot(example.trigger, trigger_labels))
        relapse.append(min(max(float(example.relapse_risk or 0.0), 0.0), 1.0))

    return TrainingTensors(
        inputs=torch.from_numpy(np.stack(inputs).astype(np.float32)),
        detection=torch.tensor(detection, dtype=torch.float32),
        gambling_type=torch.tensor(types, dtype=torch.float32),
        trigger=torch.tensor(triggers, dtype=torch.float32),
        relapse=torch.tensor(relapse, dtype=torch.float32),
    )


def soft_cross_entropy(logits: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
    """Categorical cross-entropy against one-hot targets; all-zero rows contribute nothing"""
    return -(targets * F.log_softmax(logits, dim=-1)).sum(dim=-1).mean()


def multi_head_loss(outputs: HeadOutputs, batch: TrainingTensors) -> Tuple[torch.Tensor, Dict[str, float]]:
    """
    Sum of the four head losses.

    - detection: binary cross-entropy
    - gambling_type, trigger: categorical cross-entropy
    - relapse: mean squared error on the sigmoid output
    """
    detection = F.binary_cross_entropy_with_logits(outputs.detection, batch.detection)
    gambling_type = soft_cross_entropy(outputs.gambling_type, batch.gambling_type)
    trigger = soft_cross_entropy(outputs.trigger, batch.trigger)
    relapse = F.mse_loss(torch.sigmoid(outputs.relapse), batch.relapse)

    total = detection + gambling_type + trigger + relapse
    parts = {
        "gambling_detection": detection.item(),
        "gambling_type": gambling_type.item(),
        "trigger_prediction": trigger.item(),
        "relapse_risk": relapse.item(),
    }
    return total, parts


def detection_accuracy(outputs: HeadOutputs, batch: TrainingTensors) -> float:
    predicted = (torch.sigmoid(outputs.detection) > 0.5).float()
    return (predicted == batch.detection).float().mean().item()


def evaluate_network(network: GamblingRiskNet, data: TrainingTensors) -> Tuple[float, float]:
    """(loss, detection accuracy) in eval mode; leaves the network in eval mode"""
    network.eval()
    with torch.no_grad():
        outputs = network(data.inputs)
        loss, _ = multi_head_loss(outputs, data)
        return loss.item(), detection_accuracy(outputs, data)


def fit(
    network: GamblingRiskNet,
    data: TrainingTensors,
    epochs: int = 50,
    batch_size: int = 32,
    validation_fraction: float = 0.2,
    learning_rate: float = 0.001,
    seed: Optional[int] = None,
) -> TrainingHistory:
    """
    Train ``network`` in place with Adam.

    The last ``validation_fraction`` of the examples is held out for
    validation metrics. Returns the per-epoch history; the network is left
    in eval mode.
    """
    if epochs < 1 or batch_size < 1:
        raise InvalidTrainingDataError("epochs and batch_size must be positive")
    if not 0.0 <= validation_fraction < 1.0:
        raise InvalidTrainingDataError("validation_fraction must be in [0, 1)")

    if seed is not None:
        torch.manual_seed(seed)

    n_val = int(len(data) * validation_fraction)
    n_train = len(data) - n_val
    if n_train < 1:
        n_train, n_val = len(data), 0
    train_data = data.take(slice(0, n_train))
    val_data = data.take(slice(n_train, n_train + n_val)) if n_val else None

    optimizer = torch.optim.Adam(network.parameters(), lr=learning_rate)
    history = TrainingHistory(epochs=epochs)

    for epoch in range(epochs):
        network.train()
        permutation = torch.randperm(n_train)
        total_loss = 0.0
        correct = 0.0

        for start in range(0, n_train, batch_size):
            batch = train_data.take(permutation[start:start + batch_size])
            optimizer.zero_grad()
            outputs = network(batch.inputs)
            loss, _ = multi_head_loss(outputs, batch)
            loss.backward()
            optimizer.step()

            total_loss += loss.item() * len(batch)
            correct += detection_accuracy(outputs, batch) * len(batch)

        history.loss.append(total_loss / n_train)
        history.accuracy.append(correct / n_train)

        if val_data is not None:
            val_loss, val_accuracy = evaluate_network(network, val_data)
            history.val_loss.append(val_loss)
            history.val_accuracy.append(val_accuracy)

        logger.info(
            "Epoch %d/%d: loss = %.4f, accuracy = %.4f",
            epoch + 1,
            epochs,
            history.loss[-1],
            history.accuracy[-1],
        )

    network.eval()
    return history


# ---------------------------------------------------------------------------
# Training data files
# ---------------------------------------------------------------------------


def load_training_data(path: str | Path) -> List[Dict[str, Any]]:
    """Read a JSON array of training records"""
    path = Path(path)
    if not path.exists():
        raise InvalidTrainingDataError(f"Training data file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise InvalidTrainingDataError("Training data must be a JSON array")
    logger.info("Loaded %d training records from %s", len(data), path)
    return data


def validate_examples(records: Sequence[Any]) -> List[LabeledExample]:
    """
    Convert raw records into LabeledExamples, dropping invalid ones.

    Raises:
        InvalidTrainingDataError: more than 10% of the records are invalid
    """
    extractor = FeatureExtractor()
    examples = []
    invalid = 0
    for i, record in enumerate(records):
        if (
            not isinstance(record, dict)
            or not isinstance(record.get("features"), (dict, list))
            or not ("isGambling" in record or "is_gambling" in record)
        ):
            logger.warning("Invalid training record at index %d: missing required fields", i)
            invalid += 1
            continue
        try:
            example = LabeledExample.from_dict(record)
            features = example.features
            if isinstance(features, list):
                FeatureVector(features)
            else:
                extractor.encode(features)
        except (TypeError, ValueError) as e:
            logger.warning("Invalid training record at index %d: %s", i, e)
            invalid += 1
            continue
        examples.append(example)

    if records and invalid / len(records) > MAX_INVALID_FRACTION:
        raise InvalidTrainingDataError(
            f"Too many invalid records ({invalid / len(records) * 100:.1f}%). Fix training data."
        )
    logger.info("Validation complete: %d valid, %d invalid", len(examples), invalid)
    return examples


def split_data(
    examples: Sequence[LabeledExample],
    test_fraction: float = 0.1,
    seed: Optional[int] = None,
) -> Tuple[List[LabeledExample], List[LabeledExample]]:
    """Shuffle and split into (train, test)"""
    shuffled = list(examples)
    random.Random(seed).shuffle(shuffled)
    test_size = int(len(shuffled) * test_fraction)
    return shuffled[test_size:], shuffled[:test_size]


def label_statistics(examples: Sequence[LabeledExample]) -> Dict[str, Any]:
    """Class balance summary printed before training"""
    gambling = [e for e in examples if e.is_gambling]
    return {
        "total": len(examples),
        "gambling": len(gambling),
        "non_gambling": len(examples) - len(gambling),
        "gambling_types": dict(Counter(e.gambling_type for e in gambling if e.gambling_type)),
        "triggers": dict(Counter(e.trigger for e in examples if e.trigger)),
    }
