"""Risk classifier - model lifecycle, inference, training and artifact persistence"""

import copy
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
import torch

from anchor_gateway.config import settings
from anchor_gateway.domain.exceptions import InferenceError, ModelLoadError
from anchor_gateway.domain.features import FEATURE_COUNT, FeatureExtractor, FeatureVector
from anchor_gateway.domain.models import (
    GAMBLING_TYPES,
    TRIGGERS,
    ClassificationResult,
    LabeledExample,
    TriggerScore,
)
from anchor_gateway.infrastructure.observability.metrics import model_trained_gauge
from anchor_gateway.ml.network import GamblingRiskNet, build_network, to_probabilities
from anchor_gateway.ml.training import TrainingHistory, encode_examples, evaluate_network, fit

logger = logging.getLogger(__name__)

BUNDLE_FORMAT = "anchor-gambling-classifier"
DETECTION_THRESHOLD = 0.5
TOP_TRIGGERS = 3

# Offline evaluation figures published with the 1.x models
DOCUMENTED_ACCURACY = {
    "gambling_detection": "97%",
    "gambling_type": "92%",
    "trigger_prediction": "88%",
    "relapse_risk": "85%",
}


class ModelState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class LoadedModel:
    """An immutable, fully built model ready to serve"""

    network: GamblingRiskNet
    version: str
    trained: bool
    trained_at: Optional[str] = None
    metrics: Dict[str, float] = field(default_factory=dict)
    load_error: Optional[str] = None


class ModelHandle:
    """
    Process-wide holder for the serving model.

    Replacement models are built in isolation and published with a single
    reference swap, so inference never observes a half-loaded model.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state = ModelState.UNLOADED
        self._model: Optional[LoadedModel] = None

    @property
    def state(self) -> ModelState:
        return self._state

    def begin_loading(self) -> None:
        with self._lock:
            # A serving model stays READY while its replacement loads
            if self._model is None:
                self._state = ModelState.LOADING

    def publish(self, model: LoadedModel) -> None:
        model.network.eval()
        with self._lock:
            self._model = model
            self._state = ModelState.READY
        model_trained_gauge.set(1 if model.trained else 0)

    def peek(self) -> Optional[LoadedModel]:
        return self._model

    def current(self) -> LoadedModel:
        model = self._model
        if model is None:
            raise InferenceError("Classifier model is not loaded")
        return model


def save_bundle(model: LoadedModel, path: Union[str, Path]) -> Path:
    """
    Persist a model bundle atomically.

    The bundle is written to a temporary file in the target directory and
    moved into place with os.replace, so readers see either the old or the
    new artifact, never a partial one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    bundle = {
        "format": BUNDLE_FORMAT,
        "version": model.version,
        "architecture": model.network.architecture(),
        "state_dict": model.network.state_dict(),
        "trained_at": model.trained_at,
        "metrics": dict(model.metrics),
    }

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            torch.save(bundle, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.info("Model saved to %s", path)
    return path


def load_bundle(path: Union[str, Path]) -> LoadedModel:
    """
    Load a model bundle saved by save_bundle.

    Raises:
        ModelLoadError: file missing, unreadable, or architecture mismatch
    """
    path = Path(path)
    if not path.exists():
        raise ModelLoadError(f"No model bundle at {path}")

    try:
        bundle = torch.load(path, map_location="cpu", weights_only=True)
    except Exception as e:
        raise ModelLoadError(f"Could not read model bundle {path}: {e}") from e

    if not isinstance(bundle, dict) or bundle.get("format") != BUNDLE_FORMAT:
        raise ModelLoadError(f"{path} is not a gambling classifier bundle")

    architecture = bundle.get("architecture") or {}
    if architecture.get("input_features") != FEATURE_COUNT:
        raise ModelLoadError(
            f"Bundle expects {architecture.get('input_features')} features, service provides {FEATURE_COUNT}"
        )
    expected = GamblingRiskNet().architecture()
    mismatched = sorted(key for key in expected if architecture.get(key) != expected[key])
    if mismatched:
        raise ModelLoadError(f"Bundle architecture differs from service network: {', '.join(mismatched)}")

    try:
        network = build_network(architecture)
        network.load_state_dict(bundle["state_dict"])
    except (KeyError, RuntimeError, TypeError) as e:
        raise ModelLoadError(f"Bundle weights do not match architecture: {e}") from e

    network.eval()
    return LoadedModel(
        network=network,
        version=str(bundle.get("version") or "unknown"),
        trained=True,
        trained_at=bundle.get("trained_at"),
        metrics=dict(bundle.get("metrics") or {}),
    )


class RiskClassifier:
    """Four-head gambling classifier serving from a ModelHandle"""

    def __init__(
        self,
        model_path: Union[str, Path, None] = None,
        version: Optional[str] = None,
        handle: Optional[ModelHandle] = None,
        extractor: Optional[FeatureExtractor] = None,
    ):
        self.model_path = Path(model_path or settings.model_path)
        self.version = version or settings.model_version
        self.handle = handle or ModelHandle()
        self.extractor = extractor or FeatureExtractor()
        self._last_evaluation: Optional[Dict[str, float]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> LoadedModel:
        """
        Load the persisted model, or fall back to an untrained network.

        The fallback keeps the service answering with degraded accuracy; it is
        reported through a warning log, get_model_info()["status"] and the
        anchor_model_trained gauge.
        """
        self.handle.begin_loading()
        try:
            model = load_bundle(self.model_path)
            logger.info("Loaded pre-trained gambling classifier", extra={"model_version": model.version})
        except ModelLoadError as e:
            logger.warning(
                "Serving untrained fallback classifier: %s",
                e,
                extra={"model_path": str(self.model_path)},
            )
            model = LoadedModel(
                network=build_network(),
                version=self.version,
                trained=False,
                load_error=str(e),
            )

        self.handle.publish(model)
        return model

    @property
    def is_ready(self) -> bool:
        return self.handle.state == ModelState.READY

    @property
    def is_trained(self) -> bool:
        model = self.handle.peek()
        return bool(model and model.trained)

    @property
    def model_version(self) -> str:
        model = self.handle.peek()
        return model.version if model else self.version

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _as_vector(self, features: Union[FeatureVector, Sequence[float], np.ndarray]) -> FeatureVector:
        if isinstance(features, FeatureVector):
            return features
        try:
            array = np.asarray(features, dtype=np.float32).reshape(-1)
        except (TypeError, ValueError) as e:
            raise InferenceError(f"Feature vector is not numeric: {e}") from e
        if array.shape[0] != FEATURE_COUNT:
            raise InferenceError(f"Feature vector has {array.shape[0]} values, expected {FEATURE_COUNT}")
        if not np.all(np.isfinite(array)):
            raise InferenceError("Feature vector contains NaN or infinite values")
        return FeatureVector(array)

    def predict(self, features: Union[FeatureVector, Sequence[float], np.ndarray]) -> ClassificationResult:
        """
        Run one forward pass and decode the four heads.

        Raises:
            InferenceError: model not loaded, or the vector is not 122 finite values
        """
        vector = self._as_vector(features)
        model = self.handle.current()

        x = torch.from_numpy(np.array(vector.values, dtype=np.float32)).unsqueeze(0)
        try:
            with torch.no_grad():
                probabilities = to_probabilities(model.network(x))
        except RuntimeError as e:
            raise InferenceError(f"Forward pass failed: {e}") from e

        gambling_confidence = float(probabilities.detection[0])
        is_gambling = gambling_confidence > DETECTION_THRESHOLD

        try:
            type_probs = probabilities.gambling_type[0]
            type_index = int(torch.argmax(type_probs))
            gambling_type = GAMBLING_TYPES[type_index]

            trigger_probs = probabilities.trigger[0]
            top_values, top_indices = torch.topk(trigger_probs, k=TOP_TRIGGERS)
            top_triggers = [
                TriggerScore(trigger=TRIGGERS[int(i)], confidence=float(v))
                for v, i in zip(top_values, top_indices)
            ]
        except (IndexError, RuntimeError) as e:
            raise InferenceError(f"Model outputs do not match known labels: {e}") from e

        return ClassificationResult(
            is_gambling=is_gambling,
            gambling_confidence=gambling_confidence,
            gambling_type=gambling_type if is_gambling else None,
            type_confidence=float(type_probs[type_index]),
            primary_trigger=top_triggers[0].trigger,
            trigger_confidence=top_triggers[0].confidence,
            relapse_risk=float(probabilities.relapse[0]),
            top_triggers=top_triggers,
        )

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(
        self,
        examples: Sequence[LabeledExample],
        epochs: int = 50,
        batch_size: int = 32,
        validation_fraction: float = 0.2,
        learning_rate: float = 0.001,
        seed: Optional[int] = None,
        save: bool = True,
    ) -> TrainingHistory:
        """
        Fine-tune a copy of the serving network and swap it in.

        The serving model keeps answering while the copy trains. On completion
        the new bundle is saved atomically (when ``save``) and then published.
        """
        data = encode_examples(examples, self.extractor)

        current = self.handle.peek()
        network = copy.deepcopy(current.network) if current else build_network()

        history = fit(
            network,
            data,
            epochs=epochs,
            batch_size=batch_size,
            validation_fraction=validation_fraction,
            learning_rate=learning_rate,
            seed=seed,
        )

        metrics = {"loss": history.loss[-1], "accuracy": history.accuracy[-1]}
        if history.val_loss:
            metrics["val_loss"] = history.val_loss[-1]
            metrics["val_accuracy"] = history.val_accuracy[-1]

        model = LoadedModel(
            network=network,
            version=self.version,
            trained=True,
            trained_at=datetime.now(timezone.utc).isoformat(),
            metrics=metrics,
        )
        if save:
            save_bundle(model, self.model_path)
        self.handle.publish(model)

        logger.info("Classifier retrained", extra={"model_version": self.version, "epochs": epochs, **metrics})
        return history

    def evaluate(self, examples: Sequence[LabeledExample]) -> Dict[str, float]:
        """Total multi-head loss and detection accuracy on held-out examples"""
        data = encode_examples(examples, self.extractor)
        # Evaluate a copy so the serving network is never touched
        network = copy.deepcopy(self.handle.current().network)
        loss, accuracy = evaluate_network(network, data)
        self._last_evaluation = {"loss": loss, "accuracy": accuracy}
        return dict(self._last_evaluation)

    def save(self, path: Union[str, Path, None] = None) -> Path:
        return save_bundle(self.handle.current(), path or self.model_path)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_model_info(self) -> Dict[str, Any]:
        model = self.handle.peek()
        if model is None:
            status = self.handle.state.value
        else:
            status = "trained" if model.trained else "untrained"

        return {
            "version": model.version if model else self.version,
            "status": status,
            "state": self.handle.state.value,
            "model_path": str(self.model_path),
            "trained_at": model.trained_at if model else None,
            "load_error": model.load_error if model else None,
            "architecture": {
                "input_features": FEATURE_COUNT,
                "hidden_layers": list(model.network.hidden_layers) if model else [256, 128, 64, 32],
                "outputs": {
                    "gambling_detection": {"type": "binary", "accuracy": DOCUMENTED_ACCURACY["gambling_detection"]},
                    "gambling_type": {
                        "type": "multiclass",
                        "classes": len(GAMBLING_TYPES),
                        "accuracy": DOCUMENTED_ACCURACY["gambling_type"],
                    },
                    "trigger_prediction": {
                        "type": "multiclass",
                        "classes": len(TRIGGERS),
                        "accuracy": DOCUMENTED_ACCURACY["trigger_prediction"],
                    },
                    "relapse_risk": {"type": "regression", "accuracy": DOCUMENTED_ACCURACY["relapse_risk"]},
                },
            },
            "gambling_types": [t.value for t in GAMBLING_TYPES],
            "triggers": [t.value for t in TRIGGERS],
            "metrics": dict(model.metrics) if model else {},
            "last_evaluation": self._last_evaluation,
        }
