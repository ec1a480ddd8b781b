"""Unit tests for the risk classifier lifecycle and inference"""

import pytest
import torch
from datetime import datetime, timezone

from anchor_gateway.domain.exceptions import InferenceError, ModelLoadError
from anchor_gateway.domain.features import FEATURE_COUNT, FeatureExtractor
from anchor_gateway.domain.models import GAMBLING_TYPES, TRIGGERS, ClassificationResult, Transaction
from anchor_gateway.ml.classifier import (
    BUNDLE_FORMAT,
    LoadedModel,
    ModelHandle,
    ModelState,
    RiskClassifier,
    load_bundle,
    save_bundle,
)
from anchor_gateway.ml.network import GamblingRiskNet, build_network, to_probabilities


def _vector(description="Sportsbet"):
    transaction = Transaction(
        transaction_id="t1",
        amount_cents=-5000,
        description=description,
        created_at=datetime(2024, 6, 1, 22, 0, tzinfo=timezone.utc),
    )
    return FeatureExtractor().extract(transaction)


def test_network_shapes():
    network = GamblingRiskNet()
    network.eval()

    outputs = to_probabilities(network(torch.zeros(3, FEATURE_COUNT)))

    assert outputs.detection.shape == (3,)
    assert outputs.gambling_type.shape == (3, len(GAMBLING_TYPES))
    assert outputs.trigger.shape == (3, len(TRIGGERS))
    assert outputs.relapse.shape == (3,)
    assert torch.allclose(outputs.gambling_type.sum(dim=-1), torch.ones(3))
    assert torch.all((outputs.relapse >= 0) & (outputs.relapse <= 1))


def test_build_network_from_architecture_round_trips():
    network = GamblingRiskNet(hidden_layers=(16, 8), dropout_rates=(0.1,))
    rebuilt = build_network(network.architecture())

    assert rebuilt.architecture() == network.architecture()


def test_missing_artifact_falls_back_to_untrained(untrained_classifier: RiskClassifier):
    """No artifact at startup: untrained model still answers"""
    info = untrained_classifier.get_model_info()

    assert untrained_classifier.is_ready is True
    assert untrained_classifier.is_trained is False
    assert info["status"] == "untrained"
    assert "No model bundle" in info["load_error"]

    result = untrained_classifier.predict(_vector())

    assert isinstance(result, ClassificationResult)
    assert 0.0 <= result.gambling_confidence <= 1.0
    assert 0.0 <= result.relapse_risk <= 1.0
    assert len(result.top_triggers) == 3
    assert result.primary_trigger == result.top_triggers[0].trigger
    assert result.top_triggers[0].confidence >= result.top_triggers[1].confidence
    if not result.is_gambling:
        assert result.gambling_type is None


def test_predict_is_deterministic(untrained_classifier: RiskClassifier):
    vector = _vector()
    assert untrained_classifier.predict(vector) == untrained_classifier.predict(vector)


def test_predict_accepts_plain_sequences(untrained_classifier: RiskClassifier):
    vector = _vector()
    assert untrained_classifier.predict(list(vector.values)) == untrained_classifier.predict(vector)


@pytest.mark.parametrize(
    "features",
    [
        [0.0] * 10,
        [0.0] * (FEATURE_COUNT + 1),
        [float("nan")] * FEATURE_COUNT,
        ["x"] * FEATURE_COUNT,
    ],
)
def test_predict_rejects_bad_vectors(untrained_classifier: RiskClassifier, features):
    with pytest.raises(InferenceError):
        untrained_classifier.predict(features)


def test_predict_before_load_raises(tmp_path):
    classifier = RiskClassifier(model_path=tmp_path / "none.pt")

    assert classifier.is_ready is False
    assert classifier.get_model_info()["status"] == "unloaded"
    with pytest.raises(InferenceError):
        classifier.predict(_vector())


def test_trained_classifier_separates_gambling(trained_classifier: RiskClassifier):
    gambling = trained_classifier.predict(_vector("Sportsbet"))
    grocery = trained_classifier.predict(_vector("Woolworths"))

    assert gambling.is_gambling is True
    assert gambling.gambling_confidence > 0.5
    assert gambling.gambling_type is not None
    assert grocery.gambling_confidence < gambling.gambling_confidence


def test_bundle_round_trip(trained_classifier: RiskClassifier, tmp_path):
    path = trained_classifier.save(tmp_path / "copy.pt")

    reloaded = RiskClassifier(model_path=path, version="ignored")
    reloaded.load()

    assert reloaded.is_trained is True
    assert reloaded.get_model_info()["status"] == "trained"
    assert reloaded.model_version == "test"
    assert reloaded.predict(_vector()) == trained_classifier.predict(_vector())


def test_atomic_save_leaves_no_temp_files(tmp_path):
    model = LoadedModel(network=build_network(), version="1.0.0", trained=True)

    save_bundle(model, tmp_path / "model.pt")
    save_bundle(model, tmp_path / "model.pt")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["model.pt"]


def test_load_bundle_rejects_wrong_architecture(tmp_path):
    path = tmp_path / "wrong.pt"
    network = GamblingRiskNet(input_size=10)
    torch.save(
        {
            "format": BUNDLE_FORMAT,
            "version": "0.1",
            "architecture": network.architecture(),
            "state_dict": network.state_dict(),
        },
        path,
    )

    with pytest.raises(ModelLoadError):
        load_bundle(path)

    classifier = RiskClassifier(model_path=path)
    classifier.load()
    assert classifier.is_trained is False
    assert "features" in classifier.get_model_info()["load_error"]


def test_load_bundle_rejects_foreign_files(tmp_path):
    path = tmp_path / "foreign.pt"
    torch.save({"weights": torch.zeros(2)}, path)

    with pytest.raises(ModelLoadError):
        load_bundle(path)

    garbage = tmp_path / "garbage.pt"
    garbage.write_bytes(b"not a torch file")
    with pytest.raises(ModelLoadError):
        load_bundle(garbage)


def test_handle_publishes_eval_mode_model():
    handle = ModelHandle()
    assert handle.state == ModelState.UNLOADED

    handle.begin_loading()
    assert handle.state == ModelState.LOADING

    network = build_network()
    network.train()
    handle.publish(LoadedModel(network=network, version="1", trained=False))

    assert handle.state == ModelState.READY
    assert handle.current().network.training is False


def test_reload_keeps_serving_model_ready():
    handle = ModelHandle()
    handle.publish(LoadedModel(network=build_network(), version="1", trained=False))

    handle.begin_loading()

    assert handle.state == ModelState.READY


def test_evaluate_does_not_change_serving_weights(trained_classifier: RiskClassifier, training_examples):
    before = trained_classifier.predict(_vector())

    metrics = trained_classifier.evaluate(training_examples)

    assert set(metrics) == {"loss", "accuracy"}
    assert 0.0 <= metrics["accuracy"] <= 1.0
    assert trained_classifier.get_model_info()["last_evaluation"] == metrics
    assert trained_classifier.predict(_vector()) == before


def test_load_bundle_rejects_extra_trigger_classes(tmp_path):
    path = tmp_path / "ten_triggers.pt"
    network = GamblingRiskNet(num_triggers=10)
    with torch.no_grad():
        network.trigger_head.bias[9] = 100.0
    torch.save(
        {
            "format": BUNDLE_FORMAT,
            "version": "0.2",
            "architecture": network.architecture(),
            "state_dict": network.state_dict(),
        },
        path,
    )

    with pytest.raises(ModelLoadError, match="triggers"):
        load_bundle(path)

    classifier = RiskClassifier(model_path=path)
    classifier.load()

    assert classifier.get_model_info()["status"] == "untrained"
    assert len(classifier.predict(_vector()).top_triggers) == 3


def test_predict_wraps_label_decoding_errors():
    network = GamblingRiskNet(num_types=6)
    with torch.no_grad():
        network.type_head.bias[5] = 1000.0
    handle = ModelHandle()
    handle.publish(LoadedModel(network=network, version="x", trained=True))
    classifier = RiskClassifier(handle=handle)

    with pytest.raises(InferenceError):
        classifier.predict(_vector())
