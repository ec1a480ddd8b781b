"""Multi-head gambling risk network"""

from typing import Any, Dict, NamedTuple, Sequence

import torch
from torch import nn

from anchor_gateway.domain.features import FEATURE_COUNT
from anchor_gateway.domain.models import GAMBLING_TYPES, TRIGGERS

HIDDEN_LAYERS = (256, 128, 64, 32)
DROPOUT_RATES = (0.3, 0.2, 0.2)


class HeadOutputs(NamedTuple):
    """Raw logits from each head; batch dimension first"""

    detection: torch.Tensor  # (N,)
    gambling_type: torch.Tensor  # (N, 4)
    trigger: torch.Tensor  # (N, 8)
    relapse: torch.Tensor  # (N,)


class GamblingRiskNet(nn.Module):
    """
    Shared dense trunk feeding four independent heads.

    Trunk: 122 -> 256 -> 128 -> 64 -> 32 with ReLU, dropout between layers.
    Heads (from the 32-wide representation):
    1. detection: 1 logit, sigmoid
    2. gambling_type: 4 logits, softmax
    3. trigger: 8 logits, softmax
    4. relapse: 1 logit, sigmoid (bounded regression)
    """

    def __init__(
        self,
        input_size: int = FEATURE_COUNT,
        hidden_layers: Sequence[int] = HIDDEN_LAYERS,
        dropout_rates: Sequence[float] = DROPOUT_RATES,
        num_types: int = len(GAMBLING_TYPES),
        num_triggers: int = len(TRIGGERS),
    ):
        super().__init__()
        self.input_size = input_size
        self.hidden_layers = list(hidden_layers)
        self.dropout_rates = list(dropout_rates)

        layers = []
        width = input_size
        for i, units in enumerate(self.hidden_layers):
            layers.append(nn.Linear(width, units))
            layers.append(nn.ReLU())
            if i < len(self.dropout_rates):
                layers.append(nn.Dropout(self.dropout_rates[i]))
            width = units
        self.trunk = nn.Sequential(*layers)

        self.detection_head = nn.Linear(width, 1)
        self.type_head = nn.Linear(width, num_types)
        self.trigger_head = nn.Linear(width, num_triggers)
        self.relapse_head = nn.Linear(width, 1)

    def forward(self, x: torch.Tensor) -> HeadOutputs:
        representation = self.trunk(x)
        return HeadOutputs(
            detection=self.detection_head(representation).squeeze(-1),
            gambling_type=self.type_head(representation),
            trigger=self.trigger_head(representation),
            relapse=self.relapse_head(representation).squeeze(-1),
        )

    def architecture(self) -> Dict[str, Any]:
        return {
            "input_features": self.input_size,
            "hidden_layers": list(self.hidden_layers),
            "dropout": list(self.dropout_rates),
            "gambling_types": self.type_head.out_features,
            "triggers": self.trigger_head.out_features,
        }


def to_probabilities(outputs: HeadOutputs) -> HeadOutputs:
    """Apply each head's output activation"""
    return HeadOutputs(
        detection=torch.sigmoid(outputs.detection),
        gambling_type=torch.softmax(outputs.gambling_type, dim=-1),
        trigger=torch.softmax(outputs.trigger, dim=-1),
        relapse=torch.sigmoid(outputs.relapse),
    )


def build_network(architecture: Dict[str, Any] | None = None) -> GamblingRiskNet:
    """Fresh, untrained network (optionally matching a stored architecture)"""
    if not architecture:
        return GamblingRiskNet()
    return GamblingRiskNet(
        input_size=architecture["input_features"],
        hidden_layers=architecture["hidden_layers"],
        dropout_rates=architecture["dropout"],
        num_types=architecture["gambling_types"],
        num_triggers=architecture["triggers"],
    )
