"""GET /v1/model - Classifier status and architecture"""

from typing import Any, Dict
from fastapi import APIRouter, Depends

from anchor_gateway.api.dependencies import get_classifier
from anchor_gateway.ml.classifier import RiskClassifier

router = APIRouter()


@router.get("/model")
def get_model_info(classifier: RiskClassifier = Depends(get_classifier)) -> Dict[str, Any]:
    """Version, trained/untrained status, architecture and last evaluation"""
    return classifier.get_model_info()
