"""Pytest fixtures for testing"""

import json
import pytest
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from anchor_gateway.api.main import create_app
from anchor_gateway.config import Settings
from anchor_gateway.infrastructure.database.models import Base
from anchor_gateway.infrastructure.database.session import get_db
from anchor_gateway.domain.features import FeatureExtractor
from anchor_gateway.domain.models import LabeledExample, Transaction
from anchor_gateway.domain.signature import compute_signature
from anchor_gateway.ml.classifier import RiskClassifier


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_SECRET = "test-webhook-secret"

GAMBLING_PAYEES = ["Sportsbet", "Ladbrokes", "Bet365", "TAB Online", "Crown Casino"]
EVERYDAY_PAYEES = ["Woolworths", "Coles", "Netflix", "Aldi", "Origin Energy"]


def build_training_examples(count: int = 120) -> list[LabeledExample]:
    """Gambling payees labeled positive, everyday payees negative, spread over the week"""
    extractor = FeatureExtractor()
    base_time = datetime(2024, 3, 1, tzinfo=timezone.utc)
    examples = []

    for i in range(count):
        created_at = base_time + timedelta(hours=i * 7)
        amount_cents = -(1000 + (i % 10) * 1000)

        gambling = Transaction(
            transaction_id=f"train_g_{i}",
            amount_cents=amount_cents,
            description=GAMBLING_PAYEES[i % len(GAMBLING_PAYEES)],
            created_at=created_at,
        )
        examples.append(
            LabeledExample(
                features=extractor.raw_features(gambling),
                is_gambling=True,
                gambling_type="online",
                trigger="payday",
                relapse_risk=0.6,
            )
        )

        everyday = Transaction(
            transaction_id=f"train_n_{i}",
            amount_cents=amount_cents,
            description=EVERYDAY_PAYEES[i % len(EVERYDAY_PAYEES)],
            created_at=created_at,
        )
        examples.append(
            LabeledExample(
                features=extractor.raw_features(everyday),
                is_gambling=False,
                relapse_risk=0.1,
            )
        )

    return examples


@pytest.fixture(scope="session")
def trained_classifier(tmp_path_factory) -> RiskClassifier:
    """Small classifier tuned on Sportsbet-style vs grocery-style transactions"""
    model_path = tmp_path_factory.mktemp("models") / "classifier.pt"
    classifier = RiskClassifier(model_path=model_path, version="test")
    classifier.load()
    classifier.train(
        build_training_examples(),
        epochs=40,
        batch_size=16,
        validation_fraction=0.0,
        learning_rate=0.005,
        seed=7,
    )
    return classifier


@pytest.fixture
def untrained_classifier(tmp_path) -> RiskClassifier:
    """Classifier whose artifact is missing, so it serves the untrained fallback"""
    classifier = RiskClassifier(model_path=tmp_path / "missing.pt", version="test")
    classifier.load()
    return classifier


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        up_webhook_secret=TEST_SECRET,
        up_api_token=None,
        alert_webhook_url=None,
        model_path=str(tmp_path / "missing.pt"),
        webhook_timeout_seconds=5.0,
        alert_backoff_base=0.0,
        commitment_start=None,
        guardian_contact=None,
    )


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_client(db: Session, test_settings: Settings, trained_classifier: RiskClassifier) -> Callable[..., TestClient]:
    """Factory for test clients with the test database and optional overrides"""

    def _make(config: Optional[Settings] = None, classifier: Optional[RiskClassifier] = None) -> TestClient:
        app = create_app(config=config or test_settings, classifier=classifier or trained_classifier)

        def override_get_db():
            try:
                yield db
            finally:
                pass

        app.dependency_overrides[get_db] = override_get_db
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    """Create FastAPI test client with test database and trained classifier"""
    return make_client()


@pytest.fixture
def post_webhook() -> Callable:
    """POST a JSON body to the webhook, signed with the test secret unless a signature is given"""

    def _post(client: TestClient, payload, signature: Optional[str] = None, body: Optional[bytes] = None):
        raw = body if body is not None else json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        headers["X-Up-Authenticity-Signature"] = (
            signature if signature is not None else compute_signature(raw, TEST_SECRET)
        )
        return client.post("/v1/webhooks/up", content=raw, headers=headers)

    return _post


@pytest.fixture
def sportsbet_payload() -> dict:
    return {
        "event": "transaction.created",
        "transaction_id": "txn_sportsbet_001",
        "amount": 50.00,
        "payee": "Sportsbet",
    }


@pytest.fixture
def webhook_secret() -> str:
    return TEST_SECRET


@pytest.fixture
def training_examples() -> list[LabeledExample]:
    return build_training_examples(count=20)
