"""Shared test fixtures for the document extraction service tests."""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from models import ExtractionMetadata, ExtractionOptions, ExtractionResult


@pytest.fixture
def invoice_reply() -> str:
    """Well-formed model reply for an invoice extraction."""
    return json.dumps({
        "invoice_number": {"value": "INV-2024", "confidence": 0.97},
        "invoice_date": {"value": "2024-03-01", "confidence": 0.93},
        "total": {"value": 199.99, "confidence": 0.95},
        "sender_address": {
            "street": {"value": "123 Main St", "confidence": 0.9},
            "city": {"value": "Anytown", "confidence": 0.88},
        },
        "line_items": [
            {
                "description": {"value": "Widget A", "confidence": 0.9},
                "quantity": {"value": 2, "confidence": 0.9},
            },
            {
                "description": {"value": "Widget B", "confidence": 0.85},
                "quantity": {"value": 1, "confidence": 0.85},
            },
        ],
    })


@pytest.fixture
def fenced_reply(invoice_reply: str) -> str:
    """Same reply wrapped in a markdown code fence."""
    return f"```json\n{invoice_reply}\n```"


@pytest.fixture
def collapsed_line_items_reply() -> str:
    """Reply where the model packed the line items into one string."""
    return json.dumps({
        "invoice_number": {"value": "INV-7", "confidence": 0.95},
        "line_items": {"value": "101 - Widget A, 102 - Widget B", "confidence": 0.9},
    })


@pytest.fixture
def unrelated_keys_reply() -> str:
    return json.dumps({
        "merchant": {"value": "Corner Shop", "confidence": 0.9},
        "date": {"value": "2024-05-02", "confidence": 0.9},
        "payment_method": {"value": "VISA", "confidence": 0.8},
        "tax": {"value": 1.2, "confidence": 0.85},
        "cashier": {"value": "Sam", "confidence": 0.6},
    })


@pytest.fixture
def mock_client() -> MagicMock:
    """Model client double; set ``generate`` return_value/side_effect per test."""
    client = MagicMock()
    client.model_id = "test-model"
    return client


@pytest.fixture
def sample_result(invoice_reply: str):
    """Persistable extraction result built from ``invoice_reply``."""
    return ExtractionResult(
        data=json.loads(invoice_reply),
        metadata=ExtractionMetadata(
            timestamp=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
            model_id="test-model",
            document_type="Invoice",
            prompt_used="Extract all key information",
            processing_time_ms=1200,
            options=ExtractionOptions(),
        ),
    )
