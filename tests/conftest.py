"""Pytest fixtures: settings, a fake provider session and an API test client."""

import json
from unittest.mock import MagicMock

import pytest
import requests
from fastapi.testclient import TestClient

from config import Settings
from mpesa import MpesaClient


def make_response(status_code=200, body=None, url="https://sandbox.safaricom.co.ke"):
    """Build a real requests.Response carrying a JSON (or raw text) body."""
    response = requests.Response()
    response.status_code = status_code
    response.url = url
    if isinstance(body, (dict, list)):
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = (body or "").encode("utf-8")
    return response


@pytest.fixture
def settings():
    return Settings(
        mpesa_environment="sandbox",
        mpesa_consumer_key="KEY",
        mpesa_consumer_secret="SECRET",
        mpesa_passkey="PASSKEY",
        mpesa_shortcode="SHORTCODE",
        callback_url="https://example.com/api/mpesa/callback",
    )


@pytest.fixture
def session():
    """Provider double: token exchange and push both succeed."""
    fake = MagicMock(spec=requests.Session)
    fake.get.return_value = make_response(200, {"access_token": "tok-123", "expires_in": "3599"})
    fake.post.return_value = make_response(
        200,
        {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "abc123",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        },
    )
    return fake


@pytest.fixture
def mpesa_client(settings, session):
    return MpesaClient(settings, session=session)


@pytest.fixture
def api(mpesa_client):
    import main

    main.registry.clear()
    main.app.dependency_overrides[main.get_mpesa_client] = lambda: mpesa_client
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()
    main.registry.clear()


def stk_callback(checkout_request_id="abc123", result_code=0, result_desc="The service request is processed successfully."):
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 1.0},
                {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                {"Name": "TransactionDate", "Value": 20250101120102},
                {"Name": "PhoneNumber", "Value": 254790652803},
            ]
        }
    return {"Body": {"stkCallback": callback}}
