import pytest
import requests
from fastapi import HTTPException

import sms


class FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data

    def json(self):
        return self._data


def test_fast2sms_posts_local_number(monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse(200, {"return": True, "request_id": "req_42"})

    monkeypatch.setattr(sms.requests, "post", fake_post)
    provider = sms.Fast2SMSProvider("api-key", url="https://sms.example/bulk")

    assert provider.send("+919876543210", "code 123456") == "req_42"
    url, kwargs = calls[0]
    assert url == "https://sms.example/bulk"
    assert kwargs["headers"]["authorization"] == "api-key"
    assert kwargs["json"]["numbers"] == "9876543210"
    assert kwargs["json"]["route"] == "v3"
    assert kwargs["timeout"] == 10


def test_fast2sms_rejection(monkeypatch):
    monkeypatch.setattr(sms.requests, "post", lambda url, **kw: FakeResponse(200, {"return": False, "message": ["Invalid Numbers"]}))
    with pytest.raises(HTTPException) as exc:
        sms.Fast2SMSProvider("api-key").send("+919876543210", "hi")
    assert exc.value.status_code == 502
    assert exc.value.detail == {"message": "Invalid Numbers", "code": "SMS_SEND_FAILED"}


def test_fast2sms_unreachable(monkeypatch):
    def down(url, **kwargs):
        raise requests.exceptions.Timeout("timed out")

    monkeypatch.setattr(sms.requests, "post", down)
    with pytest.raises(HTTPException) as exc:
        sms.Fast2SMSProvider("api-key").send("+919876543210", "hi")
    assert exc.value.detail["code"] == "SMS_SEND_FAILED"


def test_fast2sms_needs_key_and_indian_number():
    with pytest.raises(HTTPException) as exc:
        sms.Fast2SMSProvider(None).send("+919876543210", "hi")
    assert exc.value.detail["code"] == "SMS_NOT_CONFIGURED"

    with pytest.raises(HTTPException) as exc:
        sms.Fast2SMSProvider("api-key").send("+14155550100", "hi")
    assert exc.value.detail["code"] == "INVALID_PHONE"


def test_get_provider():
    assert sms.get_provider("mock").name == "mock"
    with pytest.raises(ValueError):
        sms.get_provider("carrier-pigeon")


def test_mask_phone():
    assert sms.mask_phone("+919876543210") == "*********3210"
