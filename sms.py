"""
Outbound SMS delivery for one-time codes.

`mock` only logs the message; `fast2sms` posts to the Fast2SMS bulk API, which
accepts 10-digit Indian numbers without the country code.
"""
import logging
import re
from typing import Optional

import requests
from fastapi import HTTPException

from settings import FAST2SMS_API_KEY, FAST2SMS_URL, HTTP_TIMEOUT, SMS_PROVIDER

logger = logging.getLogger(__name__)


def mask_phone(phone: str) -> str:
    if len(phone) <= 4:
        return phone
    return "*" * (len(phone) - 4) + phone[-4:]


def local_indian_number(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("91") and len(digits) == 12:
        digits = digits[2:]
    if len(digits) != 10:
        raise HTTPException(status_code=400, detail={"message": "Invalid Indian phone number format", "code": "INVALID_PHONE"})
    return digits


class MockSMSProvider:
    name = "mock"

    def send(self, phone: str, message: str) -> Optional[str]:
        logger.info("SMS to %s: %s", mask_phone(phone), message)
        return None


class Fast2SMSProvider:
    name = "fast2sms"

    def __init__(self, api_key: Optional[str], url: str = FAST2SMS_URL):
        self.api_key = api_key
        self.url = url

    def send(self, phone: str, message: str) -> Optional[str]:
        if not self.api_key:
            raise HTTPException(status_code=500, detail={"message": "SMS provider is not configured", "code": "SMS_NOT_CONFIGURED"})
        number = local_indian_number(phone)
        try:
            resp = requests.post(
                self.url,
                headers={"authorization": self.api_key, "Content-Type": "application/json"},
                json={
                    "route": "v3",
                    "sender_id": "TXTIND",
                    "message": message,
                    "language": "english",
                    "flash": 0,
                    "numbers": number,
                },
                timeout=HTTP_TIMEOUT,
            )
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Fast2SMS request failed for %s: %s", mask_phone(phone), e)
            raise HTTPException(status_code=502, detail={"message": "SMS service is unreachable. Please try again shortly.", "code": "SMS_SEND_FAILED"})

        if resp.status_code != 200 or data.get("return") is not True:
            message = data.get("message") or "Fast2SMS request failed"
            if isinstance(message, list):
                message = "; ".join(message)
            logger.warning("Fast2SMS rejected message for %s: %s", mask_phone(phone), message)
            raise HTTPException(status_code=502, detail={"message": message, "code": "SMS_SEND_FAILED"})
        return data.get("request_id")


def get_provider(name: str = SMS_PROVIDER):
    if name == "fast2sms":
        return Fast2SMSProvider(FAST2SMS_API_KEY)
    if name == "mock":
        return MockSMSProvider()
    raise ValueError(f"Unknown SMS provider: {name}")


provider = get_provider()
