"""
HTTP helpers shared by network backends.
Includes exponential backoff for rate-limit (429) responses.
"""

import json
import logging
import random
import time

import requests

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import ErrorCode, HTTP_ERROR_BODY_CHARS

logger = logging.getLogger(__name__)

_MAX_RATE_LIMIT_RETRIES = 4
_RATE_LIMIT_BASE_DELAY = 2.0   # seconds, doubles each retry with jitter


def request_with_backoff(method: str, url: str, service: str, timeout: float,
                         sleep=time.sleep, **kwargs) -> requests.Response:
    """
    Send a request and map transport failures to JobError codes.
    Retries up to 4 times with exponential backoff on 429 responses.
    Returns the 2xx response.
    """
    for attempt in range(_MAX_RATE_LIMIT_RETRIES + 1):
        try:
            resp = requests.request(method, url, timeout=timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise JobError(ErrorCode.PROCESSING_TIMEOUT, f"{service} request timed out")
        except requests.exceptions.ConnectionError:
            raise JobError(ErrorCode.NETWORK_TRANSIENT, f"Network error connecting to {service}")
        except requests.exceptions.RequestException as e:
            raise JobError(ErrorCode.PROCESSING_FAILED, f"{service} request failed: {e}", retryable=True)

        if resp.status_code == 429:
            if attempt < _MAX_RATE_LIMIT_RETRIES:
                # 2s, 4s, 8s, 16s (+/- 10%)
                delay = _RATE_LIMIT_BASE_DELAY * (2 ** attempt)
                delay *= 1 + random.uniform(-0.1, 0.1)
                logger.warning(
                    "%s rate limited (429), retrying in %.1fs (attempt %d/%d)",
                    service, delay, attempt + 1, _MAX_RATE_LIMIT_RETRIES,
                )
                sleep(delay)
                continue
            raise JobError(ErrorCode.QUOTA_EXCEEDED,
                           f"{service} rate limited (429) after {_MAX_RATE_LIMIT_RETRIES} retries")

        if resp.status_code in (502, 503, 504):
            raise JobError(ErrorCode.ENGINE_UNAVAILABLE,
                           f"{service} returned {resp.status_code}")

        if resp.status_code in (401, 403):
            raise JobError(ErrorCode.CONFIGURATION_MISSING,
                           f"{service} rejected the credentials ({resp.status_code})")

        if not 200 <= resp.status_code < 300:
            body = resp.text[:HTTP_ERROR_BODY_CHARS] if resp.text else "No response body"
            raise JobError(ErrorCode.PROCESSING_FAILED,
                           f"{service} returned {resp.status_code}: {body}")

        return resp

    raise JobError(ErrorCode.NETWORK_TRANSIENT, f"{service} request exhausted retries")


def response_json(resp: requests.Response, service: str) -> dict:
    try:
        return resp.json()
    except (json.JSONDecodeError, ValueError):
        raise JobError(ErrorCode.INVALID_RESULT_FORMAT, f"Failed to parse {service} response JSON")
