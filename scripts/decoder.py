"""
JSON decoding that tolerates duplicate object keys.

Some endpoints emit objects with repeated keys (``cpus`` on VM records is
the known case). Decoding is tried with a strict strategy first and only
falls back to a last-write-wins strategy when the strict one fails.
"""

import json
import logging
from typing import Any

from errors import DecodeError

logger = logging.getLogger(__name__)


class DuplicateKeyError(ValueError):
    def __init__(self, keys):
        self.keys = keys
        super().__init__(f"Duplicate keys in JSON object: {', '.join(keys)}")


def _reject_duplicates(pairs):
    seen = {}
    duplicates = []
    for key, value in pairs:
        if key in seen and key not in duplicates:
            duplicates.append(key)
        seen[key] = value
    if duplicates:
        raise DuplicateKeyError(duplicates)
    return seen


def _last_write_wins(pairs):
    result = {}
    for key, value in pairs:
        if key in result:
            logger.debug(f"Duplicate key '{key}' collapsed, keeping last value")
        result[key] = value
    return result


def decode_strict(text):
    return json.loads(text, object_pairs_hook=_reject_duplicates)


def decode_collapsing(text):
    return json.loads(text, object_pairs_hook=_last_write_wins)


STRATEGIES = (decode_strict, decode_collapsing)


def _decode_text(text):
    errors = []
    for strategy in STRATEGIES:
        try:
            return strategy(text)
        except (ValueError, TypeError, RecursionError) as e:
            logger.debug(f"{strategy.__name__} could not decode response: {e}")
            errors.append(f"{strategy.__name__}: {e}")
    raise DecodeError(f"Unable to decode response ({'; '.join(errors)})", body=text)


def decode(body) -> Any:
    """
    Decode a JSON response body.

    :param body: Response body as str or bytes
    :return: Decoded value, None for an empty body
    :raises DecodeError: If no strategy can decode the body
    """
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray)):
        try:
            body = body.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError(f"Response is not valid UTF-8: {e}", body=body)
    if not body.strip():
        return None
    value = _decode_text(body)
    # A JSON string holding a JSON document is decoded once more.
    if isinstance(value, str) and value.strip()[:1] in ('{', '['):
        try:
            return _decode_text(value)
        except DecodeError:
            logger.debug("Response string is not a nested JSON document, keeping it as-is")
    return value


def decode_response(response) -> Any:
    return decode(response.content)
