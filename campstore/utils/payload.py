"""Helpers for reading JSON request payloads."""
import json
from typing import Any, Dict

from flask import request

from campstore.exceptions import ValidationError

MISSING = object()


def json_body() -> Dict[str, Any]:
    """The request's JSON object body; {} when none was sent."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object', field='body')
    return data


def int_field(data: Dict[str, Any], name: str, default=MISSING):
    """Read an integer, raising ValidationError when missing (no default) or malformed."""
    value = data.get(name)
    if value is None or value == '':
        if default is MISSING:
            raise ValidationError(f'{name} is required', field=name)
        return default
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be an integer', field=name)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer', field=name)


def parse_json_field(raw, name: str) -> Dict[str, Any]:
    """Decode a JSON object sent as a multipart form field."""
    if raw is None or raw == '':
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be valid JSON', field=name)
    if not isinstance(data, dict):
        raise ValidationError(f'{name} must be a JSON object', field=name)
    return data
