from __future__ import annotations

import json
from typing import Any, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from .errors import PayloadEncodingError


M = TypeVar("M", bound=BaseModel)


def marshal(value: Any) -> bytes:
    """Serialize a state value for upload.

    - Raw binary (bytes, bytearray, memoryview) passes through unchanged.
    - pydantic models are encoded from their JSON-mode dump.
    - Anything else, including str, is encoded as compact JSON text.

    Only the JSON form is stored, so the original Python type of a non-binary
    value does not survive a round trip.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    try:
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as ex:
        raise PayloadEncodingError(
            f"Cannot encode value of type {type(value).__name__} as JSON"
        ) from ex
    return text.encode("utf-8")


def unmarshal(data: Union[bytes, str], model: Optional[Type[M]] = None) -> Any:
    """Decode JSON text written by `marshal`; validates into `model` when given."""
    if model is not None:
        return model.model_validate_json(data)
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    return json.loads(data)
