from __future__ import annotations

import math
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from app.db.documents import Document, DocumentSerializationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _reject_undefined(value: Any, *, path: str) -> None:
    if isinstance(value, float) and not math.isfinite(value):
        raise DocumentSerializationError(f"non-finite number at {path}")
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise DocumentSerializationError(f"non-string key at {path}")
            _reject_undefined(item, path=f"{path}.{key}")
        return
    if isinstance(value, list):
        for index, item in enumerate(value):
            _reject_undefined(item, path=f"{path}[{index}]")
        return
    if value is not None and not isinstance(value, (str, int, float, bool)):
        raise DocumentSerializationError(f"unsupported value {type(value).__name__} at {path}")


def dump_document(model: BaseModel) -> Document:
    """Serialize a document model, refusing values the store cannot represent."""
    payload = model.model_dump()
    _reject_undefined(payload, path=type(model).__name__)
    return payload


def load_document(model_cls: type[ModelT], raw: Document | None) -> ModelT | None:
    if raw is None:
        return None
    try:
        return model_cls.model_validate(raw)
    except ValidationError as exc:
        raise DocumentSerializationError(f"invalid {model_cls.__name__}: {exc}") from exc


def coerce_int(value: Any, *, default: int, minimum: int | None = None) -> int:
    """Best-effort integer for optional numeric fields of externally authored content."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, float):
        if not math.isfinite(value):
            return default
        value = int(value)
    if not isinstance(value, int):
        try:
            value = int(str(value).strip())
        except ValueError:
            return default
    if minimum is not None and value < minimum:
        return default
    return value
