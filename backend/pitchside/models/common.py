"""
backend/pitchside/models/common.py

Purpose:
    Bridging between Mongo documents and the record models: id parsing for
    path parameters and payload references, and document-to-model loading.

Dependencies:
    - bson.ObjectId
    - pydantic
"""

from typing import Any, Optional, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel

from pitchside.errors import NotFoundError

ModelT = TypeVar("ModelT", bound=BaseModel)


def to_object_id(raw: Any, *, what: str = "Record") -> ObjectId:
    """Parse an id; a malformed id reads as a record that does not exist."""
    if isinstance(raw, ObjectId):
        return raw
    try:
        return ObjectId(str(raw))
    except (InvalidId, TypeError):
        raise NotFoundError(f"{what} not found.")


def from_doc(model: type[ModelT], doc: Optional[dict]) -> Optional[ModelT]:
    """Validate a stored document into ``model``, exposing ``_id`` as ``id``."""
    if doc is None:
        return None
    fields = {("id" if key == "_id" else key): value for key, value in doc.items()}
    if "id" in fields:
        fields["id"] = str(fields["id"])
    return model.model_validate(fields)
