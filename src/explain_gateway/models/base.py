from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Union, get_args, get_origin

from pydantic import BaseModel


class DBSerializableModel(BaseModel):
    """
    Base model for everything the gateway persists.

    - `serialize_for_db` is the single place that decides the stored shape.
    - `db_schema` describes the model for the offline schema generator;
      it never touches the database.
    """

    # Logical collection / table name; subclasses override
    collection_name: ClassVar[str]
    primary_key: ClassVar[Optional[str]] = "id"

    def serialize_for_db(self) -> Dict[str, Any]:
        data = self.model_dump(mode="python", exclude_none=True)
        return {k: v.value if isinstance(v, Enum) else v for k, v in data.items()}

    @classmethod
    def db_schema(cls) -> Dict[str, Any]:
        fields: Mapping[str, Any] = cls.model_fields

        properties: Dict[str, Any] = {}
        required: list[str] = []

        for name, field in fields.items():
            annotation, nullable = cls._unwrap_optional(field.annotation)
            properties[name] = {
                "type": cls._map_type(annotation),
                "nullable": nullable,
                "default": cls._plain_default(field.default),
                "description": field.description,
            }
            if field.is_required():
                required.append(name)

        return {
            "collection_name": cls.collection_name,
            "primary_key": cls.primary_key,
            "properties": properties,
            "required": required,
            "indexes": list(getattr(cls, "indexes", ())),
        }

    @staticmethod
    def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
        if get_origin(annotation) is Union:
            args = [a for a in get_args(annotation) if a is not type(None)]
            if len(args) == 1:
                return args[0], True
        return annotation, False

    @staticmethod
    def _plain_default(default: Any) -> Any:
        if isinstance(default, Enum):
            return default.value
        if isinstance(default, (str, int, float, bool)):
            return default
        return None

    @staticmethod
    def _map_type(annotation: Any) -> str:
        """Map an annotation to the logical type the schema renderers understand."""
        origin = get_origin(annotation)
        if origin in (list, tuple, set):
            return "array"
        if origin is dict or annotation is dict:
            return "object"

        if isinstance(annotation, type) and issubclass(annotation, Enum):
            return "string"
        if annotation is bool:
            return "boolean"
        if annotation is int:
            return "integer"
        if annotation is float:
            return "number"
        if annotation is str:
            return "string"
        if annotation is datetime:
            return "datetime"
        return "object"
