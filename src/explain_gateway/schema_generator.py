from __future__ import annotations

import argparse
import json
from typing import Any, Dict, List, Optional, Sequence, Type

from .models.base import DBSerializableModel
from .models.history import HistoryRecord
from .models.ledger import LedgerEntry
from .models.user import UserAccount


MODEL_REGISTRY: List[Type[DBSerializableModel]] = [
    UserAccount,
    HistoryRecord,
    LedgerEntry,
]

_BSON_TYPES = {
    "integer": "int",
    "number": "double",
    "boolean": "bool",
    "string": "string",
    "datetime": "date",
    "array": "array",
    "object": "object",
}


def generate_logical_schema() -> Dict[str, Any]:
    """
    Backend-agnostic description of every persisted model, keyed by collection.
    The SQL and MongoDB renderers below both start from this.
    """
    return {model.collection_name: model.db_schema() for model in MODEL_REGISTRY}


def render_sql_ddl(schema: Dict[str, Any], dialect: str = "postgres") -> str:
    statements: List[str] = []
    for table_name, spec in schema.items():
        pk = spec.get("primary_key") or "id"
        required = set(spec.get("required", []))
        columns: List[str] = []
        for field_name, meta in spec["properties"].items():
            sql_type = _map_logical_to_sql(meta["type"], dialect=dialect)
            # The primary key is generated by the backend, so it is nullable on the model.
            nullable = "NOT NULL" if field_name in required or field_name == pk else "NULL"
            columns.append(f'    "{field_name}" {sql_type} {nullable}')
        columns.append(f'    PRIMARY KEY ("{pk}")')
        statements.append(
            f'CREATE TABLE IF NOT EXISTS "{table_name}" (\n' + ",\n".join(columns) + "\n);\n"
        )
        for column in spec.get("indexes", []):
            statements.append(
                f'CREATE INDEX IF NOT EXISTS "ix_{table_name}_{column}" '
                f'ON "{table_name}" ("{column}");\n'
            )
    return "\n".join(statements)


def render_nosql_schema(schema: Dict[str, Any]) -> str:
    """
    Render MongoDB collection validators (`$jsonSchema`) and index specs,
    ready to pass to `createCollection` / `createIndex`.
    """
    collections: Dict[str, Any] = {}
    for name, spec in schema.items():
        properties: Dict[str, Any] = {}
        for field_name, meta in spec["properties"].items():
            bson_type = _BSON_TYPES.get(meta["type"], "object")
            properties[field_name] = {
                "bsonType": [bson_type, "null"] if meta["nullable"] else bson_type
            }
        collections[name] = {
            "validator": {
                "$jsonSchema": {
                    "bsonType": "object",
                    "required": [f for f in spec.get("required", []) if f != spec.get("primary_key")],
                    "properties": properties,
                }
            },
            "indexes": [{"key": {column: 1}} for column in spec.get("indexes", [])],
        }
    return json.dumps(collections, indent=2, default=str)


def _map_logical_to_sql(logical_type: str, dialect: str) -> str:
    logical_type = logical_type.lower()
    if logical_type == "integer":
        return "INTEGER"
    if logical_type == "number":
        return "DOUBLE PRECISION" if dialect == "postgres" else "DOUBLE"
    if logical_type == "boolean":
        return "BOOLEAN"
    if logical_type == "datetime":
        return "TIMESTAMP" if dialect == "postgres" else "DATETIME"
    if logical_type in {"object", "array"}:
        return "JSONB" if dialect == "postgres" else "JSON"
    return "TEXT"


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Generate DB schemas for the explain gateway."
    )
    parser.add_argument(
        "--backend",
        choices=["sql", "nosql"],
        required=True,
        help="Type of schema to generate.",
    )
    parser.add_argument(
        "--dialect",
        default="postgres",
        help="SQL dialect hint (e.g. postgres, mysql).",
    )
    args = parser.parse_args(argv)

    schema = generate_logical_schema()

    if args.backend == "sql":
        print(render_sql_ddl(schema, dialect=args.dialect))
    else:
        print(render_nosql_schema(schema))


if __name__ == "__main__":
    main()
