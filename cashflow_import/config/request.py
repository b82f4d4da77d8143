from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema.exceptions import ValidationError

from ..models.mapping import (
    AmountMapping,
    Assignment,
    AutoTypeMapping,
    ColumnDateMapping,
    ColumnMapping,
    ColumnRef,
    ColumnTypeMapping,
    DateMapping,
    FixedDateMapping,
    FixedTypeMapping,
    ImportRequest,
    PostingDateMapping,
    SameAsTransactionDate,
    SingleAmountMapping,
    SplitAmountMapping,
    TypeMapping,
)

"""Boundary validation of transform/commit requests.

Loosely-typed request dicts are checked once against
``schemas/import_request.json`` and converted into the tagged-union mapping
dataclasses; nothing past this module ever sees a raw mapping dict.
"""

__all__ = [
    "REQUEST_SCHEMA_PATH",
    "MappingError",
    "parse_import_request",
]

REQUEST_SCHEMA_PATH = Path(__file__).parent / "schemas" / "import_request.json"

_schema_cache: dict[str, Any] | None = None


class MappingError(Exception):
    """Malformed import request or column mapping (request-level, fatal)."""


def _schema() -> dict[str, Any]:
    global _schema_cache
    if _schema_cache is None:
        _schema_cache = json.loads(REQUEST_SCHEMA_PATH.read_text(encoding="utf-8"))
    return _schema_cache


def _prepare(data: Mapping[str, Any]) -> dict[str, Any]:
    """Fill the optional parts of a request with their defaults."""
    prepared = copy.deepcopy(dict(data))
    mapping = prepared.get("mapping")
    if isinstance(mapping, dict):
        for key, mode in (("type", "auto_from_amount"), ("posting_date", "same_as_transaction")):
            section = mapping.get(key) or {}
            if isinstance(section, dict):
                section.setdefault("mode", mode)
            mapping[key] = section
    for key, empty in (("excluded_rows", []), ("row_assignments", {}), ("defaults", {})):
        if prepared.get(key) is None:
            prepared[key] = empty
    return prepared


def _column_ref(raw: Mapping[str, Any] | None) -> ColumnRef | None:
    if not raw:
        return None
    return ColumnRef(column=raw.get("column"))


def _amount(raw: Mapping[str, Any]) -> AmountMapping:
    if raw["mode"] == "split":
        return SplitAmountMapping(
            debit_column=raw.get("debit_column"),
            credit_column=raw.get("credit_column"),
        )
    return SingleAmountMapping(column=raw.get("column"), negate=bool(raw.get("negate") or False))


def _type(raw: Mapping[str, Any]) -> TypeMapping:
    mode = raw.get("mode", "auto_from_amount")
    if mode == "fixed":
        return FixedTypeMapping(fixed_value=raw.get("fixed_value"))
    if mode == "column":
        return ColumnTypeMapping(
            column=raw.get("column"),
            income_values=tuple(v for v in raw.get("income_values") or [] if v is not None),
            expense_values=tuple(v for v in raw.get("expense_values") or [] if v is not None),
        )
    return AutoTypeMapping()


def _posting_date(raw: Mapping[str, Any]) -> PostingDateMapping:
    mode = raw.get("mode", "same_as_transaction")
    if mode == "column":
        return ColumnDateMapping(column=raw.get("column"), format=raw.get("format"))
    if mode == "fixed":
        return FixedDateMapping(value=raw.get("value"), format=raw.get("format"))
    return SameAsTransactionDate()


def _assignment(raw: Mapping[str, Any] | None) -> Assignment:
    raw = raw or {}
    return Assignment(
        category_id=raw.get("category_id"),
        cash_flow_source_id=raw.get("cash_flow_source_id"),
        notes=raw.get("notes"),
    )


def parse_import_request(data: Mapping[str, Any]) -> ImportRequest:
    """Validate a raw transform/commit request and build an ImportRequest.

    Raises:
        MappingError: the request violates the request schema
    """
    if not isinstance(data, Mapping):
        raise MappingError("request must be an object")
    prepared = _prepare(data)
    try:
        jsonschema.validate(prepared, _schema())
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise MappingError(f"invalid import request at {where}: {e.message}") from e

    raw_mapping = prepared["mapping"]
    mapping = ColumnMapping(
        date=DateMapping(column=raw_mapping["date"]["column"], format=raw_mapping["date"].get("format")),
        description=ColumnRef(column=raw_mapping["description"]["column"]),
        amount=_amount(raw_mapping["amount"]),
        type=_type(raw_mapping["type"]),
        posting_date=_posting_date(raw_mapping["posting_date"]),
        reference=_column_ref(raw_mapping.get("reference")),
        notes=_column_ref(raw_mapping.get("notes")),
    )
    return ImportRequest(
        mapping=mapping,
        excluded_rows=frozenset(int(i) for i in prepared["excluded_rows"]),
        header_row_index=prepared.get("header_row_index"),
        defaults=_assignment(prepared["defaults"]),
        row_assignments={str(k): _assignment(v) for k, v in prepared["row_assignments"].items()},
    )
