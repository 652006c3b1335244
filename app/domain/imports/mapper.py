"""
Column mapping from arbitrary spreadsheet headers onto a canonical schema.

Binding rules, applied per row:

1. Exact pass. For each canonical field, the first alias (in declared order)
   whose normalised form equals a normalised source column binds it.
2. Partial pass. Fields still unbound consider source columns not already
   claimed by an exact match. An alias and a column match when either
   contains the other. The longest matching alias wins; ties go to the
   earlier alias and then to the earlier source column.

Normalisation lowercases and strips every non-alphanumeric character, so
"Phone Number", "phone_number" and "PHONE-NUMBER" are the same key.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import re
import logging

from app.domain.imports.canonical_schemas import CORE_FIELDS, CanonicalSchema, is_date_field
from app.utils.date import parse_flexible_date

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")

EXACT_MATCH = "exact"
PARTIAL_MATCH = "partial"


def normalize_key(value: Any) -> str:
    return _NON_ALNUM.sub("", str(value).lower())


@dataclass(frozen=True)
class ColumnBinding:
    target_field: str
    source_column: str
    alias: str
    match_type: str


@dataclass(frozen=True)
class ValueCoercion:
    target_field: str
    source_column: str
    original: Any
    coerced: Any


@dataclass
class MappedRow:
    core: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    bindings: Dict[str, ColumnBinding] = field(default_factory=dict)
    coercions: List[ValueCoercion] = field(default_factory=list)

    def resolved(self, target_field: str) -> bool:
        return target_field in self.core or target_field in self.metadata


def _index_columns(columns: Iterable[str]) -> List[Tuple[str, str]]:
    """Ordered (normalised key, original column) pairs; first column wins on collisions."""
    seen = set()
    index = []
    for column in columns:
        key = normalize_key(column)
        if not key or key in seen:
            continue
        seen.add(key)
        index.append((key, column))
    return index


def resolve_column_bindings(schema: CanonicalSchema, columns: Sequence[str]) -> Dict[str, ColumnBinding]:
    """
    Decide which source column feeds each canonical field.

    Fields without any matching column are absent from the result.
    """
    index = _index_columns(columns)
    by_key = dict(index)
    bindings: Dict[str, ColumnBinding] = {}

    for target_field, aliases in schema.items():
        for alias in aliases:
            alias_key = normalize_key(alias)
            if alias_key and alias_key in by_key:
                bindings[target_field] = ColumnBinding(target_field, by_key[alias_key], alias, EXACT_MATCH)
                break

    claimed = {binding.source_column for binding in bindings.values()}

    for target_field, aliases in schema.items():
        if target_field in bindings:
            continue
        best: Optional[ColumnBinding] = None
        best_rank: Optional[Tuple[int, int, int]] = None
        for alias_pos, alias in enumerate(aliases):
            alias_key = normalize_key(alias)
            if not alias_key:
                continue
            for column_pos, (key, column) in enumerate(index):
                if column in claimed:
                    continue
                if alias_key in key or key in alias_key:
                    rank = (len(alias_key), -alias_pos, -column_pos)
                    if best_rank is None or rank > best_rank:
                        best_rank = rank
                        best = ColumnBinding(target_field, column, alias, PARTIAL_MATCH)
        if best is not None:
            bindings[target_field] = best

    return bindings


def extract_value(target_field: str, value: Any) -> Tuple[Any, bool]:
    """
    Clean a bound cell value for ``target_field``.

    Returns (value, coerced). Text is trimmed and blank text becomes None.
    Date fields holding text with '/' or '-' are rewritten as ISO dates when
    they parse; otherwise the trimmed text is kept as-is.
    """
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None, False
    if value is None:
        return None, False

    if is_date_field(target_field) and isinstance(value, str) and ('/' in value or '-' in value):
        parsed = parse_flexible_date(value, log_context=target_field)
        if parsed is not None:
            return parsed, parsed != value
    return value, False


def map_row(
    schema: CanonicalSchema,
    row: Dict[str, Any],
    core_fields: Iterable[str] = CORE_FIELDS,
    bindings: Optional[Dict[str, ColumnBinding]] = None,
) -> MappedRow:
    """
    Map one row onto ``schema``, splitting resolved fields into core and metadata.

    ``bindings`` may be passed in when the caller already resolved them for
    this row's column set. Unbound source columns are not copied anywhere;
    callers keep the untouched row for that.
    """
    if bindings is None:
        bindings = resolve_column_bindings(schema, list(row.keys()))
    core_fields = set(core_fields)

    mapped = MappedRow(bindings=bindings)
    for target_field in schema:
        binding = bindings.get(target_field)
        if binding is None:
            continue
        original = row.get(binding.source_column)
        value, coerced = extract_value(target_field, original)
        if value is None:
            continue
        if coerced:
            mapped.coercions.append(ValueCoercion(target_field, binding.source_column, original, value))
        if target_field in core_fields:
            mapped.core[target_field] = value
        else:
            mapped.metadata[target_field] = value

    return mapped
