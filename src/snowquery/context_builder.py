"""Builds the schema document the language model translates against.

Raw introspected schema and curated metadata are merged at read time into
one markdown-ish document, in this order:

1. target database/schema identifiers
2. business glossary
3. one section per table: description (curated wins over the raw comment),
   grain, source, update frequency, notes, joins, filters, a column table,
   and worked example queries

Curated fields that failed to parse arrive here as None and are skipped.
"""
import logging
from typing import Any, Iterable, Optional

from .metadata_store import MetadataStore
from .schema_cache import SchemaCache
from .schemas_metadata import (
    BusinessTerm,
    ColumnMetadata,
    ColumnOverlay,
    SchemaSnapshot,
    TableMetadata,
    TableOverlay,
)
from .schemas_tenant import ResolvedTenant
from .tenants import TenantConfigResolver

logger = logging.getLogger(__name__)

COLUMN_TABLE_HEADER = (
    "| Column | Type | Description | Synonyms | Sample Values |",
    "|--------|------|-------------|----------|---------------|",
)


def _cell(text: Any) -> str:
    """Make a value safe for one markdown table cell."""
    return str(text).replace("\n", " ").replace("|", "\\|").strip()


def _join(values: Optional[Iterable[Any]], sep: str = ", ") -> str:
    return sep.join(str(v) for v in values) if values else ""


def column_description(column: ColumnMetadata, overlay: Optional[ColumnOverlay]) -> str:
    """Merged description with unit, computed logic and key markers.

    Example:
        >>> column_description(ColumnMetadata(name="MEMBER_ID", type="NUMBER"),
        ...                    ColumnOverlay(column_name="MEMBER_ID", description="Member key",
        ...                                  is_primary_key=True))
        'PK. Member key'
    """
    if overlay is None:
        return column.comment
    desc = overlay.description or column.comment
    if overlay.unit:
        desc += f" ({overlay.unit})"
    if overlay.computed_logic:
        desc += f" [Computed: {overlay.computed_logic}]"
    if overlay.is_primary_key:
        desc = "PK. " + desc
    if overlay.is_foreign_key:
        desc = f"FK->{overlay.foreign_key_ref or '?'}. " + desc
    return desc.strip()


def sample_text(overlay: Optional[ColumnOverlay]) -> str:
    """Value mapping ("code=label") when present, else the sample values."""
    if overlay is None:
        return ""
    if overlay.value_mapping:
        return ", ".join(f"{k}={v}" for k, v in overlay.value_mapping.items())
    return _join(overlay.sample_values)


def format_glossary(terms: list[BusinessTerm]) -> list[str]:
    if not terms:
        return []
    lines = [
        "## Business Glossary",
        "These are domain-specific terms the user may use. Map them to the correct SQL.",
        "",
    ]
    for term in terms:
        lines.append(f"**{term.term}**")
        if term.definition:
            lines.append(f"  Definition: {term.definition}")
        if term.sql_mapping:
            lines.append(f"  SQL: {term.sql_mapping}")
        if term.related_tables:
            lines.append(f"  Tables: {_join(term.related_tables)}")
        lines.append("")
    return lines


def format_table(table: TableMetadata, overlay: Optional[TableOverlay]) -> list[str]:
    display_name = (overlay.display_name if overlay else None) or table.name
    lines = [f"### {display_name} ({table.qualified_name}) - {table.kind}, ~{table.row_count:,} rows"]

    description = (overlay.description if overlay else None) or table.comment
    if description:
        lines.append(f"**Description:** {description}")

    if overlay is not None:
        if overlay.grain_description:
            lines.append(f"**Grain:** {overlay.grain_description}")
        if overlay.data_source:
            lines.append(f"**Source:** {overlay.data_source}")
        if overlay.update_frequency:
            lines.append(f"**Updated:** {overlay.update_frequency}")
        if overlay.important_notes:
            lines.append(f"**Notes:** {overlay.important_notes}")
        if overlay.common_joins:
            lines.append("**Common Joins:**")
            for join in overlay.common_joins:
                lines.append(f"  - {join.type or 'JOIN'} {join.table} ON {join.on}")
        if overlay.common_filters:
            lines.append(f"**Common Filters:** {_join(overlay.common_filters, ' | ')}")

    lines.append("")
    lines.extend(COLUMN_TABLE_HEADER)
    column_overlays = overlay.column_map() if overlay else {}
    for column in table.columns:
        col_overlay = column_overlays.get(column.name)
        nullable = "NULL" if column.nullable else "NOT NULL"
        lines.append(
            f"| {_cell(column.name)} | {_cell(column.data_type)} {nullable} "
            f"| {_cell(column_description(column, col_overlay))} "
            f"| {_cell(_join(col_overlay.synonyms if col_overlay else None))} "
            f"| {_cell(sample_text(col_overlay))} |"
        )

    if overlay is not None and overlay.sample_queries:
        lines.append("")
        lines.append("**Example queries:**")
        for example in overlay.sample_queries:
            lines.append(f'  Q: "{example.question}"')
            lines.append(f"  SQL: {example.sql}")

    lines.append("")
    return lines


def render_context(
    database: str,
    schemas: list[str],
    snapshot: SchemaSnapshot,
    overlays: list[TableOverlay],
    terms: list[BusinessTerm]
) -> str:
    """Pure rendering step of ContextBuilder.build."""
    by_name = {o.table_name: o for o in overlays}
    by_upper = {o.table_name.upper(): o for o in overlays}

    lines = [f"Database: {database}", f"Schema: {schemas[0]}"]
    if len(schemas) > 1:
        lines.append(f"Additional schemas: {', '.join(schemas[1:])}")
    lines.append("")

    lines.extend(format_glossary(terms))

    lines.append("## Available Tables")
    lines.append("")
    for table in snapshot.tables:
        overlay = by_name.get(table.name) or by_upper.get(table.name.upper())
        lines.extend(format_table(table, overlay))

    return "\n".join(lines)


class ContextBuilder:
    """Merges the cached schema with the tenant's curated metadata.

    Example:
        >>> builder = ContextBuilder(resolver, schema_cache, store)
        >>> print(builder.build("acme").splitlines()[0])
        Database: ANALYTICS_DB
    """

    def __init__(self, resolver: TenantConfigResolver, schema_cache: SchemaCache, store: MetadataStore):
        self._resolver = resolver
        self._schema_cache = schema_cache
        self._store = store

    def build(self, tenant_id: str, resolved: Optional[ResolvedTenant] = None) -> str:
        """Return the context document for a tenant.

        Raises:
            ConfigurationError, ConnectionError, IntrospectionError: From the
                schema cache when no fresh snapshot can be produced.
        """
        resolved = resolved or self._resolver.resolve(tenant_id)
        snapshot = self._schema_cache.get(tenant_id, resolved=resolved)
        overlays = self._store.get_table_metadata(tenant_id)
        terms = self._store.get_business_terms(tenant_id)

        logger.debug(
            "Building context for tenant %s: %d tables, %d overlays, %d terms",
            tenant_id, len(snapshot.tables), len(overlays), len(terms)
        )
        return render_context(resolved.config.database, resolved.config.schemas, snapshot, overlays, terms)
