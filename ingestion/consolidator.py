"""
Schema-drift-tolerant consolidation of per-year tables into one view.

For a survey component the consolidator reflects every live per-year table,
builds the ordered superset of their (canonicalized) columns and creates

    <component>_all = SELECT ... FROM t1 UNION ALL SELECT ... FROM t2 ...

where each projection pads the columns its table lacks with typed NULLs and
appends the table's year as a literal YEAR column. The view is always rebuilt
in full from the live tables, never patched.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set
import logging

from sqlalchemy import Integer, Text, cast, column, literal, null, select, table, union_all
from sqlalchemy.sql.expression import Selectable
from sqlalchemy.types import Boolean, Date, DateTime, Float, Numeric, String, TypeEngine

from core.database import StoreSession
from core.exceptions import SchemaUnionError, StoreWriteError
from ingestion.naming import (
    METADATA_COMPONENTS,
    SurveyComponent,
    canonical_column_name,
    derive_year,
    is_year_column,
)
from ingestion.transformers.coercion import YEAR_COLUMN
from schemas.results import ConsolidationResult, ConsolidationStatus
from schemas.source import ConsolidatedView

logger = logging.getLogger(__name__)


def type_family(type_: TypeEngine) -> str:
    """Coarse family of a declared type; drift within a family is harmless."""
    if isinstance(type_, Boolean):
        return "boolean"
    if isinstance(type_, Integer):
        return "integer"
    if isinstance(type_, (Float, Numeric)):
        return "numeric"
    if isinstance(type_, (Date, DateTime)):
        return "temporal"
    if isinstance(type_, String):
        return "text"
    return str(type_).lower()


@dataclass
class SourceTable:
    """A reflected per-year table: canonical key -> original column name."""

    name: str
    year: int
    columns: Dict[str, str] = field(default_factory=dict)


@dataclass
class ColumnSuperset:
    """Ordered union of canonical columns with first-seen types."""

    names: Dict[str, str] = field(default_factory=dict)  # key -> canonical spelling
    types: Dict[str, TypeEngine] = field(default_factory=dict)
    families: Dict[str, Set[str]] = field(default_factory=dict)

    def add(self, key: str, name: str, type_: TypeEngine):
        if key not in self.names:
            self.names[key] = name
            self.types[key] = type_
            self.families[key] = set()
        self.families[key].add(type_family(type_))

    def keys(self) -> List[str]:
        return list(self.names)

    def conflicting(self) -> List[str]:
        return [key for key, families in self.families.items() if len(families) > 1]


class ProjectionBuilder:
    """
    Build the per-table projections and their UNION ALL.

    Args:
        superset: Columns of the view, in order
        cast_keys: Columns cast to text in every projection
    """

    def __init__(self, superset: ColumnSuperset, cast_keys: Iterable[str] = ()):
        self.superset = superset
        self.cast_keys = set(cast_keys)

    def padded_columns(self, source: SourceTable) -> List[str]:
        return [self.superset.names[k] for k in self.superset.keys() if k not in source.columns]

    def projection(self, source: SourceTable) -> Selectable:
        relation = table(source.name, *[column(c) for c in source.columns.values()])
        items = []
        for key in self.superset.keys():
            label = self.superset.names[key]
            if key in source.columns:
                expr = relation.c[source.columns[key]]
                if key in self.cast_keys:
                    expr = cast(expr, Text)
            else:
                type_ = Text() if key in self.cast_keys else self.superset.types[key]
                expr = cast(null(), type_)
            items.append(expr.label(label))
        items.append(literal(source.year, Integer).label(YEAR_COLUMN))
        return select(*items).select_from(relation)

    def build(self, sources: List[SourceTable]) -> Selectable:
        projections = [self.projection(s) for s in sources]
        if len(projections) == 1:
            return projections[0]
        return union_all(*projections)


class SchemaConsolidator:
    """Rebuild consolidated views from the live per-year tables."""

    def __init__(self, store: StoreSession):
        self.store = store

    def source_tables(self, component: SurveyComponent) -> List[SourceTable]:
        """Pass 1: matching tables ordered by year then name, columns canonicalized."""
        names = [n for n in self.store.list_tables() if component.matches(n)]
        names.sort(key=lambda n: (derive_year(n) or 0, n))
        return [
            SourceTable(name=n, year=derive_year(n))
            for n in names
            if derive_year(n) is not None
        ]

    def collect(self, sources: List[SourceTable]) -> ColumnSuperset:
        superset = ColumnSuperset()
        for source in sources:
            for original, type_ in self.store.list_columns(source.name):
                if is_year_column(original):
                    continue
                canonical = canonical_column_name(original)
                key = canonical.lower()
                if key in source.columns:
                    logger.debug(f"{source.name}: {original} duplicates {source.columns[key]}, ignored")
                    continue
                source.columns[key] = original
                superset.add(key, canonical, type_)
        return superset

    def consolidate(self, component: SurveyComponent) -> ConsolidationResult:
        """
        Rebuild the view of one component.

        Returns a skipped result when no table matches, and a failed result
        (never an exception) when the store rejects the view even after
        casting the type-changed columns to text.
        """
        view_name = component.view_name
        sources = self.source_tables(component)
        if not sources:
            if view_name in self.store.list_views():
                # A view left over from dropped tables would fail on every read
                try:
                    self.store.drop_relation(view_name)
                except StoreWriteError as e:
                    logger.error(f"Dropping stale {view_name} failed: {e.message}")
                    return ConsolidationResult(
                        component=component.name,
                        view_name=view_name,
                        status=ConsolidationStatus.FAILED,
                        error=str(e)
                    )
                logger.warning(f"No tables left for {component.name}; dropped {view_name}")
            else:
                logger.info(f"No tables for {component.name}; {view_name} not rebuilt")
            return ConsolidationResult(
                component=component.name,
                view_name=view_name,
                status=ConsolidationStatus.SKIPPED
            )

        superset = self.collect(sources)
        builder = ProjectionBuilder(superset)
        padded = {s.name: builder.padded_columns(s) for s in sources}
        padded = {name: cols for name, cols in padded.items() if cols}
        cast_columns: List[str] = []

        try:
            try:
                self.store.create_view(view_name, builder.build(sources))
            except StoreWriteError as e:
                conflicting = superset.conflicting()
                if not conflicting:
                    raise
                cast_columns = [superset.names[k] for k in conflicting]
                logger.warning(
                    f"{view_name} rejected ({e.message}); retrying with text casts. "
                    f"Padded (absent) columns: {padded or 'none'}. "
                    f"Cast (type changed) columns: {cast_columns}"
                )
                try:
                    self.store.create_view(
                        view_name, ProjectionBuilder(superset, conflicting).build(sources)
                    )
                except StoreWriteError as retry_error:
                    raise SchemaUnionError(
                        f"Cannot create {view_name} even with text casts",
                        context={"component": component.name, "cast_columns": cast_columns},
                        original_exception=retry_error.original_exception or retry_error
                    )
        except StoreWriteError as e:
            logger.error(
                f"Consolidation of {component.name} failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return ConsolidationResult(
                component=component.name,
                view_name=view_name,
                status=ConsolidationStatus.FAILED,
                padded_columns=padded,
                cast_columns=cast_columns,
                error=str(e)
            )

        view = ConsolidatedView(
            component_name=component.name,
            view_name=view_name,
            column_superset=[superset.names[k] for k in superset.keys()],
            source_tables=[s.name for s in sources],
            year_column=YEAR_COLUMN
        )
        logger.info(
            f"Rebuilt {view_name} from {len(sources)} tables, "
            f"{len(view.column_superset)} columns"
        )
        return ConsolidationResult(
            component=component.name,
            view_name=view_name,
            status=ConsolidationStatus.BUILT,
            view=view,
            padded_columns=padded,
            cast_columns=cast_columns
        )

    def consolidate_all(
        self,
        components: Optional[Iterable[SurveyComponent]] = None
    ) -> List[ConsolidationResult]:
        """Rebuild each component's view in turn; one failure does not stop the rest."""
        components = METADATA_COMPONENTS if components is None else components
        return [self.consolidate(c) for c in components]
