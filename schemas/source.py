"""
Pydantic schemas for the pipeline's core entities with validation
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from models.base import FileKind
from ingestion.naming import canonical_table_name, derive_year


class SourceFile(BaseModel):
    """
    One downloadable remote artifact, as produced by a file lister.

    Ensures:
    - table_name is canonical (lowercase, no archive suffix)
    - survey_component is lowercase
    - Instances are immutable
    """

    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=1900, le=2100)
    survey_component: str = Field(..., min_length=1, max_length=50)
    kind: FileKind
    url: str = Field(..., min_length=1, max_length=2048)
    table_name: str = Field(..., min_length=1, max_length=100)

    @field_validator("table_name")
    @classmethod
    def normalize_table_name(cls, v):
        """Canonical lowercase table name"""
        return canonical_table_name(v)

    @field_validator("survey_component")
    @classmethod
    def normalize_component(cls, v):
        v = v.strip().lower()
        if not v:
            raise ValueError("survey_component cannot be empty")
        return v

    @property
    def is_dictionary(self) -> bool:
        return self.kind == FileKind.DICTIONARY


class ColumnInfo(BaseModel):
    """A column of a persisted table and its declared type"""

    model_config = ConfigDict(frozen=True)

    name: str
    declared_type: str


class ImportedTable(BaseModel):
    """A per-year table persisted in the store"""

    name: str
    year: Optional[int] = None
    columns: List[ColumnInfo] = Field(default_factory=list)
    row_count: int = Field(0, ge=0)

    @field_validator("name")
    @classmethod
    def lowercase_name(cls, v):
        if v != v.lower():
            raise ValueError(f"Table name must be lowercase: {v}")
        return v

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @classmethod
    def from_columns(cls, name: str, columns, row_count: int) -> "ImportedTable":
        """Build from (name, type) pairs as returned by StoreSession.list_columns"""
        return cls(
            name=name,
            year=derive_year(name),
            columns=[ColumnInfo(name=col, declared_type=str(col_type)) for col, col_type in columns],
            row_count=row_count
        )


class ConsolidatedView(BaseModel):
    """A fully rebuilt cross-year union view of one survey component"""

    component_name: str
    view_name: str
    column_superset: List[str] = Field(default_factory=list)
    source_tables: List[str] = Field(default_factory=list)
    year_column: str = "YEAR"
    row_count: Optional[int] = None

    @property
    def columns(self) -> List[str]:
        """View columns in order, year column last"""
        return self.column_superset + [self.year_column]
