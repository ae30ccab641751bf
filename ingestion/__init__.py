"""
Pipeline components for IPEDS survey ingestion and consolidation.

Modules:
    naming: Table/column naming rules, year derivation, survey components
    downloader: Remote fetch with share-link resolution, retry and validation
    importer: One data file -> one per-year table (plus the import log)
    dictionary: Dictionary workbooks -> vartable<yy>, valuesets<yy>, tables<yy>
    consolidator: Per-year tables -> <component>_all union views
    listing: NCES DataFiles page -> SourceFile descriptors
    runner: Update orchestrator tying the above together
    validation: Post-import checks and database status

Subpackages:
    transformers: Type coercion, character sanitization, year injection

Architecture:
    Downloader -> Importer -> Schema Consolidator -> Update Runner

    Each per-file step returns a result value instead of raising, so one
    bad file or table never aborts its siblings.

Usage:
    from ingestion.listing import NcesFileLister
    from ingestion.runner import UpdateRunner

Example:
    with StoreSession() as store:
        runner = UpdateRunner(store, NcesFileLister())
        summary = runner.run([2023])

    print(f"Imported {summary.files_imported} files")

Error Handling:
    All components use custom exceptions from core.exceptions with
    structured context; see core/exceptions.py for the hierarchy.
"""

__all__ = [
    "Downloader",
    "DataImporter",
    "DictionaryImporter",
    "SchemaConsolidator",
    "NcesFileLister",
    "UpdateRunner",
]
