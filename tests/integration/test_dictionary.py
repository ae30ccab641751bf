"""
Integration tests for dictionary workbook import and the yearly catalog
"""

import pandas as pd

from conftest import workbook_bytes, zip_bytes
from ingestion.dictionary import DictionaryImporter, read_workbook
from models.base import FileKind, ImportStatus
from schemas.source import SourceFile


def dictionary_source(name: str = "HD2023_Dict.zip", year: int = 2023) -> SourceFile:
    return SourceFile(
        year=year,
        survey_component="hd",
        kind=FileKind.DICTIONARY,
        url=f"https://nces.ed.gov/ipeds/datacenter/data/{name}",
        table_name=name
    )


LABELS = pd.DataFrame({
    "varName": ["SECTOR", "SECTOR"],
    "Codevalue": ["1", "2"],
    "valueLabel": ["Public, 4-year or above", "Private not-for-profit, 4-year or above"],
})


class TestReadWorkbook:
    """Test sheet-to-role mapping"""

    def test_both_roles(self, tmp_path, dictionary_zip):
        """Test both roles"""
        path = tmp_path / "hd2023_dict.zip"
        path.write_bytes(dictionary_zip)

        payload = read_workbook(path)

        assert payload.roles() == ["variables", "value_labels"]
        assert payload.variables["varName"].tolist() == ["UNITID", "SECTOR"]

    def test_labels_only_workbook(self, tmp_path):
        """Test labels only workbook"""
        path = tmp_path / "hd2023_dict.zip"
        path.write_bytes(zip_bytes({"hd2023.xlsx": workbook_bytes({"Frequencies": LABELS})}))

        payload = read_workbook(path)

        assert payload.variables is None
        assert len(payload.value_labels) == 2

    def test_sheet_names_case_insensitive(self, tmp_path):
        """Test sheet names case insensitive"""
        path = tmp_path / "hd2023.xlsx"
        path.write_bytes(workbook_bytes({"varlist": pd.DataFrame({"VarName": ["UNITID"]})}))

        payload = read_workbook(path)

        assert list(payload.variables.columns) == ["varName"]

    def test_description_preferred_over_frequencies(self, tmp_path):
        """Test description preferred over frequencies"""
        frequencies = pd.DataFrame({"varName": ["X"], "Frequency": ["10"]})
        path = tmp_path / "hd2023.xlsx"
        path.write_bytes(workbook_bytes({"Frequencies": frequencies, "Description": LABELS}))

        payload = read_workbook(path)

        assert "valueLabel" in payload.value_labels.columns


class TestDictionaryImporter:
    """Test staging and flushing a year's dictionaries"""

    def test_labels_only_imports_labels_role(self, store, tmp_path):
        """Test labels only imports labels role"""
        path = tmp_path / "hd2023_dict.zip"
        path.write_bytes(zip_bytes({"hd2023.xlsx": workbook_bytes({"Frequencies": LABELS})}))
        importer = DictionaryImporter(store)

        result = importer.import_file(path, dictionary_source())
        written = importer.flush_year(2023)

        assert result.status == ImportStatus.SUCCESS
        assert [r.table_name for r in written] == ["valuesets23"]
        assert store.has_table("valuesets23")
        assert not store.has_table("vartable23")

    def test_workbooks_accumulated_per_year(self, store, tmp_path, dictionary_zip):
        """Test workbooks accumulated per year"""
        importer = DictionaryImporter(store)
        first = tmp_path / "hd2023_dict.zip"
        first.write_bytes(dictionary_zip)
        second = tmp_path / "ic2023_dict.zip"
        second.write_bytes(dictionary_zip)

        importer.import_file(first, dictionary_source("HD2023_Dict.zip"))
        importer.import_file(second, dictionary_source("IC2023_Dict.zip"))
        assert importer.pending_years() == [2023]
        importer.flush_year(2023)

        frame = store.read_frame("SELECT * FROM vartable23")
        assert len(frame) == 4
        assert sorted(frame["source_file"].unique()) == ["hd2023", "ic2023"]
        assert importer.pending_years() == []

    def test_workbook_without_roles_skipped(self, store, tmp_path):
        """Test workbook without roles skipped"""
        path = tmp_path / "hd2023_dict.zip"
        path.write_bytes(zip_bytes({"hd2023.xlsx": workbook_bytes({"Notes": pd.DataFrame({"a": ["b"]})})}))

        result = DictionaryImporter(store).import_file(path, dictionary_source())

        assert result.status == ImportStatus.SKIPPED

    def test_unreadable_workbook_fails(self, store, tmp_path):
        """Test unreadable workbook fails"""
        path = tmp_path / "hd2023_dict.zip"
        path.write_bytes(zip_bytes({"readme.txt": b"no workbook"}))

        result = DictionaryImporter(store).import_file(path, dictionary_source())

        assert result.status == ImportStatus.FAILED
        assert result.stage == "unpack"

    def test_catalog_lists_year_data_tables(self, store):
        """Test catalog lists year data tables"""
        store.replace_table("hd2023", pd.DataFrame({"UNITID": [1]}))
        store.replace_table("ic2023", pd.DataFrame({"UNITID": [1]}))
        store.replace_table("hd2022", pd.DataFrame({"UNITID": [1]}))
        store.replace_table("valuesets23", pd.DataFrame({"varName": ["X"]}))

        results = DictionaryImporter(store).flush_year(2023)

        assert [r.table_name for r in results] == ["tables23"]
        catalog = store.read_frame("SELECT * FROM tables23")
        assert sorted(catalog["TableName"]) == ["hd2023", "ic2023"]
        assert "Release date" in catalog.columns
        assert catalog["YearCoverage"].iloc[0] == "Academic year 2023-24"

    def test_no_catalog_without_data_tables(self, store):
        """Test no catalog without data tables"""
        assert DictionaryImporter(store).flush_year(2023) == []
        assert not store.has_table("tables23")

    def test_restaged_workbook_replaces_only_its_rows(self, store, tmp_path, dictionary_zip):
        """Test flushing one workbook again keeps rows of the year's other workbooks"""
        importer = DictionaryImporter(store)
        path = tmp_path / "dict.zip"
        path.write_bytes(dictionary_zip)
        importer.import_file(path, dictionary_source("HD2023_Dict.zip"))
        importer.import_file(path, dictionary_source("IC2023_Dict.zip"))
        importer.flush_year(2023)

        path.write_bytes(zip_bytes({"hd2023.xlsx": workbook_bytes({
            "Varlist": pd.DataFrame({"varName": ["UNITID"], "varTitle": ["Unique identification number"]})
        })}))
        importer.import_file(path, dictionary_source("HD2023_Dict.zip"))
        importer.flush_year(2023)

        variables = store.read_frame("SELECT * FROM vartable23")
        assert sorted(variables["source_file"]) == ["hd2023", "ic2023", "ic2023"]
        labels = store.read_frame("SELECT * FROM valuesets23")
        assert sorted(labels["source_file"].unique()) == ["ic2023"]

    def test_imported_sources(self, store, tmp_path, dictionary_zip):
        """Test the source files already present in a year's dictionary tables"""
        importer = DictionaryImporter(store)
        assert importer.imported_sources(2023) == set()

        path = tmp_path / "dict.zip"
        path.write_bytes(dictionary_zip)
        importer.import_file(path, dictionary_source("HD2023_Dict.zip"))
        importer.flush_year(2023)

        assert importer.imported_sources(2023) == {"hd2023"}
        assert importer.imported_sources(2022) == set()
