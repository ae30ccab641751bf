"""
Unit tests for type coercion, sanitization and year injection
"""

import pandas as pd
import pytest

from core.exceptions import YearDerivationError
from ingestion.transformers.coercion import (
    FrameCoercer,
    clean_header,
    infer_column,
    inject_year,
    sanitize_text,
    to_integer,
)


def text_frame(data):
    return pd.DataFrame(data, dtype=object)


class TestInferColumn:
    """Test per-column type inference"""

    def test_whole_numbers_become_integer(self):
        """Test whole numbers become integer"""
        result = infer_column(pd.Series(["1", "2", None], dtype=object))
        assert str(result.dtype) == "Int64"
        assert result.isna().tolist() == [False, False, True]

    def test_decimals_become_float(self):
        """Test decimals become float"""
        result = infer_column(pd.Series(["1.5", "2"], dtype=object))
        assert result.dtype == "float64"
        assert result.tolist() == [1.5, 2.0]

    def test_mixed_values_stay_text(self):
        """Test mixed values stay text"""
        series = pd.Series(["a", "1"], dtype=object)
        assert infer_column(series).tolist() == ["a", "1"]

    def test_all_missing_unchanged(self):
        """Test all missing unchanged"""
        series = pd.Series([None, None], dtype=object)
        assert infer_column(series).isna().all()

    def test_to_integer_drops_unparseable(self):
        """Test to integer drops unparseable"""
        result = to_integer(pd.Series(["3", "x", "2.5"], dtype=object))
        assert result.tolist()[0] == 3
        assert result.isna().tolist() == [False, True, True]


class TestFrameCoercer:
    """Test table-level coercion rules"""

    def test_identifier_and_coded_columns_forced(self):
        """Test identifier and coded columns forced"""
        frame = text_frame({
            "UNITID": ["100654", "100663"],
            "CONTROLCODE": ["1", "n/a-ish"],
            "INSTNM": ["Alabama A & M University", "University of Alabama at Birmingham"],
        })
        result = FrameCoercer("hd2023", missing_value_codes={}).coerce(frame)

        assert str(result["UNITID"].dtype) == "Int64"
        assert str(result["CONTROLCODE"].dtype) == "Int64"
        assert pd.isna(result["CONTROLCODE"].iloc[1])
        assert result["INSTNM"].tolist()[0] == "Alabama A & M University"

    def test_negative_values_missing_by_default(self):
        """Test negative values missing by default"""
        frame = text_frame({"UNITID": ["1", "2", "3"], "ENRTOT": ["120", "-1", "-2"]})
        result = FrameCoercer("ef2023a", missing_value_codes={}).coerce(frame)

        assert result["ENRTOT"].iloc[0] == 120
        assert result["ENRTOT"].isna().tolist() == [False, True, True]

    def test_explicit_missing_codes_override_default(self):
        """Test explicit missing codes override default"""
        frame = text_frame({"UNITID": ["1", "2", "3"], "NETINC": ["-5", "-2", "7"]})
        result = FrameCoercer("hd2023", missing_value_codes={"hd": [-2]}).coerce(frame)

        assert result["NETINC"].iloc[0] == -5
        assert pd.isna(result["NETINC"].iloc[1])
        assert result["NETINC"].iloc[2] == 7

    def test_text_columns_untouched_by_missing_codes(self):
        """Test text columns untouched by missing codes"""
        frame = text_frame({"UNITID": ["1"], "CITY": ["-"]})
        result = FrameCoercer("hd2023", missing_value_codes={}).coerce(frame)
        assert result["CITY"].tolist() == ["-"]


class TestSanitizeText:
    """Test character sanitization"""

    def test_control_characters_and_whitespace(self):
        """Test control characters and whitespace"""
        frame = text_frame({"INSTNM": ["a\x00b  c", "  spaced\tout  "]})
        result = sanitize_text(frame)
        assert result["INSTNM"].tolist() == ["a b c", "spaced out"]

    def test_blank_cells_become_missing(self):
        """Test blank cells become missing"""
        frame = text_frame({"INSTNM": ["\x01 ", "x"]})
        result = sanitize_text(frame)
        assert pd.isna(result["INSTNM"].iloc[0])

    def test_aggressive_keeps_printable_ascii(self):
        """Test aggressive keeps printable ASCII"""
        frame = text_frame({"INSTNM": ["Université de Montréal"]})
        result = sanitize_text(frame, aggressive=True)
        assert result["INSTNM"].tolist() == ["Universit de Montral"]

    def test_headers_left_alone(self):
        """Test cell cleanup never renames columns"""
        frame = text_frame({"INST NM": ["a"], "INST  NM": ["b"]})
        assert list(sanitize_text(frame).columns) == ["INST NM", "INST  NM"]

    def test_clean_header(self):
        """Test header names lose control characters and repeated whitespace"""
        assert clean_header(" INSTNM\x00") == "INSTNM"
        assert clean_header("INST  NM") == "INST NM"
        assert clean_header("Montréal", aggressive=True) == "Montral"


class TestInjectYear:
    """Test YEAR column handling"""

    def test_inserted_after_identifier(self):
        """Test inserted after identifier"""
        frame = pd.DataFrame({"UNITID": [1, 2], "INSTNM": ["a", "b"]})
        result = inject_year(frame, "hd2023")

        assert list(result.columns) == ["UNITID", "YEAR", "INSTNM"]
        assert result["YEAR"].tolist() == [2023, 2023]

    def test_inserted_first_without_identifier(self):
        """Test inserted first without identifier"""
        frame = pd.DataFrame({"varName": ["UNITID"]})
        result = inject_year(frame, "vartable06")
        assert list(result.columns) == ["YEAR", "varName"]
        assert result["YEAR"].tolist() == [2006]

    def test_existing_year_column_renamed(self):
        """Test existing year column renamed"""
        frame = pd.DataFrame({"UNITID": [1, 2], "year": ["2019", None]})
        result = inject_year(frame, "sfa1819_p1")

        assert "year" not in result.columns
        assert result["YEAR"].tolist() == [2019, 2019]

    def test_no_year_anywhere(self):
        """Test no year anywhere"""
        frame = pd.DataFrame({"UNITID": [1]})
        with pytest.raises(YearDerivationError):
            inject_year(frame, "ic")
