"""
Tests for VIN structure: normalization, decomposition, check digit and model year.
"""
import pytest


# =============================================================================
# DECOMPOSITION TESTS
# =============================================================================

class TestDecompose:
    """Tests for the structural gate."""

    def test_segments(self):
        """Test positional slicing of a valid VIN."""
        from corgi.core.vin import decompose

        result = decompose("1HGCM82633A123456")

        assert result.is_valid
        seg = result.segments
        assert seg.wmi == "1HG"
        assert seg.vds == "CM826"
        assert seg.check_digit == "3"
        assert seg.vis == "3A123456"
        assert seg.model_year_char == "3"
        assert seg.plant_code == "A"
        assert seg.serial == "123456"
        assert seg.lookup_key == "CM826|3A123456"

    def test_normalizes_case_and_whitespace(self):
        """Test lowercase and padded input is accepted."""
        from corgi.core.vin import decompose

        result = decompose("  km8k2cab4pu001140 ")

        assert result.is_valid
        assert result.normalized == "KM8K2CAB4PU001140"

    def test_short_vin(self):
        """Test length errors carry expected and actual."""
        from corgi.core.vin import decompose

        result = decompose("INVALID")

        assert not result.is_valid
        assert result.segments is None
        codes = [e.code for e in result.errors]
        assert "INVALID_LENGTH" in codes
        length_error = next(e for e in result.errors if e.code == "INVALID_LENGTH")
        assert length_error.expected == "17"
        assert length_error.actual == "7"
        assert length_error.category == "structural"

    def test_length_and_characters_reported_together(self):
        """Test both structural problems are listed for INVALID."""
        from corgi.core.vin import decompose

        result = decompose("INVALID")

        codes = [e.code for e in result.errors]
        assert codes == ["INVALID_LENGTH", "INVALID_CHARACTERS"]
        chars_error = result.errors[1]
        assert chars_error.actual == "I"
        assert chars_error.positions == [1, 6]

    @pytest.mark.parametrize("vin", [
        "1HGCM8263QA123456",
        "1HGCM82633A12345O",
        "1HGCM82633A12-456",
    ])
    def test_invalid_characters(self, vin):
        """Test I/O/Q and symbols are rejected."""
        from corgi.core.vin import decompose

        result = decompose(vin)

        assert not result.is_valid
        assert [e.code for e in result.errors] == ["INVALID_CHARACTERS"]

    def test_empty_input(self):
        """Test None and empty strings fail on length."""
        from corgi.core.vin import decompose

        assert decompose("").errors[0].code == "INVALID_LENGTH"
        assert decompose(None).errors[0].actual == "0"

    def test_wmi_region(self):
        """Test region inference from the first character."""
        from corgi.core.vin import wmi_region

        assert wmi_region("1HG") == "North America"
        assert wmi_region("KM8") == "Asia"
        assert wmi_region("WBA") == "Europe"
        assert wmi_region("") is None


# =============================================================================
# CHECK DIGIT TESTS
# =============================================================================

class TestCheckDigit:
    """Tests for the position 9 checksum."""

    def test_valid_vin(self):
        """Test a VIN whose check digit verifies."""
        from corgi.services.check_digit import validate_check_digit

        result = validate_check_digit("KM8K2CAB4PU001140")

        assert result.is_valid
        assert result.expected == "4"
        assert result.to_error() is None

    def test_invalid_vin_is_warning(self):
        """Test a mismatch produces a semantic warning with expected/actual."""
        from corgi.services.check_digit import validate_check_digit

        result = validate_check_digit("1HGCM82633A123456")

        assert not result.is_valid
        assert result.actual == "3"
        assert result.expected == "7"
        error = result.to_error()
        assert error.code == "INVALID_CHECK_DIGIT"
        assert error.category == "semantic"
        assert error.severity == "warning"

    def test_x_check_digit(self):
        """Test remainder 10 maps to X."""
        from corgi.services.check_digit import calculate_check_digit

        # 1M8GDM9A_KP042788 is the classic remainder-10 example
        assert calculate_check_digit("1M8GDM9AXKP042788") == "X"

    def test_recompute_round_trip(self):
        """Test writing the computed digit into position 9 always verifies."""
        from corgi.services.check_digit import calculate_check_digit, validate_check_digit

        for draft in ("1HGCM82603A123456", "5YJ3E1EA0JF000001", "WBA3A5C50CF256651", "JH4KA7561PC008269"):
            fixed = draft[:8] + calculate_check_digit(draft) + draft[9:]
            assert validate_check_digit(fixed).is_valid

    def test_single_mutation_detected(self):
        """Test changing any other position's value breaks verification."""
        from corgi.services.check_digit import calculate_check_digit, transliterate, validate_check_digit

        vin = "KM8K2CAB4PU001140"
        for index in range(17):
            if index == 8:
                continue
            replacement = "1" if transliterate(vin[index]) != 1 else "2"
            mutated = vin[:index] + replacement + vin[index + 1:]
            result = validate_check_digit(mutated)
            assert not result.is_valid, f"mutation at position {index + 1} went unnoticed"
            assert result.expected == calculate_check_digit(mutated)

    def test_malformed_input_never_raises(self):
        """Test short or invalid input just fails validation."""
        from corgi.services.check_digit import calculate_check_digit, validate_check_digit

        assert calculate_check_digit("ABC") is None
        assert calculate_check_digit("1HGCM8263IA123456") is None
        result = validate_check_digit("")
        assert not result.is_valid
        assert result.to_component() is None
        assert result.to_error() is None


# =============================================================================
# MODEL YEAR TESTS
# =============================================================================

class TestModelYear:
    """Tests for position 10 resolution."""

    def test_candidate_years(self):
        """Test the 30-year cycle and the future cutoff."""
        from corgi.services.model_year import candidate_years

        assert candidate_years("A", latest_year=2027) == [1980, 2010]
        assert candidate_years("P", latest_year=2027) == [1993, 2023]
        assert candidate_years("3", latest_year=2027) == [2003]
        assert candidate_years("Y", latest_year=2027) == [2000]
        assert candidate_years("U") == []
        assert candidate_years("0") == []

    def test_override_wins(self):
        """Test an explicit year always wins with full confidence."""
        from corgi.services.model_year import ModelYearResolver

        result = ModelYearResolver(latest_year=2027).resolve("KM8K2CAB4PU001140", override=2020)

        assert result.year == 2020
        assert result.source == "override"
        assert result.confidence == 1.0

    def test_schema_windows_pick_era(self):
        """Test dataset windows disambiguate the cycle."""
        from corgi.services.model_year import ModelYearResolver

        resolver = ModelYearResolver(latest_year=2027)

        result = resolver.resolve("KM8K2CAB4PU001140", schema_windows=[(1990, 1995)])
        assert result.year == 1993
        assert result.source == "pattern-derived"

        result = resolver.resolve("KM8K2CAB4PU001140", schema_windows=[(2018, None)])
        assert result.year == 2023

    def test_position_seven_heuristic(self):
        """Test letter at position 7 picks the newer era, digit the older."""
        from corgi.services.model_year import ModelYearResolver

        resolver = ModelYearResolver(latest_year=2027)

        newer = resolver.resolve("KM8K2CAB4PU001140")
        assert newer.year == 2023
        assert newer.source == "heuristic"
        assert newer.candidates == [1993, 2023]

        older = resolver.resolve("KM8K2C1B4PU001140")
        assert older.year == 1993

    def test_ambiguous_windows_fall_back(self):
        """Test windows covering both eras defer to the heuristic."""
        from corgi.services.model_year import ModelYearResolver

        result = ModelYearResolver(latest_year=2027).resolve(
            "KM8K2CAB4PU001140", schema_windows=[(1980, None)]
        )

        assert result.source == "heuristic"
        assert result.year == 2023

    def test_not_a_year_code(self):
        """Test position 10 outside the alphabet yields None."""
        from corgi.services.model_year import ModelYearResolver

        assert ModelYearResolver().resolve("KM8K2CAB4UU001140") is None
