"""Unit tests for date-variable substitution in email subjects and bodies."""

from datetime import date

import pytest

from services.invoices.templating import parse_template_date, replace_date_variables


class TestParseTemplateDate:
    """Test date parsing for templates."""

    def test_parses_local_date(self) -> None:
        """Should parse YYYY-MM-DD as a calendar date."""
        assert parse_template_date("2025-03-15") == date(2025, 3, 15)

    def test_parses_iso_datetime(self) -> None:
        """Should take the date part of an ISO-8601 datetime."""
        assert parse_template_date("2025-03-15T10:30:00") == date(2025, 3, 15)

    @pytest.mark.parametrize("value", ["not a date", "2025-13-01", ""])
    def test_returns_none_for_unparseable(self, value: str) -> None:
        """Should return None when the string is not a date."""
        assert parse_template_date(value) is None


class TestReplaceDateVariables:
    """Test placeholder substitution."""

    def test_english_month_and_year(self) -> None:
        """Should render English month name and year."""
        result = replace_date_variables("Invoice for ${englishMonth} ${year}", "2025-03-15")
        assert result == "Invoice for March 2025"

    def test_numeric_date(self) -> None:
        """Should render the date as MM/DD/YYYY."""
        assert replace_date_variables("Due ${date}", "2025-03-05") == "Due 03/05/2025"

    def test_spanish_month_capitalized(self) -> None:
        """Should render a capitalized Spanish month name."""
        assert replace_date_variables("Factura de ${spanishMonth}", "2026-02-20") == (
            "Factura de Febrero"
        )

    def test_replaces_every_occurrence(self) -> None:
        """Should replace repeated tokens."""
        result = replace_date_variables("${year}/${year}", "2024-12-01")
        assert result == "2024/2024"

    def test_unknown_tokens_left_intact(self) -> None:
        """Should leave unsupported placeholders alone."""
        result = replace_date_variables("${month} ${year}", "2024-12-01")
        assert result == "${month} 2024"

    def test_unparseable_date_returns_template_unchanged(self) -> None:
        """Should not substitute anything when the date cannot be parsed."""
        template = "Invoice for ${englishMonth} ${year}"
        assert replace_date_variables(template, "someday") == template

    def test_missing_date_returns_template_unchanged(self) -> None:
        """Should return the template as-is without a date."""
        assert replace_date_variables("Hello ${year}", None) == "Hello ${year}"
        assert replace_date_variables("Hello ${year}", "") == "Hello ${year}"

    def test_missing_template_returns_empty_string(self) -> None:
        """Should return an empty string for a missing template."""
        assert replace_date_variables(None, "2025-03-15") == ""

    def test_template_without_tokens_is_unchanged(self) -> None:
        """Should be the identity on text without placeholders."""
        template = "Thanks for your business."
        assert replace_date_variables(template, "2025-03-15") == template

    def test_deterministic(self) -> None:
        """Should produce the same output for the same inputs."""
        template = "${date} ${englishMonth} ${spanishMonth} ${year}"
        first = replace_date_variables(template, "2025-07-04")
        assert first == replace_date_variables(template, "2025-07-04")
        assert first == "07/04/2025 July Julio 2025"
