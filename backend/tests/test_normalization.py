"""
Solar CRM - Normalization Tests
Tests: normalize_key, normalize_date, parse_share, earliest_iso.
Run: cd backend && pytest tests/test_normalization.py -v
"""

from datetime import date, datetime, timezone

import pytz

from services.normalization import (
    earliest_iso,
    normalize_date,
    normalize_key,
    parse_iso,
    parse_share,
)

SAO_PAULO = pytz.timezone("America/Sao_Paulo")


def _local_date(iso_value):
    return parse_iso(iso_value).astimezone(SAO_PAULO).date()


# ═══════════════════════════════════════════════════════════════
# 1. CLÉ UC
# ═══════════════════════════════════════════════════════════════

class TestNormalizeKey:
    """Clé de jointure entre planilhas."""

    def test_formatted_and_padded_forms_agree(self):
        """10/908866-007 et 010908866-7 désignent la même UC."""
        assert normalize_key("10/908866-007") == normalize_key("010908866-7")
        assert normalize_key("10/908866-007") == "109088667"

    def test_strips_separators(self):
        """Espaces, barres, points, tirets retirés."""
        assert normalize_key(" 12.345 678/9-0 ") == "1234567890"

    def test_strips_leading_zeros(self):
        """0000123 -> 123."""
        assert normalize_key("0000123") == "123"

    def test_zero_check_digit_kept(self):
        """Un dígito verificador 0 distingue deux UCs."""
        assert normalize_key("12.345.678/9-0") == "1234567890"
        assert normalize_key("12.345.678/9-0") != normalize_key("12.345.678/9")
        assert normalize_key("1/01") != normalize_key("11")
        assert normalize_key("7-000") == "70"

    def test_idempotent(self):
        """normalize(normalize(x)) == normalize(x)."""
        for raw in ["10/908866-007", "  0042 ", "7.000.1", "0-05", "ABC-001"]:
            once = normalize_key(raw)
            assert normalize_key(once) == once

    def test_empty_values(self):
        """None / vide / blanc -> chaîne vide, jamais d'exception."""
        assert normalize_key(None) == ""
        assert normalize_key("") == ""
        assert normalize_key("   ") == ""
        assert normalize_key("000") == ""
        assert normalize_key("0-00") == ""

    def test_numbers_are_stringified(self):
        """Une UC lue comme nombre ne garde pas le .0 du float."""
        assert normalize_key(12345) == "12345"
        assert normalize_key(12345.0) == "12345"
        assert normalize_key(float("nan")) == ""

    def test_bool_rejected(self):
        """Un booléen n'est pas une UC."""
        assert normalize_key(True) == ""


# ═══════════════════════════════════════════════════════════════
# 2. DATES
# ═══════════════════════════════════════════════════════════════

class TestNormalizeDate:
    """Dates de planilha -> ISO UTC."""

    def test_excel_serial_number(self):
        """45001 = 16/03/2023 (jour 0 = 30/12/1899)."""
        assert _local_date(normalize_date(45001)) == date(2023, 3, 16)

    def test_excel_serial_string(self):
        """Un serial lu comme texte est traité comme un serial."""
        assert normalize_date("45001") == normalize_date(45001)

    def test_excel_serial_fraction_is_time_of_day(self):
        """45001.5 = midi heure locale."""
        local = parse_iso(normalize_date(45001.5)).astimezone(SAO_PAULO)
        assert (local.date(), local.hour) == (date(2023, 3, 16), 12)

    def test_iso_with_zulu(self):
        """ISO-8601 avec Z conservé tel quel en UTC."""
        assert normalize_date("2024-03-05T10:00:00Z") == "2024-03-05T10:00:00+00:00"

    def test_brazilian_format_is_local_midnight(self):
        """05/03/2024 = minuit à São Paulo = 03:00 UTC."""
        assert normalize_date("05/03/2024") == "2024-03-05T03:00:00+00:00"
        assert normalize_date("2024-03-05") == "2024-03-05T03:00:00+00:00"

    def test_other_formats(self):
        """dd-mm-yyyy, dd.mm.yyyy, mm/yyyy."""
        assert _local_date(normalize_date("05-03-2024")) == date(2024, 3, 5)
        assert _local_date(normalize_date("05.03.2024")) == date(2024, 3, 5)
        assert _local_date(normalize_date("04/2025")) == date(2025, 4, 1)

    def test_bare_year_is_january_first(self):
        """Année seule = 1er janvier, pas le serial Excel 2024 (1905)."""
        assert normalize_date("2024") == "2024-01-01T03:00:00+00:00"

    def test_date_and_datetime_objects(self):
        """Objets date/datetime acceptés; aware conservé."""
        assert _local_date(normalize_date(date(2024, 7, 1))) == date(2024, 7, 1)
        aware = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)
        assert normalize_date(aware) == "2024-07-01T12:00:00+00:00"

    def test_garbage_returns_none(self):
        """Jamais d'exception: valeur illisible -> None."""
        for raw in [None, "", "abc", "2024-02-30", "31/02/2024", True, 0, -3, float("inf"), "99999999999"]:
            assert normalize_date(raw) is None, raw


class TestEarliestIso:
    """min() de deux timestamps."""

    def test_keeps_earliest(self):
        """La date la plus ancienne gagne."""
        a = "2024-05-01T03:00:00+00:00"
        b = "2024-04-01T03:00:00+00:00"
        assert earliest_iso(a, b) == b
        assert earliest_iso(b, a) == b

    def test_missing_values(self):
        """Une valeur absente ne remplace jamais une date."""
        a = "2024-05-01T03:00:00+00:00"
        assert earliest_iso(a, None) == a
        assert earliest_iso(None, a) == a
        assert earliest_iso(None, None) is None


# ═══════════════════════════════════════════════════════════════
# 3. RATEIO
# ═══════════════════════════════════════════════════════════════

class TestParseShare:
    """Pourcentages de rateio."""

    def test_numeric(self):
        assert parse_share(12.5) == 12.5

    def test_comma_decimal(self):
        """12,5 / 12,5% / 1.234,5."""
        assert parse_share("12,5") == 12.5
        assert parse_share("12,5%") == 12.5
        assert parse_share("1.234,5") == 1234.5

    def test_unparsable_is_zero(self):
        """Illisible -> 0.0 (donc non enregistré)."""
        assert parse_share(None) == 0.0
        assert parse_share("n/a") == 0.0
        assert parse_share("") == 0.0
