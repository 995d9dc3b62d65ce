"""
Unit tests for smart code validation.

Tests cover:
- Accepted and rejected codes
- Segment count limits
- Error reporting and purity
- Building codes from segments
"""

import pytest

from udb.udb_core.errors import SmartCodeError
from udb.udb_core.schema.smart_code import SmartCode, SmartCodeValidator, is_valid, validate


class TestSmartCodeValidator:
    """Tests for SmartCodeValidator."""

    @pytest.fixture
    def validator(self):
        return SmartCodeValidator("HERA")

    def test_accepts_product_code(self, validator):
        """A five domain segment code parses into its parts."""
        code = validator.validate("HERA.FURNITURE.PRODUCT.CHAIR.EXECUTIVE.v1")

        assert code.root == "HERA"
        assert code.domain_segments == ("FURNITURE", "PRODUCT", "CHAIR", "EXECUTIVE")
        assert code.version == 1
        assert code.industry == "FURNITURE"
        assert code.tail == "EXECUTIVE"

    def test_rejects_too_few_segments(self, validator):
        """HERA.AB.v1 has only one domain segment."""
        with pytest.raises(SmartCodeError) as exc_info:
            validator.validate("HERA.AB.v1")

        assert exc_info.value.code == "INVALID_SMART_CODE"
        assert any("at least 5 segments" in e for e in exc_info.value.errors)

    def test_rejects_upper_case_version(self, validator):
        """The version marker is a lower-case v."""
        assert not validator.is_valid("HERA.SALON.POS.TXN.SALE.V1")

    def test_rejects_wrong_root(self, validator):
        """Only the configured root tag is accepted."""
        errors = validator.check("ACME.SALON.POS.TXN.v1")

        assert errors == ["root segment must be 'HERA', got 'ACME'"]

    def test_rejects_lower_case_segment(self, validator):
        """Domain segments are upper-case."""
        assert not validator.is_valid("HERA.salon.POS.TXN.v1")

    def test_rejects_leading_zero_version(self, validator):
        """v01 is not a valid version."""
        assert not validator.is_valid("HERA.SALON.POS.TXN.v01")
        assert not validator.is_valid("HERA.SALON.POS.TXN.v0")

    def test_segment_length_limits(self, validator):
        """Segments are 2 to 30 characters."""
        assert not validator.is_valid("HERA.S.POS.TXN.v1")
        assert validator.is_valid("HERA.SALON.POS." + "X" * 30 + ".v1")
        assert not validator.is_valid("HERA.SALON.POS." + "X" * 31 + ".v1")

    def test_segment_count_limits(self, validator):
        """Between three and eight domain segments."""
        assert validator.is_valid("HERA.A1.B2.C3.v2")
        assert validator.is_valid("HERA." + ".".join(["SEG"] * 8) + ".v1")
        assert not validator.is_valid("HERA." + ".".join(["SEG"] * 9) + ".v1")

    @pytest.mark.parametrize("count", [3, 4, 5, 6, 7, 8])
    @pytest.mark.parametrize("length", [2, 30])
    def test_generated_codes_within_limits_validate(self, validator, count, length):
        """Any well-formed code at the count and length bounds is accepted."""
        segments = [chr(ord("A") + i) * length for i in range(count)]
        code = "HERA." + ".".join(segments) + ".v3"

        parsed = validator.validate(code)

        assert parsed.domain_segments == tuple(segments)
        assert parsed.version == 3
        assert str(parsed) == code
        assert not validator.is_valid("HERA." + ".".join(segments + ["X"]) + ".v3")

    def test_underscore_and_digits_allowed(self, validator):
        """Segments may contain digits and underscores."""
        assert validator.is_valid("HERA.SALON.ROLE.ORG_OWNER.v12")

    def test_non_string_rejected(self, validator):
        """Non-string values are reported, not raised as TypeError."""
        assert validator.check(None) == ["must be a string, got NoneType"]
        assert validator.check("") == ["must not be empty"]

    def test_reports_every_violation(self, validator):
        """All violations are listed together."""
        errors = validator.check("acme.x.v0")

        assert len(errors) >= 3

    def test_validation_is_pure(self, validator):
        """Same input gives the same result every time."""
        code = "HERA.CRM.CUSTOMER.ENTITY.PROFILE.v1"
        results = {validator.validate(code) for _ in range(5)}

        assert len(results) == 1

    def test_field_name_carried_in_error(self, validator):
        """The payload location is part of the error details."""
        with pytest.raises(SmartCodeError) as exc_info:
            validator.validate("bad", field_name="lines[2].smart_code")

        assert exc_info.value.details["field"] == "lines[2].smart_code"
        assert exc_info.value.details["smart_code"] == "bad"

    def test_validate_many_collects_all_failures(self, validator):
        """validate_many reports every bad code at once."""
        with pytest.raises(SmartCodeError) as exc_info:
            validator.validate_many(
                [
                    ("header", "HERA.SALON.POS.TXN.SALE.v1"),
                    ("lines[1]", "HERA.AB.v1"),
                    ("lines[2]", "nope"),
                ]
            )

        errors = exc_info.value.errors
        assert any(e.startswith("lines[1]:") for e in errors)
        assert any(e.startswith("lines[2]:") for e in errors)
        assert not any(e.startswith("header:") for e in errors)

    def test_build(self, validator):
        """build() assembles and validates a code."""
        code = validator.build("FINANCE", "GL", "LINE", "DR")

        assert str(code) == "HERA.FINANCE.GL.LINE.DR.v1"
        assert code.is_ledger

    def test_build_invalid_raises(self, validator):
        """build() refuses codes that break the grammar."""
        with pytest.raises(SmartCodeError):
            validator.build("ONLY")

    def test_custom_root(self):
        """Another root tag changes what is accepted."""
        validator = SmartCodeValidator("ACME")

        assert validator.is_valid("ACME.SALON.POS.TXN.v1")
        assert not validator.is_valid("HERA.SALON.POS.TXN.v1")

    def test_invalid_root_tag(self):
        """The root tag itself must match the grammar."""
        with pytest.raises(ValueError):
            SmartCodeValidator("hera")


class TestSmartCode:
    """Tests for the parsed SmartCode value."""

    def test_str_round_trip(self):
        code = SmartCode("HERA", ("SALON", "POS", "TXN", "SALE"), 3)

        assert str(code) == "HERA.SALON.POS.TXN.SALE.v3"

    def test_with_version(self):
        code = validate("HERA.SALON.POS.TXN.SALE.v1").with_version(2)

        assert code.version == 2
        assert code.domain_segments == ("SALON", "POS", "TXN", "SALE")

    def test_with_version_rejects_zero(self):
        with pytest.raises(ValueError):
            validate("HERA.SALON.POS.TXN.SALE.v1").with_version(0)

    def test_has_segment(self):
        code = validate("HERA.SALON.POS.TXN.SALE.v1")

        assert code.has_segment("POS")
        assert not code.has_segment("GL")
        assert not code.is_ledger

    def test_module_helpers(self):
        """Module-level helpers use the default HERA validator."""
        assert is_valid("HERA.FURNITURE.PRODUCT.CHAIR.EXECUTIVE.v1")
        assert not is_valid("HERA.AB.v1")
