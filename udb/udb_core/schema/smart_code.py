"""
Smart Code validation.

A smart code is the hierarchical, versioned tag attached to every entity,
dynamic field, relationship, transaction and transaction line. Consumers
branch on its segment structure, so the grammar is enforced on every write.

Grammar:
    ROOT.SEG.SEG.SEG[.SEG...].vN

    - ROOT: the fixed root tag (default "HERA"), 3-15 of [A-Z0-9]
    - SEG: 3 to 8 domain segments, each 2-30 of [A-Z0-9_]
    - vN: lower-case "v" followed by a positive integer without leading zero

Invariants:
    - Validation is pure: same input, same result
    - Codes are case-sensitive; nothing is normalized
    - Errors list every violation, not just the first

Example:
    >>> code = validate("HERA.FURNITURE.PRODUCT.CHAIR.EXECUTIVE.v1")
    >>> code.domain_segments
    ('FURNITURE', 'PRODUCT', 'CHAIR', 'EXECUTIVE')
    >>> code.version
    1
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ..errors import SmartCodeError

ROOT_PATTERN = re.compile(r"^[A-Z0-9]{3,15}$")
SEGMENT_PATTERN = re.compile(r"^[A-Z0-9_]{2,30}$")
VERSION_PATTERN = re.compile(r"^v([1-9][0-9]*)$")

MIN_DOMAIN_SEGMENTS = 3
MAX_DOMAIN_SEGMENTS = 8

LEDGER_SEGMENT = "GL"


@dataclass(frozen=True)
class SmartCode:
    """A parsed smart code.

    Attributes:
        root: Root tag (segment 1)
        domain_segments: Segments between root and version
        version: Schema version of the code's meaning
    """

    root: str
    domain_segments: tuple[str, ...]
    version: int

    def __str__(self) -> str:
        return ".".join((self.root, *self.domain_segments, f"v{self.version}"))

    @property
    def industry(self) -> str:
        """First domain segment (industry or module)."""
        return self.domain_segments[0]

    @property
    def tail(self) -> str:
        """Last domain segment, the most specific meaning."""
        return self.domain_segments[-1]

    def has_segment(self, segment: str) -> bool:
        return segment in self.domain_segments

    def with_version(self, version: int) -> SmartCode:
        if version < 1:
            raise ValueError(f"version must be positive, got {version}")
        return SmartCode(self.root, self.domain_segments, version)

    @property
    def is_ledger(self) -> bool:
        return self.has_segment(LEDGER_SEGMENT)


class SmartCodeValidator:
    """Validates smart codes against the grammar for one root tag.

    Thread safety:
        This class is stateless after construction and thread-safe.

    Example:
        >>> validator = SmartCodeValidator("HERA")
        >>> validator.is_valid("HERA.AB.v1")
        False
    """

    def __init__(self, root_tag: str = "HERA") -> None:
        if not ROOT_PATTERN.match(root_tag):
            raise ValueError(f"Invalid root tag '{root_tag}': must be 3-15 of [A-Z0-9]")
        self.root_tag = root_tag

    def check(self, code: Any) -> list[str]:
        """Return every grammar violation in code (empty if valid)."""
        if not isinstance(code, str):
            return [f"must be a string, got {type(code).__name__}"]
        if not code:
            return ["must not be empty"]

        errors: list[str] = []
        segments = code.split(".")
        if len(segments) < MIN_DOMAIN_SEGMENTS + 2:
            errors.append(
                f"expected at least {MIN_DOMAIN_SEGMENTS + 2} segments, got {len(segments)}"
            )
        elif len(segments) > MAX_DOMAIN_SEGMENTS + 2:
            errors.append(
                f"expected at most {MAX_DOMAIN_SEGMENTS + 2} segments, got {len(segments)}"
            )

        root = segments[0]
        if root != self.root_tag:
            errors.append(f"root segment must be '{self.root_tag}', got '{root}'")

        if len(segments) >= 2:
            if not VERSION_PATTERN.match(segments[-1]):
                errors.append(f"final segment must be v<positive integer>, got '{segments[-1]}'")
            for position, segment in enumerate(segments[1:-1], start=2):
                if not SEGMENT_PATTERN.match(segment):
                    errors.append(
                        f"segment {position} '{segment}' must be 2-30 of [A-Z0-9_]"
                    )

        return errors

    def is_valid(self, code: Any) -> bool:
        return not self.check(code)

    def validate(self, code: Any, field_name: str | None = None) -> SmartCode:
        """Parse and validate a smart code.

        Args:
            code: Smart code string
            field_name: Payload location, used in the error

        Returns:
            Parsed SmartCode

        Raises:
            SmartCodeError: If code violates the grammar
        """
        errors = self.check(code)
        if errors:
            raise SmartCodeError(code, errors, field_name=field_name)

        segments = code.split(".")
        version = int(VERSION_PATTERN.match(segments[-1]).group(1))
        return SmartCode(root=segments[0], domain_segments=tuple(segments[1:-1]), version=version)

    def validate_many(self, codes: Iterable[tuple[str, Any]]) -> list[SmartCode]:
        """Validate several (location, code) pairs, reporting all failures together.

        Raises:
            SmartCodeError: Listing the violations of every invalid code
        """
        parsed: list[SmartCode] = []
        failures: list[str] = []
        first_bad: Any = None
        for location, code in codes:
            errors = self.check(code)
            if errors:
                if first_bad is None:
                    first_bad = code
                failures.extend(f"{location}: {e}" for e in errors)
                continue
            parsed.append(self.validate(code))

        if failures:
            raise SmartCodeError(first_bad, failures)
        return parsed

    def build(self, *segments: str, version: int = 1) -> SmartCode:
        """Build and validate a smart code from domain segments."""
        return self.validate(".".join((self.root_tag, *segments, f"v{version}")))


# Default validator instance
_default_validator: SmartCodeValidator | None = None


def get_validator() -> SmartCodeValidator:
    """Get the default smart code validator instance."""
    global _default_validator
    if _default_validator is None:
        _default_validator = SmartCodeValidator()
    return _default_validator


def validate(code: Any) -> SmartCode:
    """Validate code with the default validator."""
    return get_validator().validate(code)


def is_valid(code: Any) -> bool:
    return get_validator().is_valid(code)
