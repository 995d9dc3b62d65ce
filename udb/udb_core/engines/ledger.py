"""
Ledger posting rules and balance checks.

A ledger line is any transaction line whose smart code carries a GL domain
segment; it records line_data["side"] ("DR" or "CR"), "account_code" and
"currency". Everything else is a business line.

Posting rules map a transaction type (and optionally a payment method) to a
debit and a credit GL account code. One side of each rule is the "line
side": a business line may redirect that side to another account with
line_data["gl_account_code"].

Invariants:
    - All arithmetic is Decimal
    - Debits equal credits exactly per currency
    - Rule resolution is deterministic (priority, then registration order)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..errors import ImbalanceError
from ..schema.smart_code import LEDGER_SEGMENT
from ..schema.types import LedgerSide, TransactionLine

ANY_PAYMENT_METHOD = "*"


@dataclass(frozen=True)
class PostingRule:
    """Maps a transaction type to its debit and credit accounts.

    Attributes:
        transaction_type: Upper-case transaction type
        debit_account: GL account code debited
        credit_account: GL account code credited
        line_side: Side whose account a line-level gl_account_code replaces
        payment_method: Payment method matched ("*" matches any)
        priority: Higher wins among matching rules
        description: Human readable purpose
    """

    transaction_type: str
    debit_account: str
    credit_account: str
    line_side: LedgerSide = LedgerSide.CR
    payment_method: str = ANY_PAYMENT_METHOD
    priority: int = 100
    description: str = ""

    def matches(self, transaction_type: str, payment_method: str | None) -> bool:
        if self.transaction_type != transaction_type:
            return False
        if self.payment_method == ANY_PAYMENT_METHOD:
            return True
        return payment_method is not None and payment_method.lower() == self.payment_method

    def account_for(self, side: LedgerSide, override: str | None = None) -> str:
        if override and side is self.line_side:
            return override
        return self.debit_account if side is LedgerSide.DR else self.credit_account


DEFAULT_POSTING_RULES: tuple[PostingRule, ...] = (
    PostingRule("SALE", "1100", "4000", LedgerSide.CR, "cash", 100, "Cash sale"),
    PostingRule("SALE", "1200", "4000", LedgerSide.CR, ANY_PAYMENT_METHOD, 90, "Credit sale"),
    PostingRule("PURCHASE", "5000", "1100", LedgerSide.DR, "cash", 100, "Cash purchase"),
    PostingRule("PURCHASE", "5000", "2100", LedgerSide.DR, ANY_PAYMENT_METHOD, 90, "Credit purchase"),
    PostingRule("PAYMENT", "2100", "1100", LedgerSide.DR, ANY_PAYMENT_METHOD, 100, "Vendor payment"),
    PostingRule("RECEIPT", "1100", "1200", LedgerSide.CR, ANY_PAYMENT_METHOD, 100, "Customer payment"),
    PostingRule("EXPENSE", "6000", "1100", LedgerSide.DR, ANY_PAYMENT_METHOD, 100, "Operating expense"),
)


class PostingRuleSet:
    """Registry of posting rules.

    Example:
        >>> rules = PostingRuleSet.defaults()
        >>> rules.resolve("SALE", "cash").debit_account
        '1100'
    """

    def __init__(self, rules: Iterable[PostingRule] = ()) -> None:
        self._rules: list[PostingRule] = []
        for rule in rules:
            self.register(rule)

    @classmethod
    def defaults(cls) -> PostingRuleSet:
        return cls(DEFAULT_POSTING_RULES)

    def register(self, rule: PostingRule) -> None:
        self._rules.append(rule)

    def resolve(
        self, transaction_type: str, payment_method: str | None = None
    ) -> PostingRule | None:
        best: PostingRule | None = None
        for rule in self._rules:
            if rule.matches(transaction_type, payment_method):
                if best is None or rule.priority > best.priority:
                    best = rule
        return best

    def __len__(self) -> int:
        return len(self._rules)


def is_ledger_code(smart_code: str) -> bool:
    return LEDGER_SEGMENT in smart_code.split(".")[1:-1]


def is_ledger_line(line: TransactionLine) -> bool:
    return is_ledger_code(line.smart_code)


def business_total(lines: Iterable[TransactionLine]) -> Decimal:
    """Sum of line_amount over non-ledger lines."""
    return sum((line.line_amount for line in lines if not is_ledger_line(line)), Decimal("0"))


def line_currency(line: TransactionLine, default_currency: str) -> str:
    return str(line.line_data.get("currency") or default_currency)


def ledger_totals(
    lines: Iterable[TransactionLine],
    default_currency: str,
) -> dict[str, dict[LedgerSide, Decimal]]:
    """Debit and credit totals per currency over ledger lines."""
    totals: dict[str, dict[LedgerSide, Decimal]] = {}
    for line in lines:
        if not is_ledger_line(line) or line.side is None:
            continue
        bucket = totals.setdefault(
            line_currency(line, default_currency),
            {LedgerSide.DR: Decimal("0"), LedgerSide.CR: Decimal("0")},
        )
        bucket[line.side] += line.line_amount
    return totals


def check_ledger_balance(
    lines: Iterable[TransactionLine],
    default_currency: str,
    transaction_id: str | None = None,
) -> dict[str, dict[LedgerSide, Decimal]]:
    """Verify debits equal credits per currency.

    Returns:
        The per-currency totals

    Raises:
        ImbalanceError: Naming the first unbalanced currency
    """
    totals = ledger_totals(lines, default_currency)
    for currency in sorted(totals):
        debit = totals[currency][LedgerSide.DR]
        credit = totals[currency][LedgerSide.CR]
        if debit != credit:
            raise ImbalanceError(
                f"Ledger lines do not balance in {currency}: DR {debit} != CR {credit}",
                expected=debit,
                actual=credit,
                transaction_id=transaction_id,
                currency=currency,
            )
    return totals


def summarize(totals: dict[str, dict[LedgerSide, Decimal]]) -> dict[str, Any]:
    return {
        currency: {"debit": str(sides[LedgerSide.DR]), "credit": str(sides[LedgerSide.CR])}
        for currency, sides in totals.items()
    }
