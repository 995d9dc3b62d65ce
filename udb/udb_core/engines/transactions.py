"""
Transaction engine.

Multi-line business events with header/line balance rules, ledger posting
and void/reverse.

State machine:
    draft -> posted -> void
                    -> reversed

Invariants:
    - Header and lines commit in one unit of work
    - Line numbers run 1..n within a transaction
    - line_amount defaults to quantity x unit_amount
    - Only draft transactions are updated, deleted or posted
    - Only posted transactions are voided or reversed
    - Posting fails closed: on any error the transaction stays draft

How to change safely:
    - Every new status needs an explicit transition check
    - Keep posting inside the caller's unit of work so create+post is atomic
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from ..deadline import Deadline
from ..errors import (
    DuplicateCodeError,
    ImbalanceError,
    InvalidTransitionError,
    ReferentialError,
    ValidationError,
)
from ..schema.types import (
    LedgerSide,
    Transaction,
    TransactionLine,
    TransactionStatus,
    json_object,
    normalize_type_tag,
    now_ms,
    to_decimal,
)
from .base import EngineBase, read_window
from .ledger import (
    PostingRule,
    PostingRuleSet,
    business_total,
    check_ledger_balance,
    is_ledger_code,
    is_ledger_line,
    ledger_totals,
    line_currency,
)

logger = logging.getLogger(__name__)

LEDGER_LINE_TYPE = "GL"

# Transaction code prefixes by type
CODE_PREFIXES = {
    "SALE": "INV",
    "PURCHASE": "PUR",
    "PAYMENT": "PMT",
    "RECEIPT": "RCP",
    "EXPENSE": "EXP",
    "TRANSFER": "TRF",
    "PAYROLL": "PAY",
    "INVENTORY_ADJUSTMENT": "ADJ",
    "JOURNAL_ENTRY": "JE",
}


def _normalize_date(value: Any) -> str:
    if value is None:
        return datetime.now(timezone.utc).date().isoformat()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(
                f"'transaction_date' must be ISO-8601, got '{value}'", field_name="transaction_date"
            )
        return text
    raise ValidationError("'transaction_date' must be a date", field_name="transaction_date")


class TransactionEngine(EngineBase):
    """Transaction lifecycle and ledger posting.

    Example:
        >>> engine = TransactionEngine(store)
        >>> txn = await engine.create_transaction(
        ...     org_id,
        ...     {"transaction_type": "sale", "smart_code": "HERA.SALON.POS.TXN.SALE.v1"},
        ...     [{"line_type": "SERVICE", "unit_amount": "150.00",
        ...       "smart_code": "HERA.SALON.POS.LINE.SERVICE.v1"}],
        ...     actor_id=user_id,
        ...     auto_post_ledger=True,
        ... )
    """

    def __init__(self, store, config=None, validator=None, posting_rules=None) -> None:
        super().__init__(store, config, validator)
        self.posting_rules = posting_rules or PostingRuleSet.defaults()

    # --- Payload validation ---

    def ledger_smart_code(self, side: LedgerSide) -> str:
        return str(self.validator.build("FINANCE", "GL", "LINE", side.value))

    def parse_header(self, header: Any) -> dict[str, Any]:
        if not isinstance(header, dict):
            raise ValidationError("header must be an object", field_name="header")
        self._smart_code(header.get("smart_code"), "header.smart_code")
        metadata = json_object(header.get("metadata"), "metadata")
        code = header.get("transaction_code")
        if code is not None and (not isinstance(code, str) or not code.strip()):
            raise ValidationError(
                "'transaction_code' must be a non-empty string", field_name="transaction_code"
            )
        total = header.get("total_amount")
        return {
            "transaction_type": normalize_type_tag(
                header.get("transaction_type"), "transaction_type"
            ),
            "transaction_code": code.strip() if code else None,
            "transaction_date": _normalize_date(header.get("transaction_date")),
            "smart_code": header["smart_code"],
            "total_amount": None if total is None else to_decimal(total, "total_amount"),
            "total_override": bool(header.get("total_override", False)),
            "source_entity_id": header.get("source_entity_id"),
            "target_entity_id": header.get("target_entity_id"),
            "metadata": metadata,
        }

    def parse_lines(self, lines: Any, default_currency: str) -> list[dict[str, Any]]:
        """Validate lines and derive their amounts.

        Raises:
            ValidationError: On a missing line_type, bad smart code, missing
                amount or a ledger line without a DR/CR side
        """
        if lines is None:
            return []
        if not isinstance(lines, list):
            raise ValidationError("lines must be a list", field_name="lines")

        parsed: list[dict[str, Any]] = []
        for index, raw in enumerate(lines, start=1):
            where = f"lines[{index}]"
            if not isinstance(raw, dict):
                raise ValidationError(f"{where} must be an object", field_name=where)
            line_type = raw.get("line_type")
            if not isinstance(line_type, str) or not line_type.strip():
                raise ValidationError(f"{where}.line_type is required", field_name="line_type")
            smart_code = raw.get("smart_code")
            self._smart_code(smart_code, f"{where}.smart_code")

            line_data = json_object(raw.get("line_data"), f"{where}.line_data")

            quantity = to_decimal(raw.get("quantity", 1), f"{where}.quantity")
            unit_amount = raw.get("unit_amount")
            unit = None if unit_amount is None else to_decimal(unit_amount, f"{where}.unit_amount")
            if raw.get("line_amount") is not None:
                amount = to_decimal(raw["line_amount"], f"{where}.line_amount")
            elif unit is not None:
                amount = quantity * unit
            else:
                raise ValidationError(
                    f"{where} needs line_amount or unit_amount", field_name="line_amount"
                )

            if is_ledger_code(smart_code):
                side = str(line_data.get("side", "")).upper()
                if side not in ("DR", "CR"):
                    raise ValidationError(
                        f"{where} is a ledger line and needs line_data.side DR or CR",
                        field_name="side",
                    )
                line_data = {
                    **line_data,
                    "side": side,
                    "currency": line_data.get("currency") or default_currency,
                }

            parsed.append(
                {
                    "line_type": line_type.strip(),
                    "description": raw.get("description"),
                    "entity_id": raw.get("entity_id"),
                    "quantity": quantity,
                    "unit_amount": unit,
                    "line_amount": amount,
                    "smart_code": smart_code,
                    "line_data": line_data,
                }
            )
        return parsed

    def _currency(self, header_metadata: dict[str, Any]) -> str:
        return str(header_metadata.get("currency") or self.config.ledger.default_currency)

    # --- Unit-of-work helpers ---

    def _require_transaction(
        self, conn: sqlite3.Connection, org_id: str, transaction_id: str
    ) -> Transaction:
        txn = self.store.fetch_transaction(conn, org_id, transaction_id)
        if txn is None:
            self._check_owner(conn, org_id, "transaction", transaction_id)
            raise ReferentialError(
                f"Transaction not found: {transaction_id}",
                resource_type="transaction",
                resource_id=transaction_id,
            )
        return txn

    def _generate_code(self, conn: sqlite3.Connection, org_id: str, transaction_type: str) -> str:
        prefix = CODE_PREFIXES.get(transaction_type, "TXN")
        while True:
            code = f"{prefix}-{uuid.uuid4().hex[:10].upper()}"
            if not self.store.transaction_code_exists(conn, org_id, code):
                return code

    def _unique_code(self, conn: sqlite3.Connection, org_id: str, base: str) -> str:
        code = base
        suffix = 1
        while self.store.transaction_code_exists(conn, org_id, code):
            suffix += 1
            code = f"{base}-{suffix}"
        return code

    def _check_header_refs(
        self, conn: sqlite3.Connection, org_id: str, attrs: dict[str, Any]
    ) -> None:
        for role in ("source_entity_id", "target_entity_id"):
            if attrs.get(role) is not None:
                self._require_entity(conn, org_id, attrs[role], role)

    def _resolve_account(self, conn: sqlite3.Connection, org_id: str, account_code: str) -> str:
        account = self.store.find_entity_by_code(
            conn, org_id, self.config.ledger.gl_account_entity_type, account_code
        )
        if account is None or account.status == self.config.engine.soft_delete_status:
            raise ReferentialError(
                f"GL account not found: {account_code}",
                resource_type="gl_account",
                resource_id=account_code,
                code="GL_ACCOUNT_NOT_FOUND",
            )
        return account.id

    def _derive_ledger_lines(
        self,
        conn: sqlite3.Connection,
        txn: Transaction,
        rule: PostingRule,
    ) -> list[TransactionLine]:
        """Aggregate DR/CR lines per (side, account, currency) from business lines."""
        default_currency = self._currency(txn.metadata)
        sources = [line for line in txn.lines if not is_ledger_line(line)]
        postings: list[tuple[Decimal, str | None, str]] = [
            (
                line.line_amount,
                line.line_data.get("gl_account_code"),
                line_currency(line, default_currency),
            )
            for line in sources
        ]
        if not postings and txn.total_amount:
            postings = [(txn.total_amount, None, default_currency)]

        buckets: dict[tuple[LedgerSide, str, str], Decimal] = {}
        for amount, override, currency in postings:
            if not amount:
                continue
            for side in (LedgerSide.DR, LedgerSide.CR):
                key = (side, rule.account_for(side, override), currency)
                buckets[key] = buckets.get(key, Decimal("0")) + amount

        next_number = max((line.line_number for line in txn.lines), default=0) + 1
        now = now_ms()
        derived: list[TransactionLine] = []
        for side, account_code, currency in sorted(
            buckets, key=lambda k: (k[0] is LedgerSide.CR, k[2], k[1])
        ):
            amount = buckets[(side, account_code, currency)]
            if not amount:
                continue
            if amount < 0:
                side, amount = side.opposite(), -amount
            derived.append(
                TransactionLine(
                    id=str(uuid.uuid4()),
                    transaction_id=txn.id,
                    organization_id=txn.organization_id,
                    line_number=next_number,
                    line_type=LEDGER_LINE_TYPE,
                    smart_code=self.ledger_smart_code(side),
                    line_amount=amount,
                    unit_amount=amount,
                    entity_id=self._resolve_account(conn, txn.organization_id, account_code),
                    description=rule.description or None,
                    line_data={
                        "side": side.value,
                        "account_code": account_code,
                        "currency": currency,
                    },
                    created_at=now,
                )
            )
            next_number += 1
        return derived

    def _post_in_unit(
        self,
        conn: sqlite3.Connection,
        txn: Transaction,
        actor_id: str | None,
        derive: bool,
    ) -> Transaction:
        """Post a draft inside an open unit of work.

        With derive, business lines are turned into ledger lines unless the
        transaction already carries ledger lines.

        Raises:
            InvalidTransitionError: If txn is not draft
            ImbalanceError: If ledger lines do not balance
            ReferentialError: If a GL account is missing
            ValidationError: If no posting rule matches the transaction type
        """
        if txn.status is not TransactionStatus.DRAFT:
            raise InvalidTransitionError(txn.id, txn.status.value, "post")

        has_ledger = any(is_ledger_line(line) for line in txn.lines)
        new_lines: list[TransactionLine] = []
        if derive and not has_ledger:
            rule = self.posting_rules.resolve(
                txn.transaction_type, txn.metadata.get("payment_method")
            )
            if rule is None:
                raise ValidationError(
                    f"No posting rule for transaction type '{txn.transaction_type}'",
                    field_name="transaction_type",
                    code="NO_POSTING_RULE",
                )
            new_lines = self._derive_ledger_lines(conn, txn, rule)
            if not new_lines:
                raise ImbalanceError(
                    f"Transaction {txn.id} has no amounts to post",
                    expected=txn.total_amount,
                    actual=Decimal("0"),
                    transaction_id=txn.id,
                )

        all_lines = txn.lines + new_lines
        check_ledger_balance(
            all_lines,
            self._currency(txn.metadata),
            transaction_id=txn.id,
        )
        for line in new_lines:
            self.store.insert_line(conn, line)

        posted = replace(
            txn,
            status=TransactionStatus.POSTED,
            updated_by=actor_id,
            updated_at=now_ms(),
            lines=all_lines,
        )
        self.store.update_transaction_row(conn, posted)
        return posted

    # --- Operations ---

    async def create_transaction(
        self,
        org_id: str,
        header: dict[str, Any],
        lines: list[dict[str, Any]] | None = None,
        actor_id: str | None = None,
        auto_post_ledger: bool = False,
        validate_balance: bool = True,
        deadline: Deadline | None = None,
    ) -> Transaction:
        """Create a draft transaction, optionally posting it to the ledger.

        The header total defaults to the sum of business lines. With
        validate_balance, a supplied total that differs from that sum beyond
        the tolerance fails unless header["total_override"] is true, and
        supplied ledger lines must balance per currency. With
        auto_post_ledger, creation and posting are one atomic unit.

        Raises:
            ValidationError: On malformed header or lines
            ReferentialError: If a referenced entity or GL account is missing
            CrossOrgAccessError: If a referenced entity is in another organization
            DuplicateCodeError: If transaction_code is taken
            ImbalanceError: If totals or ledger sides do not balance
        """
        attrs = self.parse_header(header)
        parsed_lines = self.parse_lines(lines, self._currency(attrs["metadata"]))

        txn_id = header.get("id") or str(uuid.uuid4())
        now = now_ms()
        line_rows = [
            TransactionLine(
                id=str(uuid.uuid4()),
                transaction_id=txn_id,
                organization_id=org_id,
                line_number=number,
                created_at=now,
                **line,
            )
            for number, line in enumerate(parsed_lines, start=1)
        ]

        has_business = any(not is_ledger_line(line) for line in line_rows)
        computed = business_total(line_rows)
        total = attrs["total_amount"]
        if total is None:
            if has_business:
                total = computed
            else:
                totals = ledger_totals(line_rows, self._currency(attrs["metadata"]))
                total = sum((sides[LedgerSide.DR] for sides in totals.values()), Decimal("0"))
        elif (
            validate_balance
            and has_business
            and not attrs["total_override"]
            and abs(total - computed) > self.config.ledger.balance_tolerance
        ):
            raise ImbalanceError(
                f"Header total {total} does not match line total {computed}",
                expected=total,
                actual=computed,
                transaction_id=txn_id,
            )
        if validate_balance:
            check_ledger_balance(
                line_rows,
                self._currency(attrs["metadata"]),
                transaction_id=txn_id,
            )

        with self.store.unit_of_work("create_transaction", self._deadline(deadline)) as conn:
            self._require_organization(conn, org_id)
            if self._check_owner(conn, org_id, "transaction", txn_id):
                raise DuplicateCodeError(
                    "transaction", txn_id, organization_id=org_id, existing_id=txn_id
                )
            self._check_header_refs(conn, org_id, attrs)
            for line in line_rows:
                if line.entity_id is not None:
                    role = f"lines[{line.line_number}].entity_id"
                    self._require_entity(conn, org_id, line.entity_id, role)

            code = attrs["transaction_code"]
            if code is None:
                code = self._generate_code(conn, org_id, attrs["transaction_type"])
            elif self.store.transaction_code_exists(conn, org_id, code):
                raise DuplicateCodeError("transaction", code, organization_id=org_id)

            txn = Transaction(
                id=txn_id,
                organization_id=org_id,
                transaction_type=attrs["transaction_type"],
                transaction_code=code,
                transaction_date=attrs["transaction_date"],
                total_amount=total,
                smart_code=attrs["smart_code"],
                source_entity_id=attrs["source_entity_id"],
                target_entity_id=attrs["target_entity_id"],
                metadata=attrs["metadata"],
                created_by=actor_id,
                updated_by=actor_id,
                created_at=now,
                updated_at=now,
                lines=line_rows,
            )
            self.store.insert_transaction(conn, txn)
            for line in line_rows:
                self.store.insert_line(conn, line)

            if auto_post_ledger:
                txn = self._post_in_unit(conn, txn, actor_id, derive=True)

        logger.info(
            "Created transaction",
            extra={
                "organization_id": org_id,
                "transaction_id": txn.id,
                "transaction_type": txn.transaction_type,
                "status": txn.status.value,
                "line_count": len(txn.lines),
            },
        )
        return txn

    async def post_to_ledger(
        self,
        org_id: str,
        transaction_id: str,
        actor_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> Transaction:
        """Derive balanced ledger lines from posting rules and post.

        Transactions already carrying ledger lines are validated and posted
        as they are. On failure nothing is written and the transaction stays
        draft.
        """
        with self.store.unit_of_work("post_to_ledger", self._deadline(deadline)) as conn:
            txn = self._require_transaction(conn, org_id, transaction_id)
            posted = self._post_in_unit(conn, txn, actor_id, derive=True)

        logger.info(
            "Posted transaction to ledger",
            extra={"organization_id": org_id, "transaction_id": transaction_id},
        )
        return posted

    async def post_transaction(
        self,
        org_id: str,
        transaction_id: str,
        actor_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> Transaction:
        """Move a draft to posted without deriving ledger lines."""
        with self.store.unit_of_work("post_transaction", self._deadline(deadline)) as conn:
            txn = self._require_transaction(conn, org_id, transaction_id)
            posted = self._post_in_unit(conn, txn, actor_id, derive=False)

        logger.info(
            "Posted transaction",
            extra={"organization_id": org_id, "transaction_id": transaction_id},
        )
        return posted

    async def _reverse(
        self,
        org_id: str,
        transaction_id: str,
        reason: str | None,
        actor_id: str | None,
        final_status: TransactionStatus,
        operation: str,
        deadline: Deadline | None,
    ) -> tuple[Transaction, Transaction]:
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("'reason' must be a string", field_name="reason")
        with self.store.unit_of_work(operation, self._deadline(deadline)) as conn:
            original = self._require_transaction(conn, org_id, transaction_id)
            if original.status is not TransactionStatus.POSTED:
                raise InvalidTransitionError(transaction_id, original.status.value, operation)

            now = now_ms()
            reversal_id = str(uuid.uuid4())
            suffix = "VOID" if final_status is TransactionStatus.VOID else "REV"
            lines: list[TransactionLine] = []
            for line in original.lines:
                if is_ledger_line(line) and line.side is not None:
                    side = line.side.opposite()
                    smart_code = line.smart_code
                    if smart_code == self.ledger_smart_code(line.side):
                        smart_code = self.ledger_smart_code(side)
                    reversed_line = replace(
                        line,
                        smart_code=smart_code,
                        line_data={**line.line_data, "side": side.value},
                    )
                else:
                    reversed_line = replace(
                        line,
                        line_amount=-line.line_amount,
                        unit_amount=None if line.unit_amount is None else -line.unit_amount,
                    )
                lines.append(
                    replace(
                        reversed_line,
                        id=str(uuid.uuid4()),
                        transaction_id=reversal_id,
                        created_at=now,
                    )
                )

            reversal = Transaction(
                id=reversal_id,
                organization_id=org_id,
                transaction_type=original.transaction_type,
                transaction_code=self._unique_code(
                    conn, org_id, f"{original.transaction_code}-{suffix}"
                ),
                transaction_date=datetime.now(timezone.utc).date().isoformat(),
                total_amount=-original.total_amount,
                smart_code=original.smart_code,
                status=TransactionStatus.POSTED,
                source_entity_id=original.source_entity_id,
                target_entity_id=original.target_entity_id,
                metadata={
                    **original.metadata,
                    "reversal_of": original.id,
                    "reversal_kind": final_status.value,
                    "reason": reason,
                },
                created_by=actor_id,
                updated_by=actor_id,
                created_at=now,
                updated_at=now,
                lines=lines,
            )
            self.store.insert_transaction(conn, reversal)
            for line in lines:
                self.store.insert_line(conn, line)

            closed = replace(
                original,
                status=final_status,
                metadata={**original.metadata, "reversed_by": reversal_id, "reason": reason},
                updated_by=actor_id,
                updated_at=now,
            )
            self.store.update_transaction_row(conn, closed)

        logger.info(
            "Reversed transaction",
            extra={
                "organization_id": org_id,
                "transaction_id": transaction_id,
                "reversal_id": reversal_id,
                "status": final_status.value,
            },
        )
        return closed, reversal

    async def void_transaction(
        self,
        org_id: str,
        transaction_id: str,
        reason: str | None = None,
        actor_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> tuple[Transaction, Transaction]:
        """Void a posted transaction with a reversing entry.

        Returns:
            (original marked void, reversing transaction)

        Raises:
            InvalidTransitionError: If the transaction is not posted
        """
        return await self._reverse(
            org_id, transaction_id, reason, actor_id, TransactionStatus.VOID, "void", deadline
        )

    async def reverse_transaction(
        self,
        org_id: str,
        transaction_id: str,
        reason: str | None = None,
        actor_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> tuple[Transaction, Transaction]:
        """Like void_transaction, but marks the original reversed."""
        return await self._reverse(
            org_id,
            transaction_id,
            reason,
            actor_id,
            TransactionStatus.REVERSED,
            "reverse",
            deadline,
        )

    async def get_transaction(
        self, org_id: str, transaction_id: str, deadline: Deadline | None = None
    ) -> Transaction:
        with self.store.read_snapshot("get_transaction", self._deadline(deadline)) as conn:
            return self._require_transaction(conn, org_id, transaction_id)

    async def read_transactions(
        self,
        org_id: str,
        filters: dict[str, Any] | None = None,
        deadline: Deadline | None = None,
    ) -> list[Transaction]:
        """Filtered read.

        Filters: transaction_type, status, source_entity_id, target_entity_id,
        smart_code, transaction_code, date_from, date_to, include_lines,
        limit, offset.
        """
        filters = filters or {}
        transaction_type = filters.get("transaction_type")
        if transaction_type is not None:
            transaction_type = normalize_type_tag(transaction_type, "transaction_type")
        status = filters.get("status") or filters.get("transaction_status")
        if status is not None:
            try:
                status = TransactionStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown transaction status '{status}'", field_name="status")
        limit, offset = read_window(filters)

        with self.store.read_snapshot("read_transactions", self._deadline(deadline)) as conn:
            self._require_organization(conn, org_id)
            return self.store.query_transactions(
                conn,
                org_id,
                transaction_type=transaction_type,
                status=status,
                source_entity_id=filters.get("source_entity_id"),
                target_entity_id=filters.get("target_entity_id"),
                smart_code=filters.get("smart_code"),
                transaction_code=filters.get("transaction_code"),
                date_from=filters.get("date_from"),
                date_to=filters.get("date_to"),
                include_lines=bool(filters.get("include_lines", False)),
                limit=limit,
                offset=offset,
            )

    async def update_transaction(
        self,
        org_id: str,
        transaction_id: str,
        header: dict[str, Any],
        actor_id: str | None = None,
        validate_balance: bool = True,
        deadline: Deadline | None = None,
    ) -> Transaction:
        """Update header fields of a draft.

        Raises:
            InvalidTransitionError: If the transaction is not draft
            ImbalanceError: If a new total_amount disagrees with the lines
        """
        if not isinstance(header, dict):
            raise ValidationError("header must be an object", field_name="header")
        changes: dict[str, Any] = {}
        if "smart_code" in header:
            self._smart_code(header["smart_code"], "header.smart_code")
            changes["smart_code"] = header["smart_code"]
        if "transaction_date" in header:
            changes["transaction_date"] = _normalize_date(header["transaction_date"])
        if "transaction_code" in header:
            code = header["transaction_code"]
            if not isinstance(code, str) or not code.strip():
                raise ValidationError(
                    "'transaction_code' must be a non-empty string", field_name="transaction_code"
                )
            changes["transaction_code"] = code.strip()
        if "metadata" in header:
            changes["metadata"] = json_object(header["metadata"], "metadata")
        for role in ("source_entity_id", "target_entity_id"):
            if role in header:
                changes[role] = header[role]
        if header.get("total_amount") is not None:
            changes["total_amount"] = to_decimal(header["total_amount"], "total_amount")

        with self.store.unit_of_work("update_transaction", self._deadline(deadline)) as conn:
            txn = self._require_transaction(conn, org_id, transaction_id)
            if txn.status is not TransactionStatus.DRAFT:
                raise InvalidTransitionError(transaction_id, txn.status.value, "update")
            self._check_header_refs(conn, org_id, changes)
            code = changes.get("transaction_code")
            if code is not None and code != txn.transaction_code:
                if self.store.transaction_code_exists(conn, org_id, code):
                    raise DuplicateCodeError("transaction", code, organization_id=org_id)
            total = changes.get("total_amount")
            has_business = any(not is_ledger_line(line) for line in txn.lines)
            if (
                total is not None
                and validate_balance
                and has_business
                and not header.get("total_override", False)
            ):
                computed = business_total(txn.lines)
                if abs(total - computed) > self.config.ledger.balance_tolerance:
                    raise ImbalanceError(
                        f"Header total {total} does not match line total {computed}",
                        expected=total,
                        actual=computed,
                        transaction_id=transaction_id,
                    )
            updated = replace(txn, **changes, updated_by=actor_id, updated_at=now_ms())
            self.store.update_transaction_row(conn, updated)

        logger.debug(
            "Updated transaction",
            extra={"organization_id": org_id, "transaction_id": transaction_id},
        )
        return updated

    async def delete_transaction(
        self,
        org_id: str,
        transaction_id: str,
        deadline: Deadline | None = None,
    ) -> Transaction:
        """Delete a draft with its lines.

        Raises:
            InvalidTransitionError: If the transaction is not draft
        """
        with self.store.unit_of_work("delete_transaction", self._deadline(deadline)) as conn:
            txn = self._require_transaction(conn, org_id, transaction_id)
            if txn.status is not TransactionStatus.DRAFT:
                raise InvalidTransitionError(transaction_id, txn.status.value, "delete")
            self.store.delete_transaction_row(conn, org_id, transaction_id)

        logger.info(
            "Deleted transaction",
            extra={"organization_id": org_id, "transaction_id": transaction_id},
        )
        return txn
