"""
Durable store for invoices and everything hanging off them.

InvoiceStore.transaction() yields a StoreTransaction: one connection, one
transaction, raw SQL. Services never see SQL; they call the methods below and
validate the returned row dicts into models. Every invoice-level read takes an
organization_id, so a row owned by another tenant simply isn't found.
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Iterator
from uuid import UUID

import psycopg2.errors
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, TransactionCursor
from core.models import InvoiceFilter

logger = logging.getLogger(__name__)

INVOICE_NUMBER_CONSTRAINT = "invoices_number_unique"

INVOICE_COLUMNS = (
    "id", "organization_id", "customer_id", "created_by", "invoice_number",
    "invoice_date", "due_date", "currency", "status", "subtotal", "tax_amount",
    "total_amount", "payment_status", "paid_amount", "payment_date",
    "government_id", "government_status", "submitted_at", "validated_at",
    "cancelled_at", "document", "notes", "created_at", "updated_at",
)

LINE_ITEM_COLUMNS = (
    "id", "invoice_id", "position", "description", "quantity", "unit_price",
    "tax_rate", "tax_amount", "total_amount", "created_at",
)

PAYMENT_COLUMNS = (
    "id", "invoice_id", "organization_id", "amount", "payment_date",
    "payment_method", "reference", "notes", "created_at",
)

SUBMISSION_COLUMNS = (
    "id", "invoice_id", "organization_id", "submission_id", "government_id",
    "status", "request", "response", "errors", "submitted_at", "created_at",
)

AUDIT_COLUMNS = (
    "id", "organization_id", "user_id", "entity_type", "entity_id", "action",
    "changes", "created_at",
)

# Columns stored as JSONB; values are wrapped with psycopg2's Json adapter
JSON_COLUMNS = {"request", "response", "errors", "changes"}

_INVOICE_SELECT = ", ".join(f"i.{col}" for col in INVOICE_COLUMNS)


class DuplicateInvoiceNumberError(Exception):
    """The allocated invoice number is already taken in this organization."""

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice number {invoice_number} already exists")


def _adapt(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS and value is not None:
        return Json(value)
    return value


def _build_invoice_where(organization_id: UUID, filters: InvoiceFilter | None) -> tuple[str, list[Any]]:
    """Translate an InvoiceFilter into a WHERE clause over alias i."""
    clauses = ["i.organization_id = %s"]
    params: list[Any] = [organization_id]

    if filters is None:
        return " AND ".join(clauses), params

    if filters.status is not None:
        clauses.append("i.status = %s")
        params.append(filters.status)

    if filters.statuses:
        clauses.append("i.status = ANY(%s)")
        params.append([s.value for s in filters.statuses])

    if filters.customer_id is not None:
        clauses.append("i.customer_id = %s")
        params.append(filters.customer_id)

    if filters.search:
        pattern = f"%{filters.search}%"
        clauses.append(
            "(i.invoice_number ILIKE %s OR EXISTS ("
            "SELECT 1 FROM customers c WHERE c.id = i.customer_id AND c.name ILIKE %s))"
        )
        params.extend([pattern, pattern])

    if filters.date_from is not None:
        clauses.append("i.invoice_date >= %s")
        params.append(filters.date_from)

    if filters.date_to is not None:
        clauses.append("i.invoice_date <= %s")
        params.append(filters.date_to)

    if filters.has_government_id is True:
        clauses.append("i.government_id IS NOT NULL")
    elif filters.has_government_id is False:
        clauses.append("i.government_id IS NULL")

    if filters.government_statuses is not None:
        values = [s.value for s in filters.government_statuses if s is not None]
        include_null = None in filters.government_statuses
        parts = []
        if values:
            parts.append("i.government_status = ANY(%s)")
            params.append(values)
        if include_null:
            parts.append("i.government_status IS NULL")
        clauses.append("(" + " OR ".join(parts) + ")" if parts else "FALSE")

    if filters.payment_statuses:
        clauses.append("i.payment_status = ANY(%s)")
        params.append([s.value for s in filters.payment_statuses])

    if filters.due_before is not None:
        clauses.append("i.due_date < %s")
        params.append(filters.due_before)

    return " AND ".join(clauses), params


class StoreTransaction:
    """
    Store operations bound to one open database transaction.

    Nothing here commits; InvoiceStore.transaction() commits when the block
    exits normally and rolls back on any exception.
    """

    def __init__(self, cursor: TransactionCursor):
        self._cursor = cursor

    def _insert(self, table: str, columns: tuple[str, ...], values: dict[str, Any]) -> dict[str, Any]:
        present = [col for col in columns if col in values]
        placeholders = ", ".join(["%s"] * len(present))
        row = self._cursor.execute_single(
            f"INSERT INTO {table} ({', '.join(present)}) VALUES ({placeholders}) RETURNING *",
            tuple(_adapt(col, values[col]) for col in present),
        )
        return row

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    def get_customer(self, customer_id: UUID, organization_id: UUID) -> dict[str, Any] | None:
        return self._cursor.execute_single(
            """
            SELECT id, organization_id, name, email, tax_id, country, created_at
            FROM customers
            WHERE id = %s AND organization_id = %s
            """,
            (customer_id, organization_id),
        )

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID, organization_id: UUID, for_update: bool = False) -> dict[str, Any] | None:
        """Fetch one invoice row; for_update takes the row lock until commit."""
        lock = " FOR UPDATE" if for_update else ""
        return self._cursor.execute_single(
            f"SELECT {_INVOICE_SELECT} FROM invoices i WHERE i.id = %s AND i.organization_id = %s{lock}",
            (invoice_id, organization_id),
        )

    def insert_invoice(self, values: dict[str, Any]) -> dict[str, Any]:
        """
        Insert an invoice row.

        Raises:
            DuplicateInvoiceNumberError: invoice_number already used by this organization
        """
        try:
            return self._insert("invoices", INVOICE_COLUMNS, values)
        except psycopg2.errors.UniqueViolation as e:
            if e.diag.constraint_name == INVOICE_NUMBER_CONSTRAINT:
                logger.warning(f"Invoice number {values['invoice_number']} already taken")
                raise DuplicateInvoiceNumberError(values["invoice_number"]) from e
            raise

    def update_invoice(self, invoice_id: UUID, values: dict[str, Any]) -> dict[str, Any]:
        """Set the given columns on an invoice and return the updated row."""
        set_clauses = [f"{col} = %s" for col in values]
        params = [_adapt(col, value) for col, value in values.items()]
        params.append(invoice_id)
        return self._cursor.execute_single(
            f"UPDATE invoices SET {', '.join(set_clauses)} WHERE id = %s RETURNING *",
            tuple(params),
        )

    def delete_invoice(self, invoice_id: UUID) -> None:
        """Delete an invoice; line items, payments and history cascade."""
        self._cursor.execute("DELETE FROM invoices WHERE id = %s", (invoice_id,))

    def list_invoices(
        self,
        organization_id: UUID,
        filters: InvoiceFilter | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Invoices matching filters, newest first."""
        where, params = _build_invoice_where(organization_id, filters)
        query = f"SELECT {_INVOICE_SELECT} FROM invoices i WHERE {where} ORDER BY i.created_at DESC, i.invoice_number DESC"
        if limit is not None:
            query += " LIMIT %s OFFSET %s"
            params.extend([limit, offset])
        return self._cursor.execute(query, tuple(params))

    def count_invoices(self, organization_id: UUID, filters: InvoiceFilter | None = None) -> int:
        where, params = _build_invoice_where(organization_id, filters)
        return self._cursor.execute_scalar(
            f"SELECT COUNT(*) FROM invoices i WHERE {where}",
            tuple(params),
        )

    def sum_invoice_amounts(self, organization_id: UUID, filters: InvoiceFilter | None = None) -> dict[str, Any]:
        """Summed total_amount and paid_amount over matching invoices."""
        where, params = _build_invoice_where(organization_id, filters)
        return self._cursor.execute_single(
            f"""
            SELECT COALESCE(SUM(i.total_amount), 0) AS total_amount,
                   COALESCE(SUM(i.paid_amount), 0) AS paid_amount
            FROM invoices i
            WHERE {where}
            """,
            tuple(params),
        )

    # -------------------------------------------------------------------------
    # Line items
    # -------------------------------------------------------------------------

    def get_line_items(self, invoice_id: UUID) -> list[dict[str, Any]]:
        return self._cursor.execute(
            f"SELECT {', '.join(LINE_ITEM_COLUMNS)} FROM invoice_line_items WHERE invoice_id = %s ORDER BY position",
            (invoice_id,),
        )

    def replace_line_items(self, invoice_id: UUID, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Delete every line item of the invoice, then insert the given ones."""
        self._cursor.execute("DELETE FROM invoice_line_items WHERE invoice_id = %s", (invoice_id,))
        return [self._insert("invoice_line_items", LINE_ITEM_COLUMNS, item) for item in items]

    # -------------------------------------------------------------------------
    # Invoice numbering
    # -------------------------------------------------------------------------

    def allocate_sequence(
        self,
        organization_id: UUID,
        sequence_date: date,
        timezone: str,
        number_prefix: str,
        at_least: int = 1,
    ) -> int:
        """
        Atomically bump and return the organization's counter for a day.

        The first allocation of a day seeds the counter past both the number
        of invoices created that day (in the given time zone) and the highest
        number already issued under number_prefix. at_least lets a retry
        step over a number that turned out to be taken.
        """
        return self._cursor.execute_scalar(
            """
            INSERT INTO invoice_sequences (organization_id, sequence_date, last_value)
            VALUES (%(organization_id)s, %(sequence_date)s, GREATEST(
                (SELECT COUNT(*) FROM invoices
                 WHERE organization_id = %(organization_id)s
                   AND (created_at AT TIME ZONE %(timezone)s)::date = %(sequence_date)s) + 1,
                (SELECT COALESCE(MAX(split_part(invoice_number, '-', 3)::int), 0) FROM invoices
                 WHERE organization_id = %(organization_id)s
                   AND invoice_number LIKE %(pattern)s) + 1,
                %(at_least)s
            ))
            ON CONFLICT (organization_id, sequence_date)
            DO UPDATE SET last_value = GREATEST(invoice_sequences.last_value + 1, %(at_least)s)
            RETURNING last_value
            """,
            {
                "organization_id": organization_id,
                "sequence_date": sequence_date,
                "timezone": timezone,
                "pattern": f"{number_prefix}%",
                "at_least": at_least,
            },
        )

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def list_payments(self, invoice_id: UUID) -> list[dict[str, Any]]:
        return self._cursor.execute(
            f"SELECT {', '.join(PAYMENT_COLUMNS)} FROM payments WHERE invoice_id = %s ORDER BY payment_date, created_at",
            (invoice_id,),
        )

    def insert_payment(self, values: dict[str, Any]) -> dict[str, Any]:
        return self._insert("payments", PAYMENT_COLUMNS, values)

    def get_payment(self, payment_id: UUID, organization_id: UUID) -> dict[str, Any] | None:
        """Fetch a payment whose invoice belongs to the organization."""
        columns = ", ".join(f"p.{col}" for col in PAYMENT_COLUMNS)
        return self._cursor.execute_single(
            f"""
            SELECT {columns}
            FROM payments p
            JOIN invoices i ON i.id = p.invoice_id
            WHERE p.id = %s AND i.organization_id = %s
            """,
            (payment_id, organization_id),
        )

    def delete_payment(self, payment_id: UUID) -> None:
        self._cursor.execute("DELETE FROM payments WHERE id = %s", (payment_id,))

    # -------------------------------------------------------------------------
    # Submission history
    # -------------------------------------------------------------------------

    def insert_submission(self, values: dict[str, Any]) -> dict[str, Any]:
        return self._insert("submission_history", SUBMISSION_COLUMNS, values)

    def list_submissions(self, invoice_id: UUID) -> list[dict[str, Any]]:
        """Submission history for an invoice, newest first."""
        return self._cursor.execute(
            f"SELECT {', '.join(SUBMISSION_COLUMNS)} FROM submission_history WHERE invoice_id = %s ORDER BY created_at DESC",
            (invoice_id,),
        )

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    def insert_audit_entry(self, values: dict[str, Any]) -> None:
        self._insert("audit_log", AUDIT_COLUMNS, values)

    def list_audit_entries(self, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        """Audit entries for an entity, newest first."""
        return self._cursor.execute(
            f"""
            SELECT {', '.join(AUDIT_COLUMNS)}
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id),
        )


class InvoiceStore:
    """
    Transaction factory over a PostgresClient.

    Usage:
        store = InvoiceStore(postgres)

        with store.transaction() as tx:
            row = tx.get_invoice(invoice_id, organization_id, for_update=True)
            tx.update_invoice(invoice_id, {"status": InvoiceStatus.SUBMITTED})
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        with self.postgres.transaction() as cursor:
            yield StoreTransaction(cursor)
