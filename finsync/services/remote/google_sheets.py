"""
Google Sheets Remote Data Service

DESIGN DECISION: Google Sheets works as a hosted backend for a single
user's finances because:
1. The owner can read their data directly in Sheets
2. No server or database to run
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions (each call touches one row, or one bucket's rows)
- No server-side queries (we filter in Python)
- gspread is blocking, so every call runs in a worker thread

One worksheet per entity type. Each row is one record; the header row
holds the field names below.
"""

import asyncio
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import uuid4

import gspread
import structlog
from gspread.exceptions import APIError
from gspread.utils import rowcol_to_a1
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from finsync.config import GoogleSheetsSettings, get_settings
from finsync.models.entities import (
    Budget,
    EntitySyncStatus,
    EntityType,
    Expense,
    LocalRecord,
    SavingsBucket,
    SavingsEntry,
    model_for,
    utcnow,
)
from finsync.models.sync import RemoteErrorKind, RemoteSnapshot
from finsync.services.remote.interface import RemoteDataService, RemoteServiceError


logger = structlog.get_logger("finsync.remote.google_sheets")


# Column mappings, one worksheet per entity
SHEET_COLUMNS: dict[EntityType, list[str]] = {
    EntityType.EXPENSE: [
        "id", "owner_id", "created_at", "amount", "category", "date", "notes", "kind",
    ],
    EntityType.BUDGET: [
        "id", "owner_id", "created_at", "month", "amount",
    ],
    EntityType.SAVINGS_BUCKET: [
        "id", "owner_id", "created_at", "name", "color", "goal_amount",
        "interest_yearly_percent",
    ],
    EntityType.SAVINGS_ENTRY: [
        "id", "owner_id", "created_at", "bucket_id", "amount", "entry_type", "date", "notes",
    ],
}


def error_kind_for_status(status_code: Optional[int]) -> RemoteErrorKind:
    """Map a Sheets API HTTP status to a remote error kind."""
    if status_code is None:
        return RemoteErrorKind.SERVER
    if status_code == 429 or status_code >= 500:
        return RemoteErrorKind.SERVER
    if status_code in (401, 403):
        return RemoteErrorKind.UNAUTHORIZED
    if status_code == 404:
        return RemoteErrorKind.NOT_FOUND
    if 400 <= status_code < 500:
        return RemoteErrorKind.VALIDATION
    return RemoteErrorKind.SERVER


def translate_error(error: Exception) -> RemoteServiceError:
    """Turn a gspread/transport exception into a RemoteServiceError."""
    if isinstance(error, RemoteServiceError):
        return error
    if isinstance(error, APIError):
        response = getattr(error, "response", None)
        status_code = getattr(response, "status_code", None)
        return RemoteServiceError(error_kind_for_status(status_code), str(error))
    if isinstance(error, gspread.SpreadsheetNotFound):
        return RemoteServiceError(RemoteErrorKind.NOT_FOUND, "Spreadsheet not found")
    # requests' ConnectionError/Timeout derive from IOError
    if isinstance(error, OSError):
        return RemoteServiceError(RemoteErrorKind.NETWORK, str(error))
    return RemoteServiceError(RemoteErrorKind.SERVER, str(error))


def record_to_row(entity_type: EntityType, record: LocalRecord) -> list[str]:
    """Convert a record to a spreadsheet row."""
    payload = record.to_payload()
    return [
        "" if payload.get(column) is None else str(payload[column])
        for column in SHEET_COLUMNS[entity_type]
    ]


def row_to_record(entity_type: EntityType, row: list[str]) -> Any:
    """Convert a spreadsheet row to a synced record."""
    data: dict[str, Any] = {}
    for index, column in enumerate(SHEET_COLUMNS[entity_type]):
        value = row[index] if index < len(row) else ""
        if value != "":
            data[column] = value
    data["sync_status"] = EntitySyncStatus.SYNCED
    return model_for(entity_type).model_validate(data)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet lookup.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise RemoteServiceError(
                    RemoteErrorKind.UNAUTHORIZED,
                    f"Google credentials file not found: {self._settings.credentials_path}",
                )
        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            client = self.connect()
            self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
        return self._spreadsheet

    def sheet_name(self, entity_type: EntityType) -> str:
        return {
            EntityType.EXPENSE: self._settings.expenses_sheet_name,
            EntityType.BUDGET: self._settings.budgets_sheet_name,
            EntityType.SAVINGS_BUCKET: self._settings.buckets_sheet_name,
            EntityType.SAVINGS_ENTRY: self._settings.entries_sheet_name,
        }[entity_type]

    def worksheet(self, entity_type: EntityType) -> gspread.Worksheet:
        """Get or create the worksheet for an entity type."""
        spreadsheet = self.get_spreadsheet()
        columns = SHEET_COLUMNS[entity_type]
        try:
            sheet = spreadsheet.worksheet(self.sheet_name(entity_type))
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=self.sheet_name(entity_type),
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class GoogleSheetsRemoteService(RemoteDataService):
    """
    Google Sheets implementation of the remote data service.

    The spreadsheet is treated as the server: ids are kept as sent,
    except budgets, whose id is assigned here on first write of a month.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def _call(self, action: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except Exception as e:
            error = translate_error(e)
            logger.warning(
                "sheets_call_failed",
                action=action,
                kind=error.kind.value,
                error=error.message,
            )
            raise error

    # -------------------------------------------------------------------------
    # Row helpers (run in a worker thread)
    # -------------------------------------------------------------------------

    def _rows(self, entity_type: EntityType) -> tuple[gspread.Worksheet, list[list[str]]]:
        sheet = self._client.worksheet(entity_type)
        return sheet, sheet.get_all_values()[1:]

    def _find(
        self,
        entity_type: EntityType,
        owner_id: str,
        record_id: str,
    ) -> tuple[gspread.Worksheet, int, list[str]]:
        sheet, rows = self._rows(entity_type)
        # Row 1 is the header
        for idx, row in enumerate(rows, start=2):
            if row and row[0] == record_id:
                if len(row) < 2 or row[1] != owner_id:
                    raise RemoteServiceError(
                        RemoteErrorKind.UNAUTHORIZED, "Record belongs to another owner"
                    )
                return sheet, idx, row
        raise RemoteServiceError(
            RemoteErrorKind.NOT_FOUND, f"{entity_type.value} {record_id} not found"
        )

    def _write_row(self, sheet: gspread.Worksheet, idx: int, row: list[str]) -> None:
        end = rowcol_to_a1(idx, len(row))
        sheet.update(range_name=f"A{idx}:{end}", values=[row])

    def _append(self, entity_type: EntityType, record: LocalRecord) -> Any:
        sheet, rows = self._rows(entity_type)
        for row in rows:
            if row and row[0] == record.id:
                if len(row) < 2 or row[1] != record.owner_id:
                    raise RemoteServiceError(
                        RemoteErrorKind.UNAUTHORIZED, "Record belongs to another owner"
                    )
                # Replayed create that already landed
                return row_to_record(entity_type, row)
        row = record_to_row(entity_type, record)
        sheet.append_row(row, value_input_option="RAW")
        return row_to_record(entity_type, row)

    def _replace(self, entity_type: EntityType, record: LocalRecord) -> Any:
        sheet, idx, _ = self._find(entity_type, record.owner_id, record.id)
        row = record_to_row(entity_type, record)
        self._write_row(sheet, idx, row)
        return row_to_record(entity_type, row)

    def _remove(self, entity_type: EntityType, owner_id: str, record_id: str) -> None:
        sheet, idx, _ = self._find(entity_type, owner_id, record_id)
        sheet.delete_rows(idx)

    def _require_bucket(self, entry: SavingsEntry) -> None:
        self._find(EntityType.SAVINGS_BUCKET, entry.owner_id, entry.bucket_id)

    def _upsert_budget(self, owner_id: str, month: str, amount: Decimal) -> Budget:
        sheet, rows = self._rows(EntityType.BUDGET)
        for idx, row in enumerate(rows, start=2):
            current = row_to_record(EntityType.BUDGET, row) if row and row[0] else None
            if current and current.owner_id == owner_id and current.month == month:
                updated = current.model_copy(update={"amount": Decimal(str(amount))})
                self._write_row(sheet, idx, record_to_row(EntityType.BUDGET, updated))
                return updated

        budget = Budget(
            id=str(uuid4()),
            owner_id=owner_id,
            month=month,
            amount=Decimal(str(amount)),
            created_at=utcnow(),
            sync_status=EntitySyncStatus.SYNCED,
        )
        sheet.append_row(record_to_row(EntityType.BUDGET, budget), value_input_option="RAW")
        return budget

    def _delete_bucket(self, owner_id: str, bucket_id: str) -> None:
        self._remove(EntityType.SAVINGS_BUCKET, owner_id, bucket_id)
        sheet, rows = self._rows(EntityType.SAVINGS_ENTRY)
        child_rows = [
            idx for idx, row in enumerate(rows, start=2)
            if len(row) > 3 and row[3] == bucket_id
        ]
        # Bottom-up so earlier indices stay valid
        for idx in reversed(child_rows):
            sheet.delete_rows(idx)

    def _snapshot(self, owner_id: str) -> RemoteSnapshot:
        records: dict[EntityType, list] = {}
        for entity_type in EntityType:
            _, rows = self._rows(entity_type)
            records[entity_type] = []
            for row in rows:
                if not row or not row[0] or len(row) < 2 or row[1] != owner_id:
                    continue
                try:
                    records[entity_type].append(row_to_record(entity_type, row))
                except ValueError as e:
                    # Hand-edited rows that no longer parse
                    logger.warning(
                        "sheets_row_skipped",
                        entity_type=entity_type.value,
                        row_id=row[0],
                        error=str(e),
                    )
        return RemoteSnapshot(
            expenses=records[EntityType.EXPENSE],
            budgets=records[EntityType.BUDGET],
            buckets=records[EntityType.SAVINGS_BUCKET],
            entries=records[EntityType.SAVINGS_ENTRY],
        )

    # -------------------------------------------------------------------------
    # RemoteDataService
    # -------------------------------------------------------------------------

    async def create_expense(self, expense: Expense) -> Expense:
        return await self._call("create_expense", lambda: self._append(EntityType.EXPENSE, expense))

    async def update_expense(self, expense: Expense) -> Expense:
        return await self._call("update_expense", lambda: self._replace(EntityType.EXPENSE, expense))

    async def delete_expense(self, owner_id: str, expense_id: str) -> None:
        await self._call(
            "delete_expense", lambda: self._remove(EntityType.EXPENSE, owner_id, expense_id)
        )

    async def create_budget(self, owner_id: str, month: str, amount: Decimal) -> Budget:
        return await self._call("create_budget", lambda: self._upsert_budget(owner_id, month, amount))

    async def update_budget(self, owner_id: str, month: str, amount: Decimal) -> Budget:
        return await self._call("update_budget", lambda: self._upsert_budget(owner_id, month, amount))

    async def create_bucket(self, bucket: SavingsBucket) -> SavingsBucket:
        return await self._call(
            "create_bucket", lambda: self._append(EntityType.SAVINGS_BUCKET, bucket)
        )

    async def update_bucket(self, bucket: SavingsBucket) -> SavingsBucket:
        return await self._call(
            "update_bucket", lambda: self._replace(EntityType.SAVINGS_BUCKET, bucket)
        )

    async def delete_bucket(self, owner_id: str, bucket_id: str) -> None:
        await self._call("delete_bucket", lambda: self._delete_bucket(owner_id, bucket_id))

    async def create_entry(self, entry: SavingsEntry) -> SavingsEntry:
        def create() -> SavingsEntry:
            self._require_bucket(entry)
            return self._append(EntityType.SAVINGS_ENTRY, entry)

        return await self._call("create_entry", create)

    async def update_entry(self, entry: SavingsEntry) -> SavingsEntry:
        def update() -> SavingsEntry:
            self._require_bucket(entry)
            return self._replace(EntityType.SAVINGS_ENTRY, entry)

        return await self._call("update_entry", update)

    async def delete_entry(self, owner_id: str, entry_id: str) -> None:
        await self._call(
            "delete_entry", lambda: self._remove(EntityType.SAVINGS_ENTRY, owner_id, entry_id)
        )

    async def fetch_full_snapshot(self, owner_id: str) -> RemoteSnapshot:
        return await self._call("fetch_full_snapshot", lambda: self._snapshot(owner_id))
