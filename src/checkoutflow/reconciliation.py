"""Ledger of payments captured without a matching order."""

import json
import logging
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any

from . import settings
from .errors import CaptureNotFoundError
from .models import CaptureRecord, _generate_id, _utc_now

logger = logging.getLogger(__name__)

CAPTURES_DIR = "captures"


class CaptureLedger:
    """Persists every verified payment that failed to become an order.

    One JSON file per record. Records are never deleted, only marked
    resolved once support has refunded the payment or created the order by
    hand.
    """

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize CaptureLedger.

        Args:
            config_dir: Override data directory (for testing).
        """
        self.config_dir = config_dir or settings.DATA_DIR
        self.captures_dir = self.config_dir / CAPTURES_DIR

    def _path(self, record_id: str) -> Path:
        return self.captures_dir / f"{record_id}.json"

    def _write(self, record: CaptureRecord) -> None:
        self.captures_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.captures_dir, prefix=".capture_", suffix=".json.tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self._path(record.id))
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def record(
        self,
        transaction_id: str,
        provider: str,
        temp_order_id: str,
        amount: Decimal,
        reason: str,
        cart: list[dict[str, Any]] | None = None,
        shipping_info: dict[str, Any] | None = None,
    ) -> CaptureRecord:
        """
        Record a captured payment with no order.

        Returns:
            The created CaptureRecord.
        """
        entry = CaptureRecord(
            id=_generate_id(),
            transaction_id=transaction_id,
            provider=provider,
            temp_order_id=temp_order_id,
            amount=str(amount),
            reason=reason,
            cart=cart or [],
            shipping_info=shipping_info or {},
            created_at=_utc_now(),
        )
        self._write(entry)
        logger.critical(
            "Recorded unreconciled capture %s (transaction %s, %s)",
            entry.id,
            transaction_id,
            amount,
        )
        return entry

    def list_records(self, unresolved_only: bool = False) -> list[CaptureRecord]:
        """
        List ledger records, newest first.

        Args:
            unresolved_only: Skip records already marked resolved.
        """
        if not self.captures_dir.exists():
            return []

        records: list[CaptureRecord] = []
        for file_path in self.captures_dir.glob("*.json"):
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    records.append(CaptureRecord.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError) as e:
                logger.warning("Skipping unreadable capture record %s: %s", file_path.name, e)

        if unresolved_only:
            records = [r for r in records if not r.resolved]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def get(self, record_id: str) -> CaptureRecord:
        """
        Raises:
            CaptureNotFoundError: If the record doesn't exist.
        """
        file_path = self._path(record_id)
        if not file_path.exists():
            raise CaptureNotFoundError(record_id)
        with open(file_path, "r", encoding="utf-8") as f:
            return CaptureRecord.from_dict(json.load(f))

    def mark_resolved(self, record_id: str, note: str | None = None) -> CaptureRecord:
        """Mark a record resolved with an optional note."""
        entry = self.get(record_id)
        entry.resolved = True
        entry.resolved_at = _utc_now()
        entry.resolution_note = note
        self._write(entry)
        logger.info("Capture %s resolved", record_id)
        return entry
