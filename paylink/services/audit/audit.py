# paylink/services/audit/audit.py
"""
Audit logging for compliance and security
Every money movement and security decision is written here
"""
from typing import Dict, Any, List, Callable
from datetime import datetime
from decimal import Decimal
import json
from pathlib import Path

from paylink.core.logging import logger
from paylink.core.config import settings
from paylink.core.utils import utcnow


class AuditLogger:
    """
    Append-only JSONL audit trail, one file per record type
    """

    def __init__(
        self,
        audit_dir: Path | str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.audit_dir = Path(audit_dir or settings.AUDIT_LOG_DIR)
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self.clock = clock

        self.transaction_log = self.audit_dir / "transactions.jsonl"
        self.security_log = self.audit_dir / "security.jsonl"
        self.error_log = self.audit_dir / "errors.jsonl"

    async def log_transaction(
        self,
        user_id: str,
        transaction_id: str | None,
        action: str,
        amount: Decimal | None = None,
        status: str | None = None,
        **details: Any,
    ) -> None:
        """
        Log financial transaction
        Critical for compliance and dispute investigation
        """

        log_entry: Dict[str, Any] = {
            "log_type": "transaction",
            "user_id": user_id,
            "transaction_id": transaction_id,
            "action": action,
            "amount": amount,
            "status": status,
            "timestamp": self.clock().isoformat(),
            **details,
        }

        self._write_log(self.transaction_log, log_entry)
        logger.info("💰 Audit: {} {} ({})", action, transaction_id, status)

    async def log_security_event(
        self,
        user_id: str,
        event_type: str,
        details: Dict[str, Any],
        risk_level: str = "info",
    ) -> None:
        """
        Log security events (PIN, locks, OTP, risk decisions)
        """

        log_entry: Dict[str, Any] = {
            "log_type": "security",
            "user_id": user_id,
            "event_type": event_type,
            "risk_level": risk_level,
            "details": details,
            "timestamp": self.clock().isoformat(),
        }

        self._write_log(self.security_log, log_entry)

        if risk_level in {"high", "critical"}:
            logger.warning("🚨 Security event: {} - {}", event_type, user_id)

    async def log_error(
        self,
        user_id: str,
        action: str,
        error: str,
        **context: Any,
    ) -> None:
        """Log errors and failures"""

        log_entry: Dict[str, Any] = {
            "log_type": "error",
            "user_id": user_id,
            "action": action,
            "error": error,
            "timestamp": self.clock().isoformat(),
            **context,
        }

        self._write_log(self.error_log, log_entry)
        logger.error("❌ Audit: Error logged - {} - {}", action, error)

    def _write_log(self, log_file: Path, entry: Dict[str, Any]) -> None:
        """Write log entry to JSONL file"""
        with open(log_file, "a", encoding="utf-8") as file_handle:
            file_handle.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")

    async def get_user_audit_trail(
        self,
        user_id: str,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """
        Retrieve audit trail for a user
        Used for compliance reviews and investigations
        Returns the most recent `limit` entries across all logs.
        """
        if limit <= 0:
            return []

        audit_trail: List[Dict[str, Any]] = []

        for log_file in (self.transaction_log, self.security_log, self.error_log):
            if not log_file.exists():
                continue
            with open(log_file, "r", encoding="utf-8") as file_handle:
                for line in file_handle:
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Skipping corrupt audit line in {}", log_file.name)
                        continue

                    if entry.get("user_id") == user_id:
                        audit_trail.append(entry)

        audit_trail.sort(key=lambda entry: entry.get("timestamp", ""))
        return audit_trail[-limit:]
