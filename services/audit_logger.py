"""
Audit Logging
Every ledger and hold mutation is written as one JSON line to the dedicated
'audit' logger. Audit writes are fire-and-forget: a failing handler is logged
but never fails the operation that was audited.
"""

import logging
from typing import Any, Dict, Optional

import orjson

from config import Config
from utils.helpers import to_iso, utc_now

logger = logging.getLogger(__name__)


class AuditLogger:
    """Service for the financial audit trail"""

    def __init__(self, log_file: Optional[str] = None):
        self.audit_logger = logging.getLogger("audit")
        self.audit_logger.setLevel(logging.INFO)

        log_file = Config.AUDIT_LOG_FILE if log_file is None else log_file
        if log_file and not any(
            isinstance(handler, logging.FileHandler) and handler.baseFilename.endswith(log_file)
            for handler in self.audit_logger.handlers
        ):
            audit_handler = logging.FileHandler(log_file)
            audit_handler.setFormatter(logging.Formatter("%(asctime)s [AUDIT] %(levelname)s - %(message)s"))
            self.audit_logger.addHandler(audit_handler)

    def log_operation(
        self,
        action: str,
        actor: str,
        target_type: str,
        target_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            entry = {
                "timestamp": to_iso(utc_now()),
                "action": action,
                "actor": actor,
                "target_type": target_type,
                "target_id": target_id,
                "details": details or {},
            }
            self.audit_logger.info(orjson.dumps(entry, default=str).decode())
        except Exception as e:
            logger.error(f"Error writing audit entry for {action}: {e}")
