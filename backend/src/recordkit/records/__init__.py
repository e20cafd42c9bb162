"""Model-level record orchestration."""

from recordkit.records.service import RecordService, Transaction

__all__ = ["RecordService", "Transaction"]
