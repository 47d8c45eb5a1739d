from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors raised by the ledger engine."""


class ValidationError(LedgerError):
    """Bad user input: missing mandatory field, malformed phone, bad override."""


class NotFoundError(LedgerError):
    def __init__(self, kind: str, record_id: str):
        super().__init__(f"Record with id {record_id} not found in {kind}.")
        self.kind = kind
        self.record_id = record_id


class MalformedImportError(LedgerError):
    """A section or row of an import payload could not be understood."""


class InvalidSnapshotError(LedgerError):
    """A full backup is missing mandatory collections or cannot be read."""
