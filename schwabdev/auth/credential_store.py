"""Flat-file storage for the single credential record."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from schwabdev.auth.types import CredentialRecord
from schwabdev.exceptions import RecordCorrupt

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Read/write the token record kept in a JSON file.

    A missing, unreadable, malformed or partially-null file is reported as an
    empty record; callers treat that uniformly as "no credentials". Writes go
    to a sibling temp file first and are moved into place, so a crash never
    leaves a truncated record behind.

    Example:
        store = CredentialStore("tokens.json")
        record = store.load()
        if not record.is_complete:
            ...  # run the authorization flow
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> CredentialRecord:
        """Load the record, returning an empty record if none is usable."""
        try:
            return self._read()
        except FileNotFoundError:
            logger.warning("Token file '%s' does not exist", self.path)
        except RecordCorrupt as exc:
            logger.warning("Token file '%s' is invalid, ignoring it: %s", self.path, exc)
        except OSError as exc:
            logger.warning("Token file '%s' could not be read: %s", self.path, exc)
        return CredentialRecord.empty()

    def _read(self) -> CredentialRecord:
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            raise RecordCorrupt("file is empty")
        try:
            return CredentialRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise RecordCorrupt(f"{exc.error_count()} validation error(s)") from exc

    def save(self, record: CredentialRecord) -> None:
        """Persist the record atomically.

        Raises:
            OSError: If the file cannot be written
        """
        data = record.model_dump(mode="json")
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(json.dumps(data, indent=4), encoding="utf-8")
        tmp_path.replace(self.path)
        logger.debug("Token record written to '%s'", self.path)

    def clear(self) -> None:
        """Overwrite the stored record with nulls."""
        self.save(CredentialRecord.empty())
