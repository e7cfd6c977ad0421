"""
Audit Log — Per-Subject Toxic History

THIS MODULE DEFINES NO COMMANDS.

Append-only, ordered text entries per subject. Every append writes the
whole table through to the document store before returning.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from state.punishments import parse_subject_id
from state.storage import JsonDocumentStore

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, store: JsonDocumentStore, document_name: str) -> None:
        self._store = store
        self._document_name = document_name
        self._entries: Dict[int, List[str]] = {}

    def append(self, subject: int, text: str) -> None:
        self._entries.setdefault(subject, []).append(text)
        self.save()

    def entries(self, subject: int) -> Optional[List[str]]:
        entries = self._entries.get(subject)
        if entries is None:
            return None
        return list(entries)

    def load(self) -> None:
        raw = self._store.read_object(self._document_name)
        entries: Dict[int, List[str]] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                subject = parse_subject_id(key)
                if subject is None or not isinstance(value, list):
                    logger.warning("Skipping malformed audit entry %r", key)
                    continue
                entries[subject] = [str(item) for item in value]
        elif raw is not None:
            logger.warning("Audit document %s is not a mapping; starting empty.", self._document_name)
        self._entries = entries

    def save(self) -> None:
        snapshot = {str(subject): list(items) for subject, items in self._entries.items()}
        self._store.write_object(self._document_name, snapshot)
