"""
Punishment Table — Authoritative Toxic Status Records

THIS MODULE DEFINES NO COMMANDS.

This module stores one PunishmentRecord per punished subject.

- Lookup, overwrite and removal by subject id
- Stable snapshots of all records for sweeping and listing
- Whole-table load/save through the document store

A permanent record is a tagged flag in memory. On disk it is written
with the largest double as its expiration so existing data files keep
their meaning.
This module contains logic only and performs no Discord actions.
"""

from __future__ import annotations

import logging
import math
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from state.storage import JsonDocumentStore

logger = logging.getLogger(__name__)

PERMANENT_EXPIRATION = sys.float_info.max
MAX_SUBJECT_ID = 2**64 - 1


def parse_subject_id(raw: Union[str, int, None]) -> Optional[int]:
    """Return a subject id from text or int, or None if it is not an unsigned 64-bit integer."""
    if raw is None:
        return None
    if isinstance(raw, int):
        value = raw
    else:
        text = raw.strip()
        if not text.isdigit():
            return None
        value = int(text)
    if value < 0 or value > MAX_SUBJECT_ID:
        return None
    return value


_MISSING = object()


def _field(data: Mapping[str, Any], name: str, default: Any = _MISSING) -> Any:
    # Older data files use PascalCase keys.
    for key in (name, name[0].upper() + name[1:]):
        if key in data:
            return data[key]
    if default is _MISSING:
        raise KeyError(name)
    return default


@dataclass
class PunishmentRecord:
    expiration: float
    had_allow_damage: bool
    duration_seconds: int
    permanent: bool = False

    @classmethod
    def timed(cls, expiration: float, *, had_allow_damage: bool, duration_seconds: int) -> "PunishmentRecord":
        return cls(
            expiration=expiration,
            had_allow_damage=had_allow_damage,
            duration_seconds=duration_seconds,
        )

    @classmethod
    def forever(cls, *, had_allow_damage: bool) -> "PunishmentRecord":
        return cls(
            expiration=math.inf,
            had_allow_damage=had_allow_damage,
            duration_seconds=0,
            permanent=True,
        )

    def is_active(self, now: float) -> bool:
        return self.permanent or self.expiration > now

    def remaining(self, now: float) -> float:
        if self.permanent:
            return math.inf
        return self.expiration - now

    def to_document(self) -> Dict[str, Any]:
        return {
            "expirationUnix": PERMANENT_EXPIRATION if self.permanent else self.expiration,
            "hadAllowDamagePermission": self.had_allow_damage,
            "durationSeconds": self.duration_seconds,
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "PunishmentRecord":
        expiration = float(_field(data, "expirationUnix"))
        had = bool(_field(data, "hadAllowDamagePermission", False))
        if math.isinf(expiration) or expiration >= PERMANENT_EXPIRATION:
            return cls.forever(had_allow_damage=had)
        return cls.timed(
            expiration,
            had_allow_damage=had,
            duration_seconds=int(_field(data, "durationSeconds", 0)),
        )


class PunishmentTable:
    def __init__(self, store: JsonDocumentStore, document_name: str) -> None:
        self._store = store
        self._document_name = document_name
        self._records: Dict[int, PunishmentRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, subject: int) -> bool:
        return subject in self._records

    def get(self, subject: int) -> Optional[PunishmentRecord]:
        return self._records.get(subject)

    def put(self, subject: int, record: PunishmentRecord) -> None:
        self._records[subject] = record

    def remove(self, subject: int) -> Optional[PunishmentRecord]:
        return self._records.pop(subject, None)

    def items(self) -> List[Tuple[int, PunishmentRecord]]:
        return list(self._records.items())

    def load(self) -> None:
        raw = self._store.read_object(self._document_name)
        records: Dict[int, PunishmentRecord] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                subject = parse_subject_id(key)
                if subject is None or not isinstance(value, dict):
                    logger.warning("Skipping malformed punishment entry %r", key)
                    continue
                try:
                    records[subject] = PunishmentRecord.from_document(value)
                except (KeyError, TypeError, ValueError):
                    logger.warning("Skipping malformed punishment entry %r", key)
        elif raw is not None:
            logger.warning("Punishment document %s is not a mapping; starting empty.", self._document_name)
        self._records = records

    def save(self) -> None:
        snapshot = {str(subject): record.to_document() for subject, record in self._records.items()}
        self._store.write_object(self._document_name, snapshot)
