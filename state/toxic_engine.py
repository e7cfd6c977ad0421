"""
Toxic Engine — Punishment Lifecycle State Machine

THIS MODULE DEFINES NO COMMANDS.

This module is the authoritative source of toxic status.

Per-subject states are derived, not stored:
- Clean: no record, or a timed record whose expiration has passed
- Punished-Timed: timed record expiring in the future
- Punished-Permanent: permanent record

Responsibilities:
- Apply punishments, stacking durations additively
- Apply permanent punishments for out-of-band toxic group additions
- Clear punishments and restore the damage permission when it was held
- Sweep expired records
- Answer is_punished for damage, chat and voice gating

Every operation on a subject runs under that subject's re-entrant lock.
Group changes the engine makes itself are marked in flight, so the host's
group events they trigger are ignored by the automatic handlers.
No Discord API calls occur in this module.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from host.interfaces import Messenger, PermissionStore
from safety.logging import log_clearance, log_error, log_punishment
from state.audit_log import AuditLog
from state.punishments import PunishmentRecord, PunishmentTable
from state.storage import StorageError
from utils import durations
from utils.config import ALLOW_DAMAGE_PERMISSION, TOXIC_GROUP

logger = logging.getLogger(__name__)

RESTRICTIONS = "- PVP\n- PVE\n- Use Voice Chat\n- Use Text Chat"

RESTRICTION_NOTICE = (
    f"You have been marked as toxic and may not:\n{RESTRICTIONS}\n\n"
    "Use the toxic-time command to check your remaining punishment time."
)
PERMANENT_NOTICE = f"You have been marked as permanently toxic and may not:\n{RESTRICTIONS}"
CLEARED_NOTICE = (
    "Your toxic status has been cleared. You may now use PvP, PvE, chat, and voice again."
)


class ToxicEngine:
    def __init__(
        self,
        table: PunishmentTable,
        audit_log: AuditLog,
        permissions: PermissionStore,
        messenger: Messenger,
        *,
        clock: Callable[[], float] = durations.now,
        toxic_group: str = TOXIC_GROUP,
        allow_damage_permission: str = ALLOW_DAMAGE_PERMISSION,
    ) -> None:
        self._table = table
        self._audit = audit_log
        self._permissions = permissions
        self._messenger = messenger
        self._clock = clock
        self.toxic_group = toxic_group
        self.allow_damage_permission = allow_damage_permission

        self._locks: Dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._in_flight: Set[int] = set()

    # ---------------------------
    # Locking
    # ---------------------------

    def _lock_for(self, subject: int) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(subject)
            if lock is None:
                lock = threading.RLock()
                self._locks[subject] = lock
            return lock

    @contextmanager
    def _own_group_change(self, subject: int) -> Iterator[None]:
        self._in_flight.add(subject)
        try:
            yield
        finally:
            self._in_flight.discard(subject)

    # ---------------------------
    # Persistence
    # ---------------------------

    def load(self) -> None:
        self._table.load()
        self._audit.load()

    def flush(self) -> None:
        self._table.save()
        self._audit.save()

    # ---------------------------
    # Queries
    # ---------------------------

    def now(self) -> float:
        return self._clock()

    def get_record(self, subject: int) -> Optional[PunishmentRecord]:
        return self._table.get(subject)

    def is_punished(self, subject: int) -> bool:
        record = self._table.get(subject)
        return record is not None and record.is_active(self._clock())

    def remaining(self, subject: int) -> Optional[float]:
        """Seconds left (math.inf when permanent), or None when not punished."""
        record = self._table.get(subject)
        current_time = self._clock()
        if record is None or not record.is_active(current_time):
            return None
        return record.remaining(current_time)

    def active_punishments(self) -> List[Tuple[int, float]]:
        current_time = self._clock()
        return [
            (subject, record.remaining(current_time))
            for subject, record in self._table.items()
            if record.is_active(current_time)
        ]

    def history(self, subject: int) -> Optional[List[str]]:
        return self._audit.entries(subject)

    # ---------------------------
    # Transitions
    # ---------------------------

    def _take_damage_permission(self, subject: int) -> bool:
        had_permission = self._permissions.user_has_permission(subject, self.allow_damage_permission)
        if had_permission:
            self._permissions.revoke_user_permission(subject, self.allow_damage_permission)
        return had_permission

    def apply(self, subject: int, duration_seconds: int) -> PunishmentRecord:
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be > 0")

        with self._lock_for(subject):
            with self._own_group_change(subject):
                self._permissions.add_user_group(subject, self.toxic_group)
            had_permission = self._take_damage_permission(subject)

            current_time = self._clock()
            timestamp = durations.utc_timestamp(current_time)
            existing = self._table.get(subject)
            # An unswept expired record still holds the original snapshot.
            if existing is not None:
                had_permission = had_permission or existing.had_allow_damage

            if existing is not None and existing.permanent:
                existing.had_allow_damage = had_permission
                record = existing
                entry = (
                    f"Marked toxic (+{durations.format_duration(duration_seconds)}) "
                    f"at {timestamp} (already permanent)"
                )
            else:
                if existing is not None and existing.is_active(current_time):
                    new_expiration = existing.expiration + duration_seconds
                else:
                    new_expiration = current_time + duration_seconds
                stacked_seconds = int(new_expiration - current_time)
                record = PunishmentRecord.timed(
                    new_expiration,
                    had_allow_damage=had_permission,
                    duration_seconds=stacked_seconds,
                )
                self._table.put(subject, record)
                entry = f"Marked toxic (+{durations.format_duration(stacked_seconds)}) at {timestamp}"

            self._audit.append(subject, entry)
            self._table.save()

            log_punishment(
                "Toxic punishment applied",
                subject=subject,
                added_seconds=duration_seconds,
                permanent=record.permanent,
                duration_seconds=record.duration_seconds,
            )
            self._messenger.send(subject, RESTRICTION_NOTICE)
            return record

    def apply_permanent(self, subject: int) -> Optional[PunishmentRecord]:
        """Handle an out-of-band toxic group addition. No-op when a record exists."""
        with self._lock_for(subject):
            if subject in self._in_flight or subject in self._table:
                return None

            had_permission = self._take_damage_permission(subject)
            record = PunishmentRecord.forever(had_allow_damage=had_permission)
            self._table.put(subject, record)

            timestamp = durations.utc_timestamp(self._clock())
            self._audit.append(subject, f"Manually added to toxic group at {timestamp} (permanent)")
            self._table.save()

            log_punishment("Permanent toxic punishment applied", subject=subject, permanent=True)
            self._messenger.send(subject, PERMANENT_NOTICE)
            return record

    def clear(self, subject: int, *, reason: str = "manual") -> Optional[PunishmentRecord]:
        with self._lock_for(subject):
            with self._own_group_change(subject):
                self._permissions.remove_user_group(subject, self.toxic_group)

            record = self._table.remove(subject)
            if record is None:
                return None
            if record.had_allow_damage:
                self._permissions.grant_user_permission(subject, self.allow_damage_permission)
            self._table.save()

            log_clearance("Toxic punishment cleared", subject=subject, reason=reason)
            return record

    def clear_on_group_removed(self, subject: int) -> bool:
        """Handle an out-of-band toxic group removal. No-op without a record."""
        with self._lock_for(subject):
            if subject in self._in_flight:
                return False
            record = self._table.remove(subject)
            if record is None:
                return False
            if record.had_allow_damage:
                self._permissions.grant_user_permission(subject, self.allow_damage_permission)
            self._table.save()

            log_clearance("Toxic punishment cleared", subject=subject, reason="group_removed")
            self._messenger.send(subject, CLEARED_NOTICE)
            return True

    def reconcile(self, subject: int) -> bool:
        """
        Bring host state in line with an active punishment: restore toxic
        group membership and take back a damage permission granted while
        punished. Returns whether the subject is punished.
        """
        with self._lock_for(subject):
            record = self._table.get(subject)
            if record is None or not record.is_active(self._clock()):
                return False

            if not self._permissions.user_has_group(subject, self.toxic_group):
                with self._own_group_change(subject):
                    self._permissions.add_user_group(subject, self.toxic_group)

            if self._take_damage_permission(subject):
                record.had_allow_damage = True
                self._table.save()
            return True

    def sweep(self) -> List[int]:
        current_time = self._clock()
        expired = [subject for subject, record in self._table.items() if not record.is_active(current_time)]

        cleared: List[int] = []
        for subject in expired:
            with self._lock_for(subject):
                record = self._table.get(subject)
                if record is None or record.is_active(current_time):
                    continue
                try:
                    self.clear(subject, reason="expired")
                except StorageError as exc:
                    # The record is already gone from memory; only the snapshot is stale.
                    log_error("Failed to persist expired punishment", error=exc, subject=str(subject))
                    logger.warning("Expired toxic status for %s could not be saved", subject)
            logger.info("Toxic status expired for %s", subject)
            cleared.append(subject)
        return cleared
