"""Tests for the toxic engine: apply, stacking, clearance and sweeps."""

import logging
import math
import threading
from typing import List

import pytest

from state.audit_log import AuditLog
from state.punishments import PunishmentRecord, PunishmentTable
from state.storage import JsonDocumentStore, StorageError
from state.toxic_engine import (
    CLEARED_NOTICE,
    PERMANENT_NOTICE,
    RESTRICTION_NOTICE,
    ToxicEngine,
)
from utils.config import ALLOW_DAMAGE_PERMISSION, TOXIC_GROUP

from conftest import OTHER_PLAYER, PLAYER


def _verified(permissions) -> None:
    permissions.grant_user_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)


class TestApply:
    def test_fresh_apply_punishes_for_duration(self, engine: ToxicEngine, permissions) -> None:
        record = engine.apply(PLAYER, 600)

        assert engine.is_punished(PLAYER)
        assert engine.remaining(PLAYER) == 600
        assert not record.permanent
        assert record.duration_seconds == 600
        assert permissions.user_has_group(PLAYER, TOXIC_GROUP)

    def test_apply_stacks_additively(self, engine: ToxicEngine) -> None:
        engine.apply(PLAYER, 600)
        record = engine.apply(PLAYER, 300)

        assert engine.remaining(PLAYER) == 900
        assert record.duration_seconds == 900

    def test_stacking_adds_to_remaining_time(self, engine: ToxicEngine, clock) -> None:
        engine.apply(PLAYER, 600)
        clock.advance(100)
        engine.apply(PLAYER, 300)

        assert engine.remaining(PLAYER) == 800

    def test_apply_after_expiry_starts_fresh(self, engine: ToxicEngine, clock) -> None:
        engine.apply(PLAYER, 60)
        clock.advance(120)
        assert not engine.is_punished(PLAYER)

        engine.apply(PLAYER, 60)
        assert engine.remaining(PLAYER) == 60

    def test_audit_entry_records_total_and_timestamp(self, engine: ToxicEngine) -> None:
        engine.apply(PLAYER, 600)
        engine.apply(PLAYER, 600)

        assert engine.history(PLAYER) == [
            "Marked toxic (+10m 0s) at 2023-11-14 22:13:20 UTC",
            "Marked toxic (+20m 0s) at 2023-11-14 22:13:20 UTC",
        ]

    def test_apply_notifies_subject(self, engine: ToxicEngine, messenger) -> None:
        engine.apply(PLAYER, 600)
        assert messenger.messages_for(PLAYER) == [RESTRICTION_NOTICE]

    @pytest.mark.parametrize("duration", [0, -60])
    def test_non_positive_duration_rejected(self, engine: ToxicEngine, duration: int) -> None:
        with pytest.raises(ValueError):
            engine.apply(PLAYER, duration)
        assert engine.get_record(PLAYER) is None

    def test_apply_persists_both_tables(self, engine: ToxicEngine, store: JsonDocumentStore) -> None:
        engine.apply(PLAYER, 600)

        table = PunishmentTable(store, "toxic_punishments")
        table.load()
        audit_log = AuditLog(store, "toxic_log")
        audit_log.load()
        assert table.get(PLAYER) == engine.get_record(PLAYER)
        assert len(audit_log.entries(PLAYER)) == 1

    def test_save_failure_surfaces(self, failing_engine: ToxicEngine) -> None:
        with pytest.raises(StorageError):
            failing_engine.apply(PLAYER, 600)


class TestDamagePermission:
    def test_revoked_on_apply_and_restored_on_clear(self, engine: ToxicEngine, permissions) -> None:
        _verified(permissions)

        engine.apply(PLAYER, 600)
        assert not permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)
        assert engine.get_record(PLAYER).had_allow_damage

        engine.clear(PLAYER)
        assert permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)

    def test_not_granted_when_not_held_before(self, engine: ToxicEngine, permissions) -> None:
        engine.apply(PLAYER, 600)
        engine.clear(PLAYER)
        assert not permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)

    def test_stacking_keeps_original_snapshot(self, engine: ToxicEngine, permissions) -> None:
        _verified(permissions)
        engine.apply(PLAYER, 600)
        engine.apply(PLAYER, 600)

        engine.clear(PLAYER)
        assert permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)


class TestPermanent:
    def test_out_of_band_group_add_is_permanent(self, engine: ToxicEngine, permissions, messenger) -> None:
        _verified(permissions)
        permissions.add_user_group(PLAYER, TOXIC_GROUP)

        record = engine.get_record(PLAYER)
        assert record.permanent
        assert record.had_allow_damage
        assert record.duration_seconds == 0
        assert not permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)
        assert engine.history(PLAYER) == [
            "Manually added to toxic group at 2023-11-14 22:13:20 UTC (permanent)"
        ]
        assert messenger.messages_for(PLAYER) == [PERMANENT_NOTICE]

    def test_apply_permanent_is_noop_with_existing_record(self, engine: ToxicEngine) -> None:
        engine.apply(PLAYER, 600)
        assert engine.apply_permanent(PLAYER) is None
        assert not engine.get_record(PLAYER).permanent

    def test_timed_stacking_keeps_permanent(self, engine: ToxicEngine, clock) -> None:
        engine.apply_permanent(PLAYER)
        record = engine.apply(PLAYER, 600)

        assert record.permanent
        assert math.isinf(engine.remaining(PLAYER))
        clock.advance(10**9)
        assert engine.is_punished(PLAYER)
        assert engine.history(PLAYER)[-1].endswith("(already permanent)")

    def test_sweep_never_clears_permanent(self, engine: ToxicEngine, clock) -> None:
        engine.apply_permanent(PLAYER)
        clock.advance(10**9)
        assert engine.sweep() == []
        assert engine.is_punished(PLAYER)


class TestClear:
    def test_clear_is_idempotent(self, engine: ToxicEngine, permissions) -> None:
        _verified(permissions)
        engine.apply(PLAYER, 600)

        assert engine.clear(PLAYER) is not None
        assert engine.clear(PLAYER) is None
        assert permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)
        assert not engine.is_punished(PLAYER)
        assert not permissions.user_has_group(PLAYER, TOXIC_GROUP)

    def test_clear_without_record_is_safe(self, engine: ToxicEngine) -> None:
        assert engine.clear(OTHER_PLAYER) is None

    def test_clear_does_not_touch_audit_log(self, engine: ToxicEngine) -> None:
        engine.apply(PLAYER, 600)
        engine.clear(PLAYER)
        assert len(engine.history(PLAYER)) == 1

    def test_out_of_band_group_removal_clears(self, engine: ToxicEngine, permissions, messenger) -> None:
        _verified(permissions)
        engine.apply(PLAYER, 600)

        permissions.remove_user_group(PLAYER, TOXIC_GROUP)

        assert engine.get_record(PLAYER) is None
        assert permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)
        assert messenger.messages_for(PLAYER)[-1] == CLEARED_NOTICE

    def test_group_removal_without_record_is_noop(self, engine: ToxicEngine) -> None:
        assert not engine.clear_on_group_removed(PLAYER)


class TestConcurrency:
    def test_concurrent_applies_stack_without_losing_time(self, engine: ToxicEngine) -> None:
        workers = 8
        barrier = threading.Barrier(workers)
        errors: List[Exception] = []

        def punish() -> None:
            barrier.wait()
            try:
                engine.apply(PLAYER, 60)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=punish) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert engine.remaining(PLAYER) == 60 * workers
        assert engine.get_record(PLAYER).duration_seconds == 60 * workers
        assert len(engine.history(PLAYER)) == workers


class TestReentrancy:
    def test_own_group_add_does_not_trigger_permanent(self, engine: ToxicEngine) -> None:
        engine.apply(PLAYER, 600)

        assert not engine.get_record(PLAYER).permanent
        assert len(engine.history(PLAYER)) == 1

    def test_own_group_removal_sends_no_cleared_notice(self, engine: ToxicEngine, messenger) -> None:
        engine.apply(PLAYER, 600)
        engine.clear(PLAYER)
        assert CLEARED_NOTICE not in messenger.messages_for(PLAYER)


class TestSweep:
    def test_expired_record_removed(self, engine: ToxicEngine, table: PunishmentTable, clock) -> None:
        table.put(PLAYER, PunishmentRecord.timed(clock() - 1, had_allow_damage=False, duration_seconds=60))

        assert engine.sweep() == [PLAYER]
        assert engine.get_record(PLAYER) is None
        assert not engine.is_punished(PLAYER)

    def test_future_record_survives(self, engine: ToxicEngine, table: PunishmentTable, clock) -> None:
        record = PunishmentRecord.timed(clock() + 3600, had_allow_damage=True, duration_seconds=3600)
        table.put(PLAYER, record)

        assert engine.sweep() == []
        assert engine.get_record(PLAYER) == PunishmentRecord.timed(
            clock() + 3600, had_allow_damage=True, duration_seconds=3600
        )

    def test_expired_but_unswept_is_not_punished(self, engine: ToxicEngine, clock) -> None:
        engine.apply(PLAYER, 60)
        clock.advance(60)
        assert not engine.is_punished(PLAYER)
        assert engine.get_record(PLAYER) is not None
        assert engine.active_punishments() == []

    def test_save_failure_is_logged_and_sweep_continues(
        self,
        failing_engine: ToxicEngine,
        permissions,
        clock,
        caplog,
    ) -> None:
        _verified(permissions)
        with pytest.raises(StorageError):
            failing_engine.apply(PLAYER, 60)
        clock.advance(61)

        with caplog.at_level(logging.INFO, logger="state.toxic_engine"):
            assert failing_engine.sweep() == [PLAYER]

        assert failing_engine.get_record(PLAYER) is None
        assert permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)
        assert f"Expired toxic status for {PLAYER} could not be saved" in caplog.text
        assert f"Toxic status expired for {PLAYER}" in caplog.text


def test_end_to_end_timed_punishment(engine: ToxicEngine, permissions, messenger, clock, caplog) -> None:
    _verified(permissions)

    engine.apply(PLAYER, 60)
    assert not permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)
    assert engine.remaining(PLAYER) == 60
    assert len(engine.history(PLAYER)) == 1
    assert messenger.messages_for(PLAYER) == [RESTRICTION_NOTICE]

    clock.advance(61)
    with caplog.at_level(logging.INFO, logger="state.toxic_engine"):
        assert engine.sweep() == [PLAYER]

    assert engine.get_record(PLAYER) is None
    assert permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)
    assert f"Toxic status expired for {PLAYER}" in caplog.text


class TestReconcile:
    def test_restores_missing_group(self, engine: ToxicEngine, permissions) -> None:
        engine.apply(PLAYER, 600)
        permissions.groups[PLAYER].discard(TOXIC_GROUP)

        assert engine.reconcile(PLAYER)
        assert permissions.user_has_group(PLAYER, TOXIC_GROUP)
        assert not engine.get_record(PLAYER).permanent

    def test_takes_back_regranted_permission(self, engine: ToxicEngine, permissions) -> None:
        engine.apply(PLAYER, 600)
        _verified(permissions)

        engine.reconcile(PLAYER)
        assert not permissions.user_has_permission(PLAYER, ALLOW_DAMAGE_PERMISSION)
        assert engine.get_record(PLAYER).had_allow_damage

    def test_clean_subject_is_untouched(self, engine: ToxicEngine, permissions) -> None:
        assert not engine.reconcile(PLAYER)
        assert not permissions.user_has_group(PLAYER, TOXIC_GROUP)


def test_load_restores_state(
    engine: ToxicEngine,
    store: JsonDocumentStore,
    permissions,
    messenger,
    clock,
) -> None:
    engine.apply(PLAYER, 600)

    restarted = ToxicEngine(
        PunishmentTable(store, "toxic_punishments"),
        AuditLog(store, "toxic_log"),
        permissions,
        messenger,
        clock=clock,
    )
    restarted.load()
    assert restarted.remaining(PLAYER) == 600
    assert restarted.history(PLAYER) == engine.history(PLAYER)
