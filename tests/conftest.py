"""Shared fakes and fixtures for ToxicBot tests."""

from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from host.interfaces import Subject
from locks import hooks
from state.audit_log import AuditLog
from state.punishments import PunishmentTable
from state.storage import JsonDocumentStore, StorageError
from state.toxic_engine import ToxicEngine


PLAYER = 76561198000000001
OTHER_PLAYER = 76561198000000002
START_TIME = 1_700_000_000.0

GroupListener = Callable[[int, str], None]


class FakeClock:
    def __init__(self, start: float = START_TIME) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakePermissionStore:
    """Fires group listeners inline, like a host whose hooks run synchronously."""

    def __init__(self) -> None:
        self.groups: Dict[int, Set[str]] = {}
        self.permissions: Dict[int, Set[str]] = {}
        self.group_permissions: Dict[str, Set[str]] = {}
        self.known_groups: Set[str] = set()
        self.on_added: List[GroupListener] = []
        self.on_removed: List[GroupListener] = []

    def ensure_group(self, group: str) -> None:
        self.known_groups.add(group)

    def grant_group_permission(self, group: str, permission: str) -> None:
        self.group_permissions.setdefault(group, set()).add(permission)

    def user_has_group(self, subject: int, group: str) -> bool:
        return group in self.groups.get(subject, set())

    def add_user_group(self, subject: int, group: str) -> None:
        if self.user_has_group(subject, group):
            return
        self.groups.setdefault(subject, set()).add(group)
        for listener in list(self.on_added):
            listener(subject, group)

    def remove_user_group(self, subject: int, group: str) -> None:
        if not self.user_has_group(subject, group):
            return
        self.groups[subject].discard(group)
        for listener in list(self.on_removed):
            listener(subject, group)

    def user_has_permission(self, subject: int, permission: str) -> bool:
        if permission in self.permissions.get(subject, set()):
            return True
        return any(
            permission in self.group_permissions.get(group, set())
            for group in self.groups.get(subject, set())
        )

    def grant_user_permission(self, subject: int, permission: str) -> None:
        self.permissions.setdefault(subject, set()).add(permission)

    def revoke_user_permission(self, subject: int, permission: str) -> None:
        self.permissions.get(subject, set()).discard(permission)


class FakeDirectory:
    def __init__(self) -> None:
        self.subjects: Dict[int, Subject] = {}

    def add(self, subject: int, name: str = "Player", connected: bool = True) -> None:
        self.subjects[subject] = Subject(id=subject, display_name=name, connected=connected)

    def find(self, subject: int) -> Optional[Subject]:
        return self.subjects.get(subject)


class RecordingMessenger:
    def __init__(self) -> None:
        self.sent: List[Tuple[int, str]] = []

    def send(self, subject: int, text: str) -> bool:
        self.sent.append((subject, text))
        return True

    def messages_for(self, subject: int) -> List[str]:
        return [text for target, text in self.sent if target == subject]


class FailingStore(JsonDocumentStore):
    def write_object(self, name, data) -> None:
        raise StorageError(f"disk full while writing {name}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def permissions() -> FakePermissionStore:
    return FakePermissionStore()


@pytest.fixture
def directory() -> FakeDirectory:
    directory = FakeDirectory()
    directory.add(PLAYER, "Griefer")
    return directory


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger()


@pytest.fixture
def store(tmp_path) -> JsonDocumentStore:
    return JsonDocumentStore(tmp_path / "data")


@pytest.fixture
def table(store: JsonDocumentStore) -> PunishmentTable:
    return PunishmentTable(store, "toxic_punishments")


@pytest.fixture
def audit_log(store: JsonDocumentStore) -> AuditLog:
    return AuditLog(store, "toxic_log")


def wire(engine: ToxicEngine, permissions: FakePermissionStore, directory: FakeDirectory) -> ToxicEngine:
    permissions.on_added.append(lambda subject, group: hooks.on_group_added(engine, directory, subject, group))
    permissions.on_removed.append(lambda subject, group: hooks.on_group_removed(engine, subject, group))
    return engine


@pytest.fixture
def engine(
    table: PunishmentTable,
    audit_log: AuditLog,
    permissions: FakePermissionStore,
    messenger: RecordingMessenger,
    directory: FakeDirectory,
    clock: FakeClock,
) -> ToxicEngine:
    engine = ToxicEngine(table, audit_log, permissions, messenger, clock=clock)
    return wire(engine, permissions, directory)


@pytest.fixture
def failing_engine(
    tmp_path,
    permissions: FakePermissionStore,
    messenger: RecordingMessenger,
    directory: FakeDirectory,
    clock: FakeClock,
) -> ToxicEngine:
    store = FailingStore(tmp_path / "failing")
    engine = ToxicEngine(
        PunishmentTable(store, "toxic_punishments"),
        AuditLog(store, "toxic_log"),
        permissions,
        messenger,
        clock=clock,
    )
    return wire(engine, permissions, directory)
