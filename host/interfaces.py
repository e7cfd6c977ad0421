"""
Host Interfaces — Collaborators the Punishment Engine Depends On

THIS MODULE DEFINES NO COMMANDS.

The engine and hooks talk to the host through these protocols only:
- PermissionStore: group membership and named capabilities
- SessionDirectory: resolve a subject id to a known member
- Messenger: deliver a notice to a subject if reachable

A permission store implementation is expected to report group changes
it performs to the same listeners that observe out-of-band changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class Subject:
    id: int
    display_name: str
    connected: bool


class PermissionStore(Protocol):
    def ensure_group(self, group: str) -> None: ...

    def grant_group_permission(self, group: str, permission: str) -> None: ...

    def user_has_group(self, subject: int, group: str) -> bool: ...

    def add_user_group(self, subject: int, group: str) -> None: ...

    def remove_user_group(self, subject: int, group: str) -> None: ...

    def user_has_permission(self, subject: int, permission: str) -> bool: ...

    def grant_user_permission(self, subject: int, permission: str) -> None: ...

    def revoke_user_permission(self, subject: int, permission: str) -> None: ...


class SessionDirectory(Protocol):
    def find(self, subject: int) -> Optional[Subject]: ...


class Messenger(Protocol):
    def send(self, subject: int, text: str) -> bool: ...
