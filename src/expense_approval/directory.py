"""Organizational directory lookups used to staff approval chains."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from .exceptions import ExpenseValidationError
from .models import UserRef, UserRole


class Directory(Protocol):
    """Read-only view of a company's users."""

    def get_user(self, user_id: str) -> UserRef: ...

    def resolve_manager(self, user: UserRef) -> UserRef | None: ...

    def resolve_finance_approver(self, company_id: str) -> UserRef | None: ...

    def resolve_admin(self, company_id: str) -> UserRef | None: ...

    def team_members(self, manager: UserRef) -> list[UserRef]: ...


class InMemoryDirectory:
    """Directory backed by a list of users.

    Resolution is deterministic: inactive users are never returned, and when
    several users qualify the one with the smallest ``user_id`` wins. Users
    flagged ``is_finance_approver`` take precedence for finance approval.
    """

    def __init__(self, users: Iterable[UserRef] = ()) -> None:
        self._users: dict[str, UserRef] = {}
        for user in users:
            self.add(user)

    def add(self, user: UserRef) -> None:
        if user.manager_id is not None and user.manager_id == user.user_id:
            raise ExpenseValidationError(f"User '{user.user_id}' cannot manage themselves")
        self._users[user.user_id] = user

    def get_user(self, user_id: str) -> UserRef:
        try:
            return self._users[user_id]
        except KeyError:
            raise ExpenseValidationError(f"Unknown user '{user_id}'") from None

    def resolve_manager(self, user: UserRef) -> UserRef | None:
        if user.manager_id is None:
            return None
        manager = self._users.get(user.manager_id)
        if manager is None or not manager.is_active:
            return None
        return manager

    def resolve_finance_approver(self, company_id: str) -> UserRef | None:
        candidates = [
            user
            for user in self._active(company_id)
            if user.role == UserRole.MANAGER and user.is_manager_approver
        ]
        return min(
            candidates,
            key=lambda user: (not user.is_finance_approver, user.user_id),
            default=None,
        )

    def resolve_admin(self, company_id: str) -> UserRef | None:
        admins = [user for user in self._active(company_id) if user.role == UserRole.ADMIN]
        return min(admins, key=lambda user: user.user_id, default=None)

    def team_members(self, manager: UserRef) -> list[UserRef]:
        return sorted(
            (
                user
                for user in self._users.values()
                if user.manager_id == manager.user_id
                and user.company_id == manager.company_id
            ),
            key=lambda user: user.user_id,
        )

    def _active(self, company_id: str) -> list[UserRef]:
        return [
            user
            for user in self._users.values()
            if user.company_id == company_id and user.is_active
        ]
