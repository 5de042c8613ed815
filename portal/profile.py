"""Profile updates for the authenticated user."""
from __future__ import annotations

import logging
from typing import Dict, List, Mapping

from .auth import check_password_confirmation
from .errors import ValidationFailed
from .models import User
from .repositories.interfaces import ActivityLogRepositoryInterface, UserRepositoryInterface

logger = logging.getLogger("portal.profile")


class ProfileService:
    def __init__(self, users: UserRepositoryInterface, activity: ActivityLogRepositoryInterface) -> None:
        self._users = users
        self._activity = activity

    def update_profile(self, user: User, data: Mapping[str, object]) -> User:
        """Apply ``name``, ``email`` and ``password`` changes from ``data``.

        A new password must be confirmed and requires the current password.
        All rule violations are reported together.
        """
        errors: Dict[str, List[str]] = {}

        email = data.get("email")
        if email is not None:
            existing = self._users.find_by_email(str(email))
            if existing is not None and existing.id != user.id:
                errors.setdefault("email", []).append("The email has already been taken.")

        password = data.get("password")
        if password is not None:
            try:
                check_password_confirmation(str(password), data.get("password_confirmation"))  # type: ignore[arg-type]
            except ValidationFailed as exc:
                for field, messages in exc.errors.items():
                    errors.setdefault(field, []).extend(messages)

            current = data.get("current_password")
            if not current:
                errors.setdefault("current_password", []).append(
                    "The current password field is required when password is present."
                )
            elif not self._users.verify_password(user, str(current)):
                errors.setdefault("current_password", []).append("The password is incorrect.")

        if errors:
            raise ValidationFailed(errors)

        changes: Dict[str, object] = {key: data[key] for key in ("name", "email") if data.get(key) is not None}
        if password is not None:
            changes["password"] = password

        if changes:
            try:
                self._users.update(user, changes)
            except ValueError as exc:
                raise ValidationFailed({"email": "The email has already been taken."}) from exc

        self._activity.record("updated profile", user=user, properties={"fields": sorted(changes)})
        logger.info("User %s updated profile fields: %s", user.uuid, ", ".join(sorted(changes)) or "none")
        return self._users.find_by_id(user.id) or user


__all__ = ["ProfileService"]
