"""Проверка прав: аноним, пользователь, участник турнира, суперпользователь."""

from dataclasses import dataclass
from enum import Enum

from tabroom.core.errors import Forbidden, Unauthorized
from tabroom.models.user import TournamentMember, User


class Role(int, Enum):
    ANONYMOUS = 0
    AUTHENTICATED = 1
    MEMBER = 2
    SUPERUSER = 3


class Action(str, Enum):
    VIEW = "view"
    PARTICIPATE = "participate"
    VIEW_PRIVATE = "view_private"
    MANAGE = "manage"


_REQUIRED_ROLE = {
    Action.VIEW: Role.ANONYMOUS,
    Action.PARTICIPATE: Role.AUTHENTICATED,
    Action.VIEW_PRIVATE: Role.MEMBER,
    Action.MANAGE: Role.SUPERUSER,
}


@dataclass(frozen=True)
class Authorization:
    user_id: str | None
    role: Role


def role_of(user: User | None, membership: TournamentMember | None) -> Role:
    if user is None:
        return Role.ANONYMOUS
    if membership is None or membership.user_id != user.id:
        return Role.AUTHENTICATED
    return Role.SUPERUSER if membership.is_superuser else Role.MEMBER


def authorize(user: User | None, membership: TournamentMember | None, action: Action) -> Authorization:
    role = role_of(user, membership)
    required = _REQUIRED_ROLE[action]
    if role < required:
        if user is None:
            raise Unauthorized("You need to log in to do this.")
        raise Forbidden("You do not have permission to do this.")
    return Authorization(user.id if user is not None else None, role)
