"""Определяет базовый класс ORM-моделей и генератор идентификаторов."""

from sqlalchemy.orm import DeclarativeBase
from uuid6 import uuid7


def new_id() -> str:
    # UUID v7: идентификаторы упорядочены по времени создания.
    return str(uuid7())


class Base(DeclarativeBase):
    # Базовый класс для всех ORM моделей.
    pass
