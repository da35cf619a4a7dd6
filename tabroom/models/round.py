from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tabroom.models.base import Base, new_id


class RoundKind(str, Enum):
    PRELIM = "prelim"
    ELIM = "elim"


class DrawStatus(str, Enum):
    NOT_STARTED = "none"
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    RELEASED_TEAMS = "released_teams"
    RELEASED_FULL = "released_full"


# Порядок статусов жеребьёвки для сравнений "не ниже чем".
DRAW_STATUS_ORDER = [status.value for status in DrawStatus]


class Round(Base):
    __tablename__ = "rounds"
    __table_args__ = (UniqueConstraint("tournament_id", "name", name="uq_round_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    seq: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(120))
    kind: Mapped[str] = mapped_column(String(10), default=RoundKind.PRELIM.value)
    break_category_id: Mapped[str | None] = mapped_column(
        ForeignKey("break_categories.id", ondelete="SET NULL"), nullable=True
    )
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    draw_status: Mapped[str] = mapped_column(String(20), default=DrawStatus.NOT_STARTED.value)
    draw_released_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    motions_released_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    results_published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class Motion(Base):
    __tablename__ = "motions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id", ondelete="CASCADE"), index=True)
    motion: Mapped[str] = mapped_column(Text)
    infoslide: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class TeamAvailability(Base):
    __tablename__ = "team_availability"
    __table_args__ = (UniqueConstraint("round_id", "team_id", name="uq_team_availability"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    available: Mapped[bool] = mapped_column(Boolean, default=False)


class JudgeAvailability(Base):
    __tablename__ = "judge_availability"
    __table_args__ = (UniqueConstraint("round_id", "judge_id", name="uq_judge_availability"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id", ondelete="CASCADE"), index=True)
    judge_id: Mapped[str] = mapped_column(ForeignKey("judges.id", ondelete="CASCADE"), index=True)
    available: Mapped[bool] = mapped_column(Boolean, default=False)


class RoundTicket(Base):
    __tablename__ = "round_tickets"
    __table_args__ = (UniqueConstraint("round_id", "kind", "seq", name="uq_round_ticket_seq"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id", ondelete="CASCADE"), index=True)
    seq: Mapped[int] = mapped_column(Integer, default=0)
    kind: Mapped[str] = mapped_column(String(20), default="draw")
    acquired: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    released: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
