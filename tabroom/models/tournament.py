from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tabroom.models.base import Base, new_id


class BallotSetup(str, Enum):
    CONSENSUS = "consensus"
    INDIVIDUAL = "individual"


class Tournament(Base):
    __tablename__ = "tournaments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255))
    abbrv: Mapped[str] = mapped_column(String(50))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Формат дебатов.
    teams_per_side: Mapped[int] = mapped_column(Integer, default=2)
    substantive_speakers: Mapped[int] = mapped_column(Integer, default=2)
    reply_speakers: Mapped[bool] = mapped_column(Boolean, default=False)
    reply_must_speak: Mapped[bool] = mapped_column(Boolean, default=True)
    max_substantive_speech_index_for_reply: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Бюллетени.
    pool_ballot_setup: Mapped[str] = mapped_column(String(20), default=BallotSetup.CONSENSUS.value)
    elim_ballot_setup: Mapped[str] = mapped_column(String(20), default=BallotSetup.CONSENSUS.value)
    elim_ballots_require_speaks: Mapped[bool] = mapped_column(Boolean, default=False)
    substantive_speech_min_speak: Mapped[float] = mapped_column(Float, default=50.0)
    substantive_speech_max_speak: Mapped[float] = mapped_column(Float, default=100.0)
    substantive_speech_step: Mapped[float] = mapped_column(Float, default=1.0)
    reply_speech_min_speak: Mapped[float | None] = mapped_column(Float, nullable=True)
    reply_speech_max_speak: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Жеребьёвка и таблицы (списки метрик в JSON).
    institution_penalty: Mapped[int] = mapped_column(Integer, default=0)
    history_penalty: Mapped[int] = mapped_column(Integer, default=0)
    repeat_pullup_penalty: Mapped[int] = mapped_column(Integer, default=0)
    pullup_metrics: Mapped[str] = mapped_column(Text, default='["random"]')
    team_standings_metrics: Mapped[str] = mapped_column(Text, default='["wins", "total_speaker_score"]')
    speaker_standings_metrics: Mapped[str] = mapped_column(Text, default='["avg", "stddev"]')
    exclude_from_speaker_standings_after: Mapped[int] = mapped_column(Integer, default=-1)


class Institution(Base):
    __tablename__ = "institutions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    code: Mapped[str] = mapped_column(String(50))


class BreakCategory(Base):
    __tablename__ = "break_categories"
    __table_args__ = (UniqueConstraint("tournament_id", "name", name="uq_break_category_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    priority: Mapped[int] = mapped_column(Integer, default=0)


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tournament_id: Mapped[str] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    priority: Mapped[int] = mapped_column(Integer, default=0)
