"""Pydantic-модели тел запросов."""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from tabroom.services.metrics import parse_pullup_metrics, parse_speaker_metrics, parse_team_metrics


class TournamentConfig(BaseModel):
    teams_per_side: int = 2
    substantive_speakers: int = Field(default=2, ge=1)
    reply_speakers: bool = False
    reply_must_speak: bool = True
    max_substantive_speech_index_for_reply: int | None = Field(default=None, ge=1)
    pool_ballot_setup: str = "consensus"
    elim_ballot_setup: str = "consensus"
    elim_ballots_require_speaks: bool = False
    institution_penalty: int = Field(default=0, ge=0)
    history_penalty: int = Field(default=0, ge=0)
    repeat_pullup_penalty: int = Field(default=0, ge=0)
    pullup_metrics: list[str] = ["random"]
    team_standings_metrics: list[str] = ["wins", "total_speaker_score"]
    speaker_standings_metrics: list[str] = ["avg", "stddev"]
    exclude_from_speaker_standings_after: int = Field(default=-1, ge=-1)
    substantive_speech_min_speak: float = 50.0
    substantive_speech_max_speak: float = 100.0
    substantive_speech_step: float = Field(default=1.0, gt=0)
    reply_speech_min_speak: float | None = None
    reply_speech_max_speak: float | None = None

    @field_validator("teams_per_side")
    @classmethod
    def _check_teams_per_side(cls, value: int) -> int:
        if value not in (1, 2):
            raise ValueError("teams_per_side must be 1 or 2")
        return value

    @field_validator("pool_ballot_setup", "elim_ballot_setup")
    @classmethod
    def _check_setup(cls, value: str) -> str:
        if value not in ("consensus", "individual"):
            raise ValueError("ballot setup must be consensus or individual")
        return value

    @model_validator(mode="after")
    def _check_ranges(self) -> "TournamentConfig":
        if self.substantive_speech_min_speak > self.substantive_speech_max_speak:
            raise ValueError("substantive speech minimum is above the maximum")
        if (
            self.reply_speech_min_speak is not None
            and self.reply_speech_max_speak is not None
            and self.reply_speech_min_speak > self.reply_speech_max_speak
        ):
            raise ValueError("reply speech minimum is above the maximum")
        if self.teams_per_side == 2 and "individual" in (self.pool_ballot_setup, self.elim_ballot_setup):
            raise ValueError("individual ballots need a two-team format")
        return self

    def validate_metrics(self) -> None:
        """Разбирает списки метрик; бросает InvalidConfiguration."""
        parse_team_metrics(self.team_standings_metrics)
        parse_pullup_metrics(self.pullup_metrics)
        parse_speaker_metrics(self.speaker_standings_metrics)


class TournamentCreate(BaseModel):
    name: str = Field(min_length=1)
    abbrv: str = Field(min_length=1)
    slug: str = Field(min_length=1, pattern=r"^[a-z0-9-]+$")
    config: TournamentConfig = TournamentConfig()


class SpeakerEntry(BaseModel):
    speaker_id: str
    score: Decimal | None = None


class TeamEntry(BaseModel):
    # Для элиминаций: 1 = команда проходит дальше.
    points: int | None = None
    speakers: list[SpeakerEntry] = []


class BallotSubmission(BaseModel):
    motion_id: str
    # Команды в порядке позиций seq*2 + side.
    teams: list[TeamEntry]
    expected_version: int | None = None


class JudgeSlot(BaseModel):
    judge_id: str
    role: str = "panelist"


class PanelUpdate(BaseModel):
    judges: list[JudgeSlot]
