"""Метрики таблиц и подтяжек: разбор и сериализация канонических строк."""

import json
import re
from dataclasses import dataclass
from enum import Enum

from tabroom.core.errors import InvalidConfiguration


class TeamMetricKind(str, Enum):
    WINS = "wins"
    BALLOTS = "ballots"
    N_TIMES_ACHIEVED = "n_times_achieved"
    TOTAL_SPEAKER_SCORE = "total_speaker_score"
    AVG_TOTAL_SPEAKER_SCORE = "avg_total_speaker_score"
    DRAW_STRENGTH_BY_WINS = "draw_strength_by_wins"
    DRAW_STRENGTH_BY_SPEAKS = "draw_strength_by_speaks"


class UnrankableTeamMetric(str, Enum):
    DRAW_STRENGTH_BY_RANK = "draw_strength_by_rank"
    FEWER_PREVIOUS_PULLUPS = "fewer_previous_pullups"


class PullupMetric(str, Enum):
    LOWEST_RANK = "lowest_rank"
    HIGHEST_RANK = "highest_rank"
    RANDOM = "random"
    FEWER_PREVIOUS_PULLUPS = "fewer_previous_pullups"
    LOWEST_DS_RANK = "lowest_ds_rank"
    LOWEST_DS_SPEAKS = "lowest_ds_speaks"


class SpeakerMetric(str, Enum):
    AVG = "avg"
    TOTAL = "total"
    STDDEV = "stddev"


_N_TIMES_RE = re.compile(r"^n_times_achieved\((\d{1,3})\)$")


@dataclass(frozen=True)
class RankableTeamMetric:
    kind: TeamMetricKind
    k: int | None = None

    def __str__(self) -> str:
        if self.kind == TeamMetricKind.N_TIMES_ACHIEVED:
            return f"{self.kind.value}({self.k})"
        return self.kind.value

    @classmethod
    def parse(cls, raw: str) -> "RankableTeamMetric":
        value = raw.strip()
        match = _N_TIMES_RE.match(value)
        if match:
            k = int(match.group(1))
            if k > 255:
                raise InvalidConfiguration(f"Invalid configuration: n_times_achieved({k}) is out of range")
            return cls(TeamMetricKind.N_TIMES_ACHIEVED, k)
        try:
            kind = TeamMetricKind(value)
        except ValueError as exc:
            raise InvalidConfiguration(f"Invalid configuration: unknown team metric {raw!r}") from exc
        if kind == TeamMetricKind.N_TIMES_ACHIEVED:
            raise InvalidConfiguration("Invalid configuration: n_times_achieved needs a points value")
        return cls(kind)


def _load_list(raw: str | list[str]) -> list[str]:
    if isinstance(raw, list):
        return raw
    try:
        data = json.loads(raw or "[]")
    except json.JSONDecodeError as exc:
        raise InvalidConfiguration("Invalid configuration: metric list is not valid JSON") from exc
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise InvalidConfiguration("Invalid configuration: metric list must be a list of strings")
    return data


def parse_team_metrics(raw: str | list[str]) -> list[RankableTeamMetric]:
    metrics = [RankableTeamMetric.parse(item) for item in _load_list(raw)]
    if len(set(metrics)) != len(metrics):
        raise InvalidConfiguration("Invalid configuration: duplicate team standings metric")
    return metrics


def parse_pullup_metrics(raw: str | list[str]) -> list[PullupMetric]:
    result = []
    for item in _load_list(raw):
        try:
            result.append(PullupMetric(item.strip()))
        except ValueError as exc:
            raise InvalidConfiguration(f"Invalid configuration: unknown pullup metric {item!r}") from exc
    return result


def parse_speaker_metrics(raw: str | list[str]) -> list[SpeakerMetric]:
    result = []
    for item in _load_list(raw):
        try:
            result.append(SpeakerMetric(item.strip()))
        except ValueError as exc:
            raise InvalidConfiguration(f"Invalid configuration: unknown speaker metric {item!r}") from exc
    return result


def dump_metrics(metrics) -> str:
    return json.dumps([str(item) if isinstance(item, RankableTeamMetric) else item.value for item in metrics])
