"""Правила формата турнира: позиции, названия сторон, сетка баллов."""

from decimal import Decimal

from tabroom.models.round import Round, RoundKind
from tabroom.models.tournament import BallotSetup, Tournament

_BP_SIDES = {
    (0, 0): ("OG", "Opening Government", ("PM", "DPM")),
    (1, 0): ("OO", "Opening Opposition", ("LO", "DLO")),
    (0, 1): ("CG", "Closing Government", ("MG", "GW")),
    (1, 1): ("CO", "Closing Opposition", ("MO", "OW")),
}
_TWO_TEAM_SIDES = {
    0: ("Gov", "Government", ("PM", "DPM", "Gov Member")),
    1: ("Opp", "Opposition", ("LO", "DLO", "Opp Member")),
}


def positions(teams_per_side: int) -> list[tuple[int, int]]:
    """Позиции в комнате как (side, seq) в порядке индекса seq*2 + side."""
    return [(index % 2, index // 2) for index in range(2 * teams_per_side)]


def position_index(side: int, seq: int) -> int:
    return seq * 2 + side


def side_name(tournament: Tournament, side: int, seq: int, long: bool = False) -> str:
    if tournament.teams_per_side == 2 and (side, seq) in _BP_SIDES:
        short, full, _ = _BP_SIDES[(side, seq)]
        return full if long else short
    if tournament.teams_per_side == 1 and side in _TWO_TEAM_SIDES:
        short, full, _ = _TWO_TEAM_SIDES[side]
        return full if long else short
    prefix = "Prop" if side == 0 else "Opp"
    return f"{prefix} {seq + 1}"


def speaker_position_name(tournament: Tournament, side: int, seq: int, position: int) -> str:
    short = side_name(tournament, side, seq)
    if tournament.reply_speakers and position == tournament.substantive_speakers:
        return f"{short} Reply"
    if tournament.teams_per_side == 2 and (side, seq) in _BP_SIDES:
        names = _BP_SIDES[(side, seq)][2]
    elif tournament.teams_per_side == 1 and side in _TWO_TEAM_SIDES:
        names = _TWO_TEAM_SIDES[side][2]
    else:
        names = ()
    if position < len(names):
        return names[position]
    return f"{short} {position + 1}"


def speakers_per_team(tournament: Tournament) -> int:
    return tournament.substantive_speakers + (1 if tournament.reply_speakers else 0)


def round_requires_speaks(tournament: Tournament, round_: Round) -> bool:
    if round_.kind == RoundKind.PRELIM.value:
        return True
    return bool(tournament.elim_ballots_require_speaks)


def ballot_setup(tournament: Tournament, round_: Round) -> BallotSetup:
    raw = tournament.pool_ballot_setup if round_.kind == RoundKind.PRELIM.value else tournament.elim_ballot_setup
    return BallotSetup(raw)


def format_total_points(tournament: Tournament, round_: Round, is_final: bool = False) -> int:
    """Сумма очков команд в одном дебате после агрегации."""
    n_teams = 2 * tournament.teams_per_side
    if round_.kind == RoundKind.PRELIM.value:
        return n_teams * (n_teams - 1) // 2
    return num_advancing(tournament, is_final)


def num_advancing(tournament: Tournament, is_final: bool) -> int:
    n_teams = 2 * tournament.teams_per_side
    if n_teams == 2 or is_final:
        return 1
    return n_teams // 2


def _dec(value: float | Decimal | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def check_substantive_score(tournament: Tournament, score: float | Decimal) -> bool:
    """Балл должен лежать на сетке min + k*step внутри [min, max]."""
    value = _dec(score)
    low = _dec(tournament.substantive_speech_min_speak)
    high = _dec(tournament.substantive_speech_max_speak)
    step = _dec(tournament.substantive_speech_step)
    if value < low or value > high or step <= 0:
        return False
    return (value - low) % step == 0


def check_reply_score(tournament: Tournament, score: float | Decimal) -> bool:
    value = _dec(score)
    low = tournament.reply_speech_min_speak
    high = tournament.reply_speech_max_speak
    if low is None or high is None:
        low = tournament.substantive_speech_min_speak / 2
        high = tournament.substantive_speech_max_speak / 2
    return _dec(low) <= value <= _dec(high)
