"""Типизированные ошибки сервиса и их HTTP-коды."""


class TabError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal application error.", details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])


class NotFound(TabError):
    status_code = 404


class Unauthorized(TabError):
    status_code = 401


class Forbidden(TabError):
    status_code = 403


class BadRequest(TabError):
    status_code = 400


class Conflict(TabError):
    status_code = 409


class InternalError(TabError):
    status_code = 500


# Ошибки жеребьёвки.
class InvalidTeamCount(BadRequest):
    pass


class InvalidConfiguration(BadRequest):
    pass


class AlreadyInProgress(Conflict):
    def __init__(self, message: str = "Draw generation already in progress."):
        super().__init__(message)


class TicketExpired(Conflict):
    def __init__(self, message: str = "Draw generation was cancelled."):
        super().__init__(message)


class DrawAlreadyExists(Conflict):
    def __init__(self, message: str = "A draw already exists for this round. Use force to regenerate it."):
        super().__init__(message)


class StaleAvailability(Conflict):
    pass


class DrawPanic(InternalError):
    pass


# Ошибки бюллетеней.
class BallotDiscrepancy(BadRequest):
    def __init__(self, problems: list[str]):
        super().__init__("Ballots for this debate do not agree.", problems)

    @property
    def problems(self) -> list[str]:
        return self.details


class BallotVersionConflict(Conflict):
    def __init__(self, message: str = "The ballot has been modified since you started editing it."):
        super().__init__(message)
