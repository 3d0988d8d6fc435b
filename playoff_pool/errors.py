class PoolError(Exception):
    pass


class RosterValidationError(PoolError):
    """A roster action was rejected; the roster was not modified."""


class IncompleteRosterError(RosterValidationError):
    pass


class RosterLockedError(RosterValidationError):
    pass


class StoreError(PoolError):
    pass


class ESPNAPIError(PoolError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
