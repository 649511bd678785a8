"""Exception taxonomy for the settlement engine."""


class SettlementError(Exception):
    """Base class for all engine errors."""


class BuildingNotFoundError(SettlementError):
    """The requested building does not exist."""

    def __init__(self, building_id: int) -> None:
        super().__init__(f"Building {building_id} not found")
        self.building_id = building_id


class ConfigurationError(SettlementError):
    """A service or unit is configured in a way the engine cannot execute.

    Aborts the whole run for the building and year.
    """

    def __init__(self, message: str, service_id: int | None = None) -> None:
        super().__init__(message)
        self.service_id = service_id


class FormulaError(SettlementError):
    """A custom formula is invalid, unsafe or produced a non-finite result."""

    def __init__(self, message: str, formula: str | None = None) -> None:
        super().__init__(message)
        self.formula = formula
        self.service_id: int | None = None


class PersistenceError(SettlementError):
    """Writing the results failed; the previous results are left in place."""
