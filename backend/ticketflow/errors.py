"""Exception types shared across the automation engine."""


class TicketflowError(Exception):
    pass


class ConfigurationError(TicketflowError):
    """Required secrets or credentials are missing. Raised before any work starts."""

    def __init__(self, reason: str, missing: list[str] | None = None):
        self.reason = reason
        self.missing = missing or []
        super().__init__(reason)


class EmailDeliveryError(TicketflowError):
    def __init__(self, reason: str, provider: str):
        self.reason = reason
        self.provider = provider
        super().__init__(reason)


class GraphApiError(TicketflowError):
    def __init__(self, reason: str, status_code: int | None = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(reason)
