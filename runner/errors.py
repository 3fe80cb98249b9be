class SignalsError(Exception):
    pass


class ConfigError(SignalsError):
    pass


class AdapterFetchError(SignalsError):
    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class UnknownOutletError(SignalsError):
    def __init__(self, outlet: str):
        super().__init__(f"Unknown outlet: {outlet}")
        self.outlet = outlet


class PersistenceError(SignalsError):
    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.message = message


class RetryCeilingExceeded(SignalsError):
    def __init__(self, source_identifier: str, retry_count: int, ceiling: int):
        super().__init__(
            f"{source_identifier}: retry ceiling exceeded ({retry_count} > {ceiling})"
        )
        self.source_identifier = source_identifier
        self.retry_count = retry_count
        self.ceiling = ceiling
