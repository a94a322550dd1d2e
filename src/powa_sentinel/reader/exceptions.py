class ReaderError(Exception):
    pass


class ConnectivityError(ReaderError):
    pass


class SchemaDetectionError(ReaderError):
    pass


class QueryError(ReaderError):
    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class OptionalFeatureUnavailable(ReaderError):
    def __init__(self, feature: str, reason: str) -> None:
        super().__init__(f"{feature} unavailable: {reason}")
        self.feature = feature
        self.reason = reason
