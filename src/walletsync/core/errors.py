class WalletSyncError(Exception):
    pass


class DataSourceError(WalletSyncError):
    pass


class RateLimitError(DataSourceError):
    pass


class PriceUnavailableError(DataSourceError):
    pass


class PersistenceError(WalletSyncError):
    pass


class ValidationError(WalletSyncError):
    def __init__(self, message: str, details=None) -> None:
        super().__init__(message)
        self.details = list(details or [])
