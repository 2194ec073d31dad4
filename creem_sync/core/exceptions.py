class CreemSyncError(Exception):
    """Base exception for the Creem sync service."""

    pass


class ConfigurationError(CreemSyncError):
    """Raised when required process configuration is missing."""

    pass


class SignatureInvalidError(CreemSyncError):
    """Raised when a webhook signature is missing or does not match."""

    pass


class MalformedPayloadError(CreemSyncError):
    """Raised when a webhook body cannot be decoded into a Creem event."""

    pass


class MissingMetadataError(CreemSyncError):
    """Raised when an event lacks the user_id needed to attribute it."""

    def __init__(self, location: str):
        self.location = location
        super().__init__(f"Missing user_id in {location} metadata")


class CustomerNotFoundError(CreemSyncError):
    """Raised when a credit operation targets an unknown customer."""

    def __init__(self, customer_id: int):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class InsufficientCreditsError(CreemSyncError):
    """Raised when a debit would drive a customer's balance negative."""

    def __init__(self, customer_id: int, balance: int, requested: int):
        self.customer_id = customer_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient credits for customer {customer_id}: balance {balance}, requested {requested}"
        )


class DataStoreError(CreemSyncError):
    """Raised when a database operation fails for reasons other than no rows."""

    pass
