from typing import Optional


class ReconciliationError(Exception):
    """Base class for failures that abort one subscription reconciliation."""


class MissingEmail(ReconciliationError):
    def __init__(self, message: str = "Email not found in payload"):
        super().__init__(message)


class CustomerNotFound(ReconciliationError):
    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Customer not found: {email}")


class NoMapping(ReconciliationError):
    """The catalog has no entry for the (issue, age bracket) pair being granted."""

    def __init__(self, issue_key: str, age_bracket: str):
        self.issue_key = issue_key
        self.age_bracket = age_bracket
        super().__init__(f"No mapping for {issue_key}/{age_bracket}")


class FieldNotFound(ReconciliationError):
    """
    Creating a field failed and no existing field with that key could be found
    to update. Signals an inconsistent remote state.
    """

    def __init__(self, customer_id, namespace: str, key: str):
        self.customer_id = customer_id
        self.namespace = namespace
        self.key = key
        super().__init__(f"Metafield {namespace}.{key} not found for update on customer {customer_id}")


class RemoteStoreError(ReconciliationError):
    def __init__(self, method: str, path: str, status: Optional[int] = None, body: str = ""):
        self.method = method
        self.path = path
        self.status = status
        self.body = body
        super().__init__(f"[Shopify {method} {path}] {status if status is not None else 'no response'} {body}".rstrip())


class CatalogError(Exception):
    """The catalog file could not be read or does not have the expected shape."""
