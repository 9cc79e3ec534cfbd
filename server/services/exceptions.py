"""Table browsing exception hierarchy."""


class TableBrowserError(Exception):
    """Base exception for table browsing errors that map to a client status."""

    status_code = 400


class InvalidIdentifierError(TableBrowserError):
    """Table, column or sort name failed the identifier allow-list."""

    def __init__(self, kind: str, value: str):
        self.kind = kind
        self.value = value
        super().__init__(f"Invalid {kind}")


class InvalidRequestError(TableBrowserError):
    """Request is well-formed HTTP but cannot be executed (bad body, sort order)."""


class RowNotFoundError(TableBrowserError):
    """Update or delete matched zero rows."""

    status_code = 404

    def __init__(self, table: str, row_id):
        self.table = table
        self.row_id = row_id
        super().__init__("Row not found")
