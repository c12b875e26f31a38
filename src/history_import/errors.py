class HistoryImportError(Exception):
    pass


class ActingUserNotFound(HistoryImportError):
    """No helpdesk user can be attributed the imported messages of an account."""

    def __init__(self, account_id: int, email: str | None = None) -> None:
        self.account_id = account_id
        self.email = email or None
        who = f"user {email!r}" if email else "administrator"
        super().__init__(f"No {who} found in account {account_id} to import messages.")


class InvalidIdentifier(HistoryImportError, ValueError):
    """Session identifier is not of the form '<digits>@<domain>'."""
