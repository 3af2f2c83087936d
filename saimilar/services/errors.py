"""Errors raised by session-level operations."""


class AuthRequiredError(Exception):
    """The action needs a signed-in user; nothing was changed."""

    def __init__(self, action: str) -> None:
        super().__init__(f"Sign in required to {action}")
        self.action = action


class OverlayStoreError(Exception):
    """One or more wishlist / watched store writes failed.

    Every write of the operation was attempted before this is raised; the
    failed ones have been rolled back in the optimistic overlay.
    """

    def __init__(self, failures: list[tuple[str, Exception]]) -> None:
        summary = "; ".join(f"{operation}: {error}" for operation, error in failures)
        super().__init__(f"Library update failed ({summary})")
        self.failures = failures
