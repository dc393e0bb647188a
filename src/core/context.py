"""Authentication context model for typed user authentication."""

from dataclasses import dataclass

from src.database.models.users import User


@dataclass
class AuthenticatedUserContext:
    """Context holding the user resolved from the bearer token."""

    user: User

    def __post_init__(self):
        if not self.user:
            raise ValueError("User is required in authentication context")
