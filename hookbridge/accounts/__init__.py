from hookbridge.accounts.models import User, UserRole

__all__ = ["User", "UserRole"]
