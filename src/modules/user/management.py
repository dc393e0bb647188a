"""User lookups and JWT-driven user sync."""

from uuid import UUID

from sqlalchemy import func, select

from src.core.base import BaseService
from src.database.models import User
from src.modules.user.jwt_claims import extract_user_data_from_jwt


class UserManagementService(BaseService):
    async def get_user_by_id(self, user_id: UUID) -> User | None:
        return await self.db.get(User, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email, ignoring case."""
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def ensure_user(
        self,
        user_id: UUID,
        email: str,
        name: str | None = None,
        avatar_url: str | None = None,
        locale: str | None = None,
    ) -> User:
        """Create the local user row on first sight and keep the profile fresh."""
        user = await self.get_user_by_id(user_id)

        if user is None:
            user = User(
                id=user_id,
                email=email,
                name=name or "",
                avatar_url=avatar_url,
                locale=locale,
            )
            self.db.add(user)
            await self.commit()
            self.logger.info(f"Created user {user_id} with email {email}")
            return user

        updates = {
            "email": email or user.email,
            "name": name or user.name,
            "avatar_url": avatar_url or user.avatar_url,
            "locale": locale or user.locale,
        }
        changed = {
            field: value
            for field, value in updates.items()
            if getattr(user, field) != value
        }
        if changed:
            for field, value in changed.items():
                setattr(user, field, value)
            await self.commit()
            self.logger.debug(
                f"Updated user {user_id} from token claims", fields=list(changed)
            )

        return user

    async def handle_jwt_authentication(self, payload: dict) -> User:
        user_data = extract_user_data_from_jwt(payload)
        return await self.ensure_user(
            user_id=user_data["user_id"],
            email=user_data["email"],
            name=user_data["name"],
            avatar_url=user_data["avatar_url"],
            locale=user_data["locale"],
        )
