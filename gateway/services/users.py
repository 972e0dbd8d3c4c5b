"""Current-user profile and preferences."""

from contracts.schemas.user import User, UserPreferences, UserUpdateRequest
from gateway.services.base import load, mutate, utcnow
from gateway.store import DocumentStore

USERS = "users"


class UserService:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, user_id: str) -> User:
        record = await load(self.store, USERS, user_id, "User")
        return User.model_validate(record.data)

    async def update(self, user_id: str, data: UserUpdateRequest) -> User:
        changes = data.model_dump(mode="json", exclude_unset=True)

        def apply(doc):
            if "profile" in changes and changes["profile"] is not None:
                profile = dict(doc.get("profile") or {})
                profile.update(data.profile.model_dump(mode="json", exclude_unset=True))
                doc["profile"] = profile
            for key in ("name", "phone_number"):
                if key in changes:
                    doc[key] = changes[key]
            doc["updated_at"] = utcnow().isoformat()
            return doc

        record = await mutate(self.store, USERS, user_id, apply, "User")
        return User.model_validate(record.data)

    async def update_preferences(self, user_id: str, preferences: UserPreferences) -> User:
        def apply(doc):
            doc["preferences"] = preferences.model_dump(mode="json")
            doc["updated_at"] = utcnow().isoformat()
            return doc

        record = await mutate(self.store, USERS, user_id, apply, "User")
        return User.model_validate(record.data)

    async def preferences(self, user_id: str) -> UserPreferences:
        record = await self.store.get(USERS, user_id)
        if record is None:
            return UserPreferences()
        return UserPreferences.model_validate(record.data.get("preferences") or {})
