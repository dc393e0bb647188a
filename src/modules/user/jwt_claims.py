from uuid import UUID


def extract_user_data_from_jwt(payload: dict) -> dict:
    """Extract user data from Supabase JWT claims for database sync."""
    user_metadata = payload.get("user_metadata") or {}

    name = user_metadata.get("full_name") or user_metadata.get("name") or ""
    avatar_url = user_metadata.get("avatar_url") or user_metadata.get("picture")
    locale = user_metadata.get("locale") or payload.get("locale")

    return {
        "user_id": UUID(payload["sub"]),
        "email": (payload.get("email") or "").strip().lower(),
        "name": name,
        "avatar_url": avatar_url,
        "locale": locale,
    }
