def path_matches(path: str, allowed_paths: set[str]) -> bool:
    """Check if a request path is in ``allowed_paths``, ignoring a trailing slash."""
    if path in allowed_paths:
        return True

    if path.endswith("/"):
        return path.rstrip("/") in allowed_paths

    return f"{path}/" in allowed_paths


def path_has_prefix(path: str, prefixes: tuple[str, ...]) -> bool:
    """Check if a request path lives under any of ``prefixes``."""
    return any(path == prefix or path.startswith(f"{prefix}/") for prefix in prefixes)
