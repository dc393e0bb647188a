from src.emails.render import (
    EmailData,
    LocaleType,
    TemplateType,
    normalize_locale,
    render_email,
)

__all__ = [
    "EmailData",
    "LocaleType",
    "TemplateType",
    "normalize_locale",
    "render_email",
]
