import importlib
from pathlib import Path
from typing import Any, Literal, TypedDict

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

TemplateType = Literal[
    "subscription_activated",
    "subscription_updated",
    "subscription_canceled",
    "payment_succeeded",
]
LocaleType = Literal["en", "es"]

SUPPORTED_LOCALES: tuple[str, ...] = ("en", "es")


class EmailData(TypedDict):
    html: str
    subject: str


TEMPLATE_DIR = Path(__file__).parent / "template"

jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "xml"]),
    undefined=StrictUndefined,
)


def normalize_locale(locale: str | None) -> LocaleType:
    """Reduce ``es-MX`` style locales to a supported language, else English."""
    if locale:
        language = locale.split("-")[0].split("_")[0].lower()
        if language in SUPPORTED_LOCALES:
            return language  # type: ignore[return-value]
    return "en"


def render_email(
    template_name: TemplateType,
    context: dict[str, Any] | None = None,
    locale: LocaleType = "en",
) -> EmailData:
    translations_module = importlib.import_module(
        f"src.emails.template.{template_name}.translations"
    )
    default_translations = translations_module.DEFAULT_TRANSLATIONS
    translations = default_translations.get(locale, default_translations["en"])

    context = context or {}
    template = jinja_env.get_template(f"{template_name}/{template_name}.html")
    html_content = template.render(translations=translations, **context)

    return EmailData(
        html=html_content,
        subject=translations["subject"].format(**context),
    )
