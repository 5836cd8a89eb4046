"""
App Store landing page helpers.

The reviews endpoint wants a bearer token that Apple embeds in the app's
public landing page, inside the URL-encoded JSON of the
``web-experience-app/config/environment`` meta tag.
"""

import re
from typing import Optional
from urllib.parse import quote, unquote

import orjson

from utils.config import settings

ENVIRONMENT_META_RE = re.compile(
    r"<meta[^>]+name=[\"']web-experience-app/config/environment[\"'][^>]*>",
    re.IGNORECASE,
)
CONTENT_ATTR_RE = re.compile(r"content=[\"']([^\"']+)[\"']", re.IGNORECASE)
ENCODED_TOKEN_RE = re.compile(r"token%22%3A%22(.+?)%22")
PLAIN_TOKEN_RE = re.compile(r"\"token\"\s*:\s*\"([^\"]+)\"")
SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(app_name: str) -> str:
    slug = SLUG_RE.sub("-", app_name.lower()).strip("-")
    return slug or "app"


def numeric_app_id(app_id: str) -> str:
    app_id = app_id.strip()
    if app_id.lower().startswith("id"):
        return app_id[2:]
    return app_id


def build_landing_url(country: str, app_name: str, app_id: str, host: Optional[str] = None) -> str:
    """Build https://apps.apple.com/{country}/app/{slug}/id{app_id}."""
    base = (host or settings.APP_STORE_LANDING_HOST).rstrip("/")
    return "{}/{}/app/{}/id{}".format(
        base,
        quote(country.lower(), safe=""),
        quote(slugify(app_name), safe=""),
        quote(numeric_app_id(app_id), safe=""),
    )


def _token_from_environment(content: str) -> Optional[str]:
    try:
        environment = orjson.loads(unquote(content))
    except orjson.JSONDecodeError:
        return None
    if not isinstance(environment, dict):
        return None
    media_api = environment.get("MEDIA_API")
    if isinstance(media_api, dict) and isinstance(media_api.get("token"), str):
        return media_api["token"] or None
    return None


def extract_bearer_token(html: str) -> Optional[str]:
    """
    Find the bearer token embedded in a landing page.

    Args:
        html: Landing page body

    Returns:
        The token, or None if the page carries none
    """
    meta = ENVIRONMENT_META_RE.search(html)
    if meta:
        content = CONTENT_ATTR_RE.search(meta.group(0))
        if content:
            token = _token_from_environment(content.group(1))
            if token:
                return token

    for pattern in (ENCODED_TOKEN_RE, PLAIN_TOKEN_RE):
        match = pattern.search(html)
        if match and match.group(1):
            return match.group(1)

    return None
