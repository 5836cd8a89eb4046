"""
Unit tests for landing page URL building and token extraction.
"""

from urllib.parse import quote

import orjson

from apps.ingestor.landing import build_landing_url, extract_bearer_token, numeric_app_id, slugify


def environment_meta(token: str) -> str:
    content = quote(orjson.dumps({"MEDIA_API": {"token": token}, "other": 1}).decode())
    return f'<meta name="web-experience-app/config/environment" content="{content}">'


def test_slugify():
    assert slugify("Candy Crush Saga") == "candy-crush-saga"
    assert slugify("  Spotify: Music & Podcasts ") == "spotify-music-podcasts"
    assert slugify("") == "app"
    assert slugify("!!!") == "app"


def test_numeric_app_id():
    assert numeric_app_id("id553834731") == "553834731"
    assert numeric_app_id(" 553834731 ") == "553834731"


def test_build_landing_url():
    url = build_landing_url("US", "Candy Crush Saga", "553834731", host="https://apps.test/")

    assert url == "https://apps.test/us/app/candy-crush-saga/id553834731"


def test_extract_token_from_environment_meta():
    html = f"<html><head>{environment_meta('eyJ.meta.token')}</head></html>"

    assert extract_bearer_token(html) == "eyJ.meta.token"


def test_extract_token_from_encoded_fragment():
    html = '<script>var x = "%7B%22MEDIA_API%22%3A%7B%22token%22%3A%22eyJ.encoded%22%7D%7D";</script>'

    assert extract_bearer_token(html) == "eyJ.encoded"


def test_extract_token_from_plain_json():
    html = '<script type="application/json">{"MEDIA_API": {"token": "eyJ.plain"}}</script>'

    assert extract_bearer_token(html) == "eyJ.plain"


def test_extract_token_missing():
    assert extract_bearer_token("<html><body>Nothing here</body></html>") is None
    assert extract_bearer_token("") is None
