"""Local text checks run before content goes to the external reviewer."""

from __future__ import annotations

import re
from collections.abc import Iterable
from enum import Enum
from urllib.parse import urlsplit


class TextCheckError(ValueError):
    default_message = ""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class UrlParsingError(TextCheckError):
    default_message = "error parsing url"


class InvalidImageHostError(TextCheckError):
    default_message = "不允许使用外部图片链接"


class ImageLinkTextOnlyError(TextCheckError):
    default_message = "image link only contains text"


class CheckType(str, Enum):
    HOLE = "Hole"
    FLOOR = "Floor"
    TAG = "Tag"
    IMAGE = "Image"


_IMAGE_RE = re.compile(r'!\[(.*?)]\(([^" )]*?)[\t\n\f\r ]*(".*?")?\)')
_HOLE_RE = re.compile(r"[^#]#(\d+)")
_FLOOR_RE = re.compile(r"##(\d+)")

_URL_CHARS = r"[A-Za-z0-9\-._~:/?#\[\]@!$&'()*+,;=%]"
_TLDS = (
    "com|net|org|edu|gov|mil|int|info|biz|io|me|cn|hk|tw|jp|kr|uk|us|de|fr|ru"
    "|co|cc|tv|top|xyz|site|online|app|dev|ai"
)
_URL_RE = re.compile(
    rf"[A-Za-z][A-Za-z0-9+.\-]*://{_URL_CHARS}+"
    rf"|(?<![A-Za-z0-9.\-@])(?:[A-Za-z0-9](?:[A-Za-z0-9\-]*[A-Za-z0-9])?\.)+"
    rf"(?:{_TLDS})(?![A-Za-z0-9\-])(?::\d+)?(?:/{_URL_CHARS}*)?",
    re.IGNORECASE,
)
_TRAILING = ".,;:!?'\""


def _trim_url(url: str) -> str:
    while url:
        if url[-1] in _TRAILING:
            url = url[:-1]
        elif url[-1] == ")" and url.count(")") > url.count("("):
            url = url[:-1]
        else:
            break
    return url


def check_valid_url(url: str, valid_image_hosts: Iterable[str]) -> None:
    """Raise if ``url`` is not an image URL on an allowed host."""
    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ""
    except ValueError as exc:
        raise UrlParsingError() from exc
    if not parts.scheme and not parts.netloc:
        raise ImageLinkTextOnlyError()
    if hostname not in set(valid_image_hosts):
        raise InvalidImageHostError()


def find_images_in_markdown(
    content: str, valid_image_hosts: Iterable[str]
) -> tuple[list[str], str]:
    """Return the image URLs in Markdown ``content`` and the text without them.

    Raises InvalidImageHostError when an image points to a host not allowed.
    """
    hosts = list(valid_image_hosts)
    image_urls: list[str] = []

    def replace(match: re.Match[str]) -> str:
        alt_text, image_url, title = match.group(1), match.group(2), match.group(3)
        if image_url:
            try:
                check_valid_url(image_url, hosts)
            except InvalidImageHostError:
                raise
            except TextCheckError:
                pass  # not a real link: keep it as text
            else:
                image_urls.append(image_url)
                image_url = ""
        title = title.strip('"') if title else ""
        return " ".join(part for part in (alt_text, image_url, title) if part)

    clear_content = _IMAGE_RE.sub(replace, content)
    return image_urls, clear_content


def contains_unsafe_url(
    content: str, hostname_whitelist: Iterable[str]
) -> tuple[bool, str]:
    """Report the first URL whose host is not on the whitelist."""
    whitelist = list(hostname_whitelist)
    for match in _URL_RE.finditer(content):
        url = _trim_url(match.group(0))
        if not url:
            continue
        if "://" not in url:
            url = "http://" + url
        try:
            host = urlsplit(url).netloc.rpartition("@")[2]
        except ValueError:
            return True, url
        if not any(host.endswith(suffix) for suffix in whitelist):
            return True, host
    return False, ""


def remove_id_repr(content: str) -> str:
    """Strip hole (#123) and floor (##123) references from text."""
    content = _HOLE_RE.sub("", " " + content)
    content = _FLOOR_RE.sub("", content)
    return content.strip()


def check_type(type_name: str) -> bool:
    return type_name in {member.value for member in CheckType}