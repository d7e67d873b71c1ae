"""Export bucket URL parsing."""

import re
from urllib.parse import urlsplit

from databricks_driver.models import ParsedBucketUrl

_HAS_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+\-.]*://")


def parse_bucket_url(url: str | None) -> ParsedBucketUrl:
    """Split an export bucket URL into scheme, bucket name, path and user part.

    A URL without a scheme is treated as a bare bucket name with an optional path.
    """
    raw_url = (url or "").strip()
    if not raw_url:
        return ParsedBucketUrl(scheme="", bucket_name="")

    has_scheme = bool(_HAS_SCHEME.match(raw_url))
    parts = urlsplit(raw_url if has_scheme else f"bucket://{raw_url}")

    username, _, host = parts.netloc.rpartition("@")
    username = username.split(":", 1)[0]
    bucket_name = host.split(":", 1)[0]

    return ParsedBucketUrl(
        scheme=parts.scheme if has_scheme else "",
        bucket_name=bucket_name,
        path=parts.path.strip("/"),
        username=username or None,
    )


def export_prefix(path: str, table_full_name: str) -> str:
    """Object prefix an unloaded table's files are written under."""
    return f"{path}/{table_full_name}" if path else table_full_name
