from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode, urljoin

DEFAULT_UTM_SOURCE = "qr"
DEFAULT_UTM_MEDIUM = "print"


def build_qr_code_url(
    base_url: str,
    property_hash: str,
    *,
    utm_campaign: str,
    auth_token: Optional[str] = None,
    unit: Optional[str] = None,
    utm_content: Optional[str] = None,
    utm_source: str = DEFAULT_UTM_SOURCE,
    utm_medium: str = DEFAULT_UTM_MEDIUM,
) -> str:
    """Build the printed destination URL for a property page.

    Every QR code and short link destination goes through here so the UTM
    tagging stays consistent. Parameters are emitted in a fixed order:
    ``auth``, ``utm_source``, ``utm_medium``, ``utm_campaign``, ``unit``,
    ``utm_content``.

    The property path is absolute, so any path prefix on ``base_url`` is
    dropped: ``https://x.test/app`` yields ``https://x.test/<hash>``.
    """
    params: list[tuple[str, str]] = []
    if auth_token:
        params.append(("auth", auth_token))
    params.append(("utm_source", utm_source))
    params.append(("utm_medium", utm_medium))
    params.append(("utm_campaign", utm_campaign))
    if unit:
        params.append(("unit", unit))
    if utm_content:
        params.append(("utm_content", utm_content))
    return f"{urljoin(base_url, '/' + property_hash)}?{urlencode(params)}"
