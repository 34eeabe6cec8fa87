"""Shareable rescue links: ``<base>/rescue/<identifier>``."""
from __future__ import annotations

from typing import Optional
from urllib.parse import quote, unquote, urlparse

from .config import get_config

RESCUE_PATH = "rescue"


def build_rescue_link(identifier: str, base_url: Optional[str] = None) -> str:
    """Build the rescue link guardians open to approve a recovery."""
    if not identifier:
        raise ValueError("identifier is required")
    base = (base_url or get_config().rescue_base_url).rstrip("/")
    return f"{base}/{RESCUE_PATH}/{quote(identifier, safe='')}"


def parse_rescue_link(url: str) -> str:
    """Extract the recovery identifier from a rescue link."""
    path = urlparse(url).path.rstrip("/")
    parts = path.split("/")
    if len(parts) < 2 or parts[-2] != RESCUE_PATH or not parts[-1]:
        raise ValueError(f"Not a rescue link: {url}")
    return unquote(parts[-1])
