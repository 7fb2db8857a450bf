"""Path classification and display-name derivation for crawled screens."""

from __future__ import annotations

import re
from typing import List, Tuple

from utils.helpers import page_name_from_path

DEFAULT_FLOW = "Other"

# Checked in order; the first label whose substrings occur in the path wins.
FLOW_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Admin", ("/admin",)),
    ("Settings", ("/settings", "/preferences")),
    ("Dashboard", ("/dashboard", "/home")),
    ("Account", ("/profile", "/account")),
    ("Analytics", ("/analytics", "/reports")),
    ("Integrations", ("/integrations",)),
    ("Support", ("/help", "/support")),
]


def classify_path(path: str) -> str:
    """Map a path to a flow label."""
    for label, fragments in FLOW_RULES:
        if any(fragment in path for fragment in fragments):
            return label
    return DEFAULT_FLOW


def display_name(title: str, product_name: str, path: str) -> str:
    """
    Derive a screen name from the page title.

    A trailing ``| Product`` / ``- Product`` suffix is removed. When nothing
    useful is left (empty, or just the product name) the name is built from
    the path instead.
    """
    suffix = re.compile(rf"\s*[|–—-]\s*{re.escape(product_name)}\s*$", re.IGNORECASE)
    name = suffix.sub("", title or "").strip()
    if not name or name.lower() == product_name.lower():
        return page_name_from_path(path)
    return name
