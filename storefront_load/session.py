"""
Per-iteration user state: cookies, discovered product ids, bound variables.
"""

import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Pattern, Sequence, Union

# Product links on the storefront home page: href="/product/OLJCESPC7Z"
PRODUCT_ID_PATTERN = re.compile(r'href="/product/([A-Z0-9]{10})"')


@dataclass
class Session:
    """
    State carried across the steps of one iteration.

    A Session belongs to exactly one iteration and is dropped when it ends.
    `discovered_ids` only ever grows, without duplicates, in discovery order.
    """
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    cookies: Dict[str, Dict[str, str]] = field(default_factory=dict)
    discovered_ids: List[str] = field(default_factory=list)
    vars: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    def cookies_for(self, host: str) -> Dict[str, str]:
        return dict(self.cookies.get(host, {}))

    def store_cookies(self, host: str, cookies: Mapping[str, str]) -> None:
        if cookies:
            self.cookies.setdefault(host, {}).update(cookies)

    def add_ids(self, ids: Iterable[str]) -> List[str]:
        """Append unseen ids, keeping first-seen order. Returns the ones added."""
        seen = set(self.discovered_ids)
        added = []
        for value in ids:
            if value not in seen:
                seen.add(value)
                self.discovered_ids.append(value)
                added.append(value)
        return added


def extract_ids(body: str, pattern: Union[str, Pattern[str]] = PRODUCT_ID_PATTERN) -> List[str]:
    """
    All ids matching `pattern` in `body`, deduplicated, first-seen order.

    When the pattern has a capture group the first group is the id,
    otherwise the whole match is.
    """
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    ids: List[str] = []
    seen = set()
    for match in regex.finditer(body or ""):
        value = match.group(1) if regex.groups else match.group(0)
        if value not in seen:
            seen.add(value)
            ids.append(value)
    return ids


def harvest_ids(
    session: Session,
    body: str,
    fallback: Sequence[str],
    pattern: Union[str, Pattern[str]] = PRODUCT_ID_PATTERN,
) -> List[str]:
    """
    Record the ids found in a response body on the session.

    Falls back to the static `fallback` list when the body has none, so later
    steps always have something to pick from. Returns what was found (or the
    fallback).
    """
    found = extract_ids(body, pattern)
    if not found:
        found = list(fallback)
    session.add_ids(found)
    return found
