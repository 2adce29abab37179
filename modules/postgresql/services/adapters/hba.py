"""
pg_hba.conf rule management.

Host access for a (database, role) pair is expressed as a block of rules
tagged with a marker comment. The block is placed at the top of the file so
it is matched before the image's catch-all rules; rewriting the access
policy replaces only the block of that pair.
"""

import ipaddress
from typing import Optional

from ..errors import InvalidParamsError

MANAGED_MARKER = "# flux-managed"

ANY_HOST = {"%", "*", "all", "any", "0.0.0.0/0"}
LOCAL_ONLY = {"localhost", "local", "127.0.0.1", "::1"}
LOOPBACK_NETWORKS = ["127.0.0.1/32", "::1/128"]


def parse_permission(permission: str) -> Optional[list[str]]:
    """
    Parse an access permission string.

    Returns None when any host may connect, otherwise the list of allowed
    networks in CIDR notation.

    Raises:
        InvalidParamsError: If an entry is neither a keyword nor an IP/CIDR.
    """
    value = (permission or "").strip()
    if not value or value in ANY_HOST:
        return None

    networks: list[str] = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        if item in ANY_HOST:
            return None
        if item in LOCAL_ONLY:
            candidates = LOOPBACK_NETWORKS
        else:
            try:
                candidates = [str(ipaddress.ip_network(item, strict=False))]
            except ValueError as e:
                raise InvalidParamsError(f"Invalid access permission '{item}'") from e
        for network in candidates:
            if network not in networks:
                networks.append(network)

    if not networks:
        raise InvalidParamsError(f"Invalid access permission '{permission}'")
    return networks


def _hba_name(name: Optional[str]) -> str:
    if not name:
        return "all"
    # pg_hba.conf has no escape for quotes or line breaks inside a quoted name
    if any(char in name for char in '"\r\n\x00'):
        raise InvalidParamsError(f"Invalid pg_hba.conf name {name!r}")
    return '"' + name + '"'


def _tag(database: Optional[str], username: str) -> str:
    return f"{MANAGED_MARKER} {database or 'all'}/{username}"


def render_rules(database: Optional[str], username: str, permission: str, auth_method: str) -> list[str]:
    """Render the managed rules for a (database, role) pair."""
    networks = parse_permission(permission)
    db = _hba_name(database)
    user = _hba_name(username)
    tag = _tag(database, username)

    if networks is None:
        return [f"host    {db} {user} all {auth_method} {tag}"]

    rules = [f"local   {db} {user} {auth_method} {tag}"]
    for network in networks:
        rules.append(f"host    {db} {user} {network} {auth_method} {tag}")
    rules.append(f"host    {db} {user} all reject {tag}")
    return rules


def replace_managed_block(content: str, database: Optional[str], username: str, rules: list[str]) -> str:
    """Drop the existing block of the pair and put ``rules`` on top of the file."""
    tag = _tag(database, username)
    kept = [line for line in content.splitlines() if not line.rstrip().endswith(tag)]
    return "\n".join(rules + kept) + "\n"
