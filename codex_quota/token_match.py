"""Decide whether a stored credential belongs to the account being updated.

Precedence is strict: refresh token, then access token, then label.
A lower layer is consulted only when the layer above has nothing to
compare on one side.
"""

from typing import Optional


def is_token_match(
    stored_access: Optional[str],
    stored_refresh: Optional[str],
    previous_access: Optional[str],
    previous_refresh: Optional[str],
    label: Optional[str] = None,
    stored_label: Optional[str] = None,
) -> bool:
    """Match a stored entry against the previous tokens of an account.

    >>> is_token_match("a1", "r", "a2", "r")
    True
    >>> is_token_match("a", "r1", "a", "r2")
    False
    >>> is_token_match("a", None, "a", "r")
    True
    >>> is_token_match(None, None, "a", "r", label="work", stored_label="work")
    True
    >>> is_token_match("x", None, "a", None, label="work", stored_label="work")
    False
    """
    if stored_refresh and previous_refresh:
        return stored_refresh == previous_refresh
    if stored_access and previous_access:
        return stored_access == previous_access
    if not stored_access and not stored_refresh and label and stored_label:
        return label == stored_label
    return False


def matches_tokens(stored: dict, previous: dict, label: Optional[str] = None,
                   stored_label: Optional[str] = None) -> bool:
    """is_token_match over canonical token dicts."""
    return is_token_match(
        stored.get("access"),
        stored.get("refresh"),
        previous.get("access"),
        previous.get("refresh"),
        label,
        stored_label,
    )
