"""
Edit significance rules.

Decides whether an observed change to a play-by-play action is a correction
a human should look at, or noise (substitution churn, running totals that
moved because some other play was edited).
"""
from __future__ import annotations

import re
from typing import Optional

from shared.models.domain import ActionSnapshot
from shared.models.enums import SUBSTITUTION_ACTION_TYPE

_RUNNING_TOTAL = re.compile(r"\s*\(\d+\)$")


def strip_running_total(description: Optional[str]) -> str:
    """``"Smith Assist (2)"`` -> ``"Smith Assist"``. Only one trailing group is removed."""
    return _RUNNING_TOTAL.sub("", description or "", count=1)


def is_cascading_stat_change(old_description: Optional[str], new_description: Optional[str]) -> bool:
    """True when the descriptions differ only in their trailing running total."""
    return strip_running_total(old_description) == strip_running_total(new_description)


def is_substitution(snapshot: ActionSnapshot) -> bool:
    return snapshot.action_type == SUBSTITUTION_ACTION_TYPE


def is_significant(old: ActionSnapshot, new: ActionSnapshot) -> bool:
    """
    Apply the significance rules in order; the first failing rule wins.

    1. The previous description must be non-empty.
    2. Substitutions (on either side) are never reportable.
    3. Identical descriptions are not an edit.
    4. A change confined to the trailing ``(N)`` counter is a cascade.
    """
    if not old.description:
        return False
    if is_substitution(old) or is_substitution(new):
        return False
    if old.description == new.description:
        return False
    if is_cascading_stat_change(old.description, new.description):
        return False
    return True
