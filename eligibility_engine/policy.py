"""Policy gate: what a viewer may do with an eligibility verdict."""

from typing import Dict, Tuple, Union

from eligibility_engine.models import Action, EligibilityVerdict, ViewerRole


_RULES: Dict[Tuple[bool, ViewerRole], Action] = {
    (True, ViewerRole.CLIENT): Action.ALLOWED,
    (True, ViewerRole.INSTRUCTOR): Action.ALLOWED,
    (True, ViewerRole.STAFF): Action.ALLOWED,
    (False, ViewerRole.CLIENT): Action.BLOCKED,
    (False, ViewerRole.INSTRUCTOR): Action.ALLOWED_WITH_WARNING,
    (False, ViewerRole.STAFF): Action.ALLOWED_WITH_WARNING,
}

_ROLE_ALIASES = {
    'client': ViewerRole.CLIENT,
    'cliente': ViewerRole.CLIENT,
    'instructor': ViewerRole.INSTRUCTOR,
    'instrutor': ViewerRole.INSTRUCTOR,
}


def coerce_role(value: Union[str, ViewerRole, None]) -> ViewerRole:
    """
    Map a raw role name to a ViewerRole.

    Anything that is neither a client nor an instructor is STAFF.
    """
    if isinstance(value, ViewerRole):
        return value
    return _ROLE_ALIASES.get(str(value or '').strip().lower(), ViewerRole.STAFF)


def decide(verdict: EligibilityVerdict, viewer_role: Union[str, ViewerRole]) -> Action:
    """
    Decide the action for a verdict.

    Clients are blocked on any impediment; instructors and staff may go
    ahead with a warning.
    """
    return _RULES[(verdict.is_eligible, coerce_role(viewer_role))]
