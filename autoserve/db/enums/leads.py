"""Lead pipeline enums and transition table."""

from enum import Enum


class LeadStatus(str, Enum):
    """
    Lead lifecycle status.

    Flow: new → viewed → contacted → converted
           ↘      ↘          ↘ closed
    converted and closed are terminal.
    """

    NEW = "new"
    VIEWED = "viewed"
    CONTACTED = "contacted"
    CONVERTED = "converted"
    CLOSED = "closed"


class LeadAction(str, Enum):
    VIEW = "view"
    CONTACT = "contact"
    CONVERT = "convert"
    CLOSE = "close"


class LeadActivityType(str, Enum):
    CREATED = "created"
    VIEWED = "viewed"
    CONTACTED = "contacted"
    CONVERTED = "converted"
    CLOSED = "closed"


TERMINAL_LEAD_STATUSES = frozenset({LeadStatus.CONVERTED, LeadStatus.CLOSED})

# action -> (allowed source statuses, target status)
LEAD_TRANSITIONS: dict[LeadAction, tuple[frozenset[LeadStatus], LeadStatus]] = {
    LeadAction.VIEW: (frozenset({LeadStatus.NEW}), LeadStatus.VIEWED),
    LeadAction.CONTACT: (frozenset({LeadStatus.VIEWED}), LeadStatus.CONTACTED),
    LeadAction.CONVERT: (frozenset({LeadStatus.CONTACTED}), LeadStatus.CONVERTED),
    LeadAction.CLOSE: (
        frozenset({LeadStatus.NEW, LeadStatus.VIEWED, LeadStatus.CONTACTED}),
        LeadStatus.CLOSED,
    ),
}
