from ticketflow.models.directory import Profile, OperatorGroupMember
from ticketflow.models.ticket import Ticket, TicketComment
from ticketflow.models.sla import TicketSla
from ticketflow.models.escalation import EscalationPolicy, EscalationStep, TicketEscalation
from ticketflow.models.event import TicketEvent

__all__ = [
    "Profile", "OperatorGroupMember", "Ticket", "TicketComment", "TicketSla",
    "EscalationPolicy", "EscalationStep", "TicketEscalation", "TicketEvent",
]
