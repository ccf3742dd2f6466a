from escalation.base_escalation import BaseEscalation, LogEscalation
from escalation.discord_escalation import DiscordEscalation
from escalation.manager import EscalationManager

__all__ = ["BaseEscalation", "DiscordEscalation", "EscalationManager", "LogEscalation"]
