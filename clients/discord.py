"""Discord webhook wrapper used for operator notifications."""

from discord_webhook import DiscordEmbed, DiscordWebhook

ESCALATION_COLOR = "e67e22"


class DiscordWebhookClient:
    def __init__(self, webhook_url: str, role_id: str = ""):
        self.webhook_url = webhook_url
        self.role_id = role_id

    def send(self, message: str, fields: dict[str, str] | None = None):
        """Post ``message`` (mentioning the operator role, if any).

        ``fields`` are rendered as an embed so operators can scan the
        conversation id, reason and cart at a glance.
        """
        if self.role_id:
            content = f"<@&{self.role_id}> {message}"
            allowed_mentions = {"roles": [self.role_id]}
        else:
            content = message
            allowed_mentions = {"parse": []}

        webhook = DiscordWebhook(
            url=self.webhook_url,
            content=content,
            allowed_mentions=allowed_mentions,
        )
        if fields:
            embed = DiscordEmbed(title="Conversation escalated", color=ESCALATION_COLOR)
            for name, value in fields.items():
                embed.add_embed_field(name=name, value=value or "-", inline=False)
            webhook.add_embed(embed)
        return webhook.execute()
