import pytest
from unittest.mock import patch, MagicMock
from clients.discord import DiscordWebhookClient


@pytest.mark.unit
def test_client_initializes():
    client = DiscordWebhookClient(
        webhook_url="https://discord.com/api/webhooks/test",
        role_id="123456789",
    )
    assert client.webhook_url == "https://discord.com/api/webhooks/test"
    assert client.role_id == "123456789"


@pytest.mark.unit
def test_send_message_mentions_role():
    mock_response = MagicMock()
    mock_response.status_code = 200

    with patch("clients.discord.DiscordWebhook") as MockWebhook:
        mock_webhook_instance = MagicMock()
        mock_webhook_instance.execute.return_value = mock_response
        MockWebhook.return_value = mock_webhook_instance

        client = DiscordWebhookClient(
            webhook_url="https://discord.com/api/webhooks/test",
            role_id="123456789",
        )
        response = client.send("Conversation CONV-1 needs a human: stuck")

        MockWebhook.assert_called_once_with(
            url="https://discord.com/api/webhooks/test",
            content="<@&123456789> Conversation CONV-1 needs a human: stuck",
            allowed_mentions={"roles": ["123456789"]},
        )
        mock_webhook_instance.add_embed.assert_not_called()
        mock_webhook_instance.execute.assert_called_once()
        assert response.status_code >= 200
        assert response.status_code < 300


@pytest.mark.unit
def test_send_without_role_mentions_nobody():
    with patch("clients.discord.DiscordWebhook") as MockWebhook:
        DiscordWebhookClient(webhook_url="https://discord.com/api/webhooks/test").send("hello")

        MockWebhook.assert_called_once_with(
            url="https://discord.com/api/webhooks/test",
            content="hello",
            allowed_mentions={"parse": []},
        )


@pytest.mark.unit
def test_send_with_fields_attaches_embed():
    """
    Story: An escalation carries the conversation id, reason and cart. They go
    into one embed, one field each, and blank values show as "-".
    """
    with patch("clients.discord.DiscordWebhook") as MockWebhook, patch("clients.discord.DiscordEmbed") as MockEmbed:
        webhook = MockWebhook.return_value
        embed = MockEmbed.return_value

        DiscordWebhookClient(webhook_url="https://discord.com/api/webhooks/test", role_id="1").send(
            "needs a human", {"Conversation": "CONV-1", "Reason": "stuck", "Customer": ""}
        )

        MockEmbed.assert_called_once_with(title="Conversation escalated", color="e67e22")
        assert [c.kwargs["name"] for c in embed.add_embed_field.call_args_list] == ["Conversation", "Reason", "Customer"]
        assert embed.add_embed_field.call_args_list[2].kwargs["value"] == "-"
        webhook.add_embed.assert_called_once_with(embed)
        webhook.execute.assert_called_once()
