"""
Slack connector: delivers notify-action messages through slack-sdk.

Only used when a notify action names a `channel` and the pipeline was built
with a connector (or FOLIO_SLACK_TOKEN is set). Without one, notify just logs.

Error handling pattern
-----------------------
post_message never raises for API failures. It returns
{"ok": False, "error": <slack error code>} so NotifyAction can turn it into a
failed ActionResult. SlackApiError.response["error"] carries the Slack code.

Usage:
    slack = SlackConnector(token=os.environ["FOLIO_SLACK_TOKEN"])
    slack.post_message(channel="C1234567890", text="Invoice from Acme filed")
"""
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError


class SlackConnector:
    """Thin wrapper around slack-sdk WebClient."""

    def __init__(self, token: str):
        """
        Args:
            token - Slack bot token (xoxb-...) with chat:write scope
        """
        self._client = WebClient(token=token)

    def post_message(self, channel: str, text: str) -> dict:
        """
        Post a text message to a channel (C...) or user (U...).

        Returns:
            dict - {"ok": True, "channel": str, "ts": str} on success,
                   {"ok": False, "error": str} on API failure

        The returned channel is the resolved id Slack reports, which differs
        from the input for DMs (U123 in, D456 out).
        """
        try:
            response = self._client.chat_postMessage(channel=channel, text=text)
            return {"ok": True, "channel": response["channel"], "ts": response["ts"]}
        except SlackApiError as e:
            return {"ok": False, "error": e.response["error"]}
