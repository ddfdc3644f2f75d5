"""
NotifyAction: render a message and log it.

Config:
    message (required) - template, e.g. "Filed {document_type} from {issuer}"
    channel (optional) - Slack channel/user id; the message is also posted there
                         when the pipeline has a SlackConnector

A Slack API error fails the action. A channel with no connector configured is
logged and otherwise ignored: the log line is the notification of record.
"""
import logging

from folio.actions.base import ActionHandler
from folio.connectors.slack import SlackConnector
from folio.models import ActionContext, ActionResult, ActionType, TraceEvent
from folio.variables import interpolate, pick_string

logger = logging.getLogger(__name__)


class NotifyAction(ActionHandler):
    kind = ActionType.NOTIFY
    label = "Notify"

    def __init__(self, slack: SlackConnector | None = None, **kwargs):
        super().__init__(**kwargs)
        self._slack = slack

    def run(self, context: ActionContext) -> ActionResult:
        message = interpolate(self.require(context, "message"), context.variables, context.data)
        logger.info("[NOTIFY] %s", message)

        details = {"message": message}
        outputs = None
        channel = pick_string(context.action, "channel")
        if channel and self._slack is None:
            logger.warning("Notify channel %s set but no Slack connector configured", channel)
        elif channel:
            posted = self._slack.post_message(channel=channel, text=message)
            if not posted["ok"]:
                return self.failure(
                    "Notify failed: Slack delivery",
                    f"Slack delivery failed: {posted['error']}",
                    {"channel": channel},
                )
            details["channel"] = posted["channel"]
            outputs = {"slack_ts": posted["ts"]}

        return ActionResult(
            success=True,
            logs=[f"Notified: {message}"],
            trace=[TraceEvent(step="Executed notify action", details=details)],
            outputs=outputs,
        )
