"""
WebhookAction: POST a rendered JSON payload to a rendered URL.

Config:
    url     (required) - URL template
    payload (required) - JSON template, e.g. '{"file": "{filename}", "total": {amount}}'

Fire-and-record: the request is sent once, never retried, and the response
status is recorded in the trace but not judged; an HTTP 500 from the receiver
still counts as delivered. Connection-level failures (DNS, refused, timeout)
fail the action.

The request is bounded by FOLIO_WEBHOOK_TIMEOUT so a slow receiver cannot
stall the pipeline.
"""
import json
import urllib.error
import urllib.request

from folio.actions.base import ActionHandler
from folio.errors import ConfigValidationError
from folio.models import ActionContext, ActionResult, ActionType, TraceEvent
from folio.variables import interpolate, pick_string


class WebhookAction(ActionHandler):
    kind = ActionType.WEBHOOK
    label = "Webhook"

    def __init__(self, timeout: float = 10.0, **kwargs):
        super().__init__(**kwargs)
        self._timeout = timeout

    def run(self, context: ActionContext) -> ActionResult:
        url_template = pick_string(context.action, "url")
        payload_template = pick_string(context.action, "payload")
        if not url_template or not payload_template:
            raise ConfigValidationError(
                "Webhook action requires 'url' and 'payload' configs",
                step="Webhook failed: missing url or payload",
            )

        url = interpolate(url_template, context.variables, context.data)
        rendered = interpolate(payload_template, context.variables, context.data)
        try:
            payload = json.loads(rendered)
        except ValueError as e:
            raise ConfigValidationError(
                "Webhook payload must be valid JSON",
                step="Webhook failed: invalid JSON payload",
            ) from e

        status = self._post(url, payload)
        return ActionResult(
            success=True,
            logs=["Logged via webhook"],
            trace=[TraceEvent(
                step=f"Webhook payload sent to {url}",
                details={"url": url, "payload": payload, "status": status},
            )],
            outputs={"webhook_status": status},
        )

    def _post(self, url: str, payload) -> int:
        try:
            req = urllib.request.Request(
                url,
                data=json.dumps(payload).encode(),
                headers={"Content-Type": "application/json"},
                method="POST",
            )
        except ValueError as e:
            raise ConfigValidationError(f"Invalid webhook URL: {url}", step="Webhook failed: invalid url") from e
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                return resp.status
        except urllib.error.HTTPError as e:
            # The receiver answered; its status isn't ours to judge.
            return e.code
