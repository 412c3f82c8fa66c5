import logging
from datetime import datetime, timezone

import httpx

from viberr.errors import UpstreamRejected, UpstreamUnavailable
from viberr.settings import get_env_credential

logger = logging.getLogger("viberr_backend")

RESEND_URL = "https://api.resend.com/emails"
SENDER = "Viberr <notifications@viberr.dev>"


def _format_steps(completed_steps) -> str:
    lines = []
    for s in completed_steps or []:
        if not isinstance(s, dict):
            continue
        value = s.get("value") or s.get("fileName") or s.get("choice") or "Done"
        lines.append(f"- {s.get('label', 'Step')}: {value}")
    return "\n".join(lines)


class Notifier:
    """
    Go-live notification. Sends an email through Resend when both
    RESEND_API_KEY and NOTIFY_EMAIL are set, otherwise only logs.
    """

    def __init__(self, http_client: httpx.Client | None = None):
        self._http = http_client

    def notify_submission(self, slug: str, project_name: str, completed_steps=None, notes: str | None = None) -> str:
        resend_key = get_env_credential("RESEND_API_KEY")
        notify_email = get_env_credential("NOTIFY_EMAIL")

        if not (resend_key and notify_email):
            logger.info(
                f"[SUBMISSION] {project_name} ({slug}): {len(completed_steps or [])} steps completed. "
                f"Notes: {notes or 'none'}"
            )
            return "log"

        steps_text = _format_steps(completed_steps)
        body = (
            f"New submission for {project_name} ({slug})\n\n"
            f"Steps completed:\n{steps_text or 'None'}\n\n"
            f"{'Notes: ' + notes if notes else 'No additional notes.'}\n\n"
            f"Submitted at: {datetime.now(timezone.utc).isoformat()}"
        )
        payload = {
            "from": SENDER,
            "to": [notify_email],
            "subject": f"[Viberr] {project_name} - Go Live Submission",
            "text": body,
        }
        headers = {"Authorization": f"Bearer {resend_key}"}

        client = self._http or httpx.Client()
        try:
            resp = client.post(RESEND_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(str(e)) from e
        finally:
            if self._http is None:
                client.close()

        if resp.status_code >= 400:
            raise UpstreamRejected(resp.status_code, resp.text)
        return "email"
