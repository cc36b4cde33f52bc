"""
Confirmation email rendering.

Templates use `{{placeholder}}` markers. Known placeholders:
    client_first_name, client_full_name, appointment_date, appointment_time,
    service_name, salon_name, stylist_name

Unknown placeholders are left untouched (and logged) so that a typo in a
template stays visible in the delivered email instead of silently vanishing.
"""

import html
import logging
import re
from dataclasses import dataclass
from zoneinfo import ZoneInfo

from notifications.types import NotificationContext, SalonEmailTemplates

logger = logging.getLogger(__name__)

DEFAULT_STYLIST_LABEL = "un·e coiffeur·euse"

WEEKDAYS_FR = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]
MONTHS_FR = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]

CONFIRMATION_EMAIL_SUBJECT = "Confirmation de votre rendez-vous chez {{salon_name}}"

CONFIRMATION_EMAIL_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <style>
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #5b4bb7; color: white; padding: 24px; text-align: center; border-radius: 10px 10px 0 0; }
    .content { background: #f9f9f9; padding: 24px; border-radius: 0 0 10px 10px; }
    .label { font-weight: bold; color: #5b4bb7; }
    .footer { text-align: center; margin-top: 24px; color: #666; font-size: 12px; }
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>Rendez-vous confirmé</h1></div>
    <div class="content">
      <p>Bonjour {{client_full_name}},</p>
      <p>Votre rendez-vous a été confirmé avec succès !</p>
      <p><span class="label">Salon :</span> {{salon_name}}</p>
      <p><span class="label">Service :</span> {{service_name}}</p>
      <p><span class="label">Coiffeur·euse :</span> {{stylist_name}}</p>
      <p><span class="label">Date et heure :</span> {{appointment_date}} à {{appointment_time}}</p>
      <p>Nous avons hâte de vous accueillir !</p>
      <p>Si vous avez des questions ou souhaitez modifier votre rendez-vous, n'hésitez pas à nous contacter.</p>
    </div>
    <div class="footer"><p>Cet email a été envoyé automatiquement par {{salon_name}}</p></div>
  </div>
</body>
</html>"""

_TEXT_EMAIL_HEAD = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <style>
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .content { background: #f9f9f9; padding: 24px; border-radius: 10px; }
    .label { font-weight: bold; color: #5b4bb7; }
  </style>
</head>
<body>
  <div class="container">
    <div class="content">
"""

_TEXT_EMAIL_TAIL = """    </div>
  </div>
</body>
</html>"""

_INFO_ROW = re.compile(r"^([^:{}]+?)\s*:\s*(.*\{\{.+\}\}.*)$")

_PLACEHOLDER = re.compile(r"{{\s*(\w+)\s*}}")
_STYLE_OR_SCRIPT = re.compile(r"<(style|script)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_BLOCK_END = re.compile(r"</(p|div|h[1-6]|li|tr)>|<br\s*/?>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_BLANK_LINES = re.compile(r"\n\s*\n+")


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def format_date_for_email(context: NotificationContext, timezone: str) -> tuple[str, str]:
    """
    Format the appointment start for emails.

    Returns:
        ("mardi 25 novembre 2025", "09:00") in the salon timezone
    """
    local_start = context.start_time.astimezone(ZoneInfo(timezone))
    date_label = (
        f"{WEEKDAYS_FR[local_start.weekday()]} {local_start.day} "
        f"{MONTHS_FR[local_start.month - 1]} {local_start.year}"
    )
    return date_label, local_start.strftime("%H:%M")


def template_values(context: NotificationContext, timezone: str) -> dict[str, str]:
    appointment_date, appointment_time = format_date_for_email(context, timezone)
    return {
        "client_first_name": context.client_first_name,
        "client_full_name": context.client_full_name,
        "appointment_date": appointment_date,
        "appointment_time": appointment_time,
        "service_name": context.service_name,
        "salon_name": context.salon_name,
        "stylist_name": context.stylist_name or DEFAULT_STYLIST_LABEL,
    }


def render_template(template: str, values: dict[str, str], escape: bool = False) -> str:
    """
    Replace `{{key}}` placeholders with values.

    Args:
        template: Template text
        values: Placeholder values
        escape: HTML-escape substituted values (for HTML bodies)

    Returns:
        Rendered text; unknown placeholders are kept as-is
    """
    if not template:
        return ""

    def substitute(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            logger.warning(f"Unknown template placeholder: {{{{{key}}}}}")
            return match.group(0)
        value = values[key] or ""
        return html.escape(value) if escape else value

    return _PLACEHOLDER.sub(substitute, template)


def html_to_text(body: str) -> str:
    """Plain-text fallback for an HTML email body."""
    text = _STYLE_OR_SCRIPT.sub("", body)
    text = _BLOCK_END.sub("\n", text)
    text = _TAG.sub("", text)
    text = html.unescape(text)
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def text_to_html(text: str) -> str:
    """
    Build an HTML body from a plain-text template written by the salon.

    Each non-empty line becomes a paragraph; "Label : {{placeholder}}"
    lines get a highlighted label. Placeholders are kept for render_template.
    """
    paragraphs = []
    for line in (raw.strip() for raw in text.splitlines()):
        if not line:
            continue
        match = _INFO_ROW.match(line)
        if match:
            label, value = match.groups()
            paragraphs.append(
                f'      <p><span class="label">{html.escape(label.strip())} :</span> {html.escape(value)}</p>'
            )
        else:
            paragraphs.append(f"      <p>{html.escape(line)}</p>")
    return _TEXT_EMAIL_HEAD + "\n".join(paragraphs) + "\n" + _TEXT_EMAIL_TAIL


def resolve_confirmation_templates(
    templates: SalonEmailTemplates | None,
) -> tuple[str, str, str | None]:
    """
    Pick the templates to render for one salon.

    Empty or missing salon values fall back to the defaults. A salon that
    only wrote a plain-text body gets HTML generated from it.

    Returns:
        (subject_template, html_template, text_template or None)
    """
    if templates is None:
        return CONFIRMATION_EMAIL_SUBJECT, CONFIRMATION_EMAIL_HTML, None

    subject = (templates.subject or "").strip() or CONFIRMATION_EMAIL_SUBJECT
    text = (templates.text or "").strip() or None

    if (templates.html or "").strip():
        html_template = templates.html
    elif text:
        html_template = text_to_html(text)
    else:
        html_template = CONFIRMATION_EMAIL_HTML

    return subject, html_template, text


def render_confirmation_email(
    context: NotificationContext,
    timezone: str,
    subject_template: str = CONFIRMATION_EMAIL_SUBJECT,
    html_template: str = CONFIRMATION_EMAIL_HTML,
    text_template: str | None = None,
) -> RenderedEmail:
    """Render subject, HTML body and text part (from text_template, else derived from the HTML)."""
    values = template_values(context, timezone)
    html_body = render_template(html_template, values, escape=True)
    text_body = render_template(text_template, values) if text_template else html_to_text(html_body)
    return RenderedEmail(
        subject=render_template(subject_template, values),
        html=html_body,
        text=text_body,
    )
