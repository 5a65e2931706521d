"""
Notification Templates
Jinja2 templates for appointment SMS and email bodies
"""

from jinja2 import Environment, TemplateNotFound
import structlog

logger = structlog.get_logger(__name__)

# SMS bodies are plain text
SMS_TEMPLATES = {
    "created.patient": (
        "Hi {{ patient.first_name or 'there' }}, your appointment with {{ clinician.full_name or 'your clinician' }} "
        "is confirmed for {{ when }}."
    ),
    "rescheduled.patient": (
        "Hi {{ patient.first_name or 'there' }}, your appointment with {{ clinician.full_name or 'your clinician' }} "
        "has been moved to {{ when }}."
    ),
    "cancelled.patient": (
        "Hi {{ patient.first_name or 'there' }}, your appointment on {{ when }} has been cancelled."
        "{% if reason %} Reason: {{ reason }}{% endif %}"
    ),
}

# (subject, html body). Autoescaped: names and notes come from user input.
EMAIL_TEMPLATES = {
    "created.patient": (
        "Appointment confirmed",
        """<p>Hi {{ patient.first_name or 'there' }},</p>
<p>Your appointment with {{ clinician.full_name or 'your clinician' }} is confirmed for <strong>{{ when }}</strong>.</p>
{% if summary %}<p><strong>Before your visit:</strong><br>{{ summary }}</p>{% endif %}""",
    ),
    "created.clinician": (
        "New appointment: {{ patient.full_name or 'patient' }}",
        """<p>New appointment booked for <strong>{{ when }}</strong>.</p>
<p>Patient: {{ patient.full_name or 'unknown' }}</p>
{% if appointment.notes %}<p>Notes: {{ appointment.notes }}</p>{% endif %}""",
    ),
    "rescheduled.patient": (
        "Appointment rescheduled",
        """<p>Hi {{ patient.first_name or 'there' }},</p>
<p>Your appointment with {{ clinician.full_name or 'your clinician' }} has been moved
{% if previous_when %}from {{ previous_when }} {% endif %}to <strong>{{ when }}</strong>.</p>""",
    ),
    "cancelled.patient": (
        "Appointment cancelled",
        """<p>Hi {{ patient.first_name or 'there' }},</p>
<p>Your appointment on <strong>{{ when }}</strong> has been cancelled.</p>
{% if reason %}<p>Reason: {{ reason }}</p>{% endif %}""",
    ),
}


class NotificationRenderer:
    """
    Renders SMS text and email subject/html for a template key such as
    'created.patient'. Email bodies are autoescaped.
    """

    def __init__(self):
        self.text_env = Environment(autoescape=False, trim_blocks=True, lstrip_blocks=True)
        self.html_env = Environment(autoescape=True, trim_blocks=True, lstrip_blocks=True)

    def render_sms(self, key: str, variables: dict) -> str:
        template_str = SMS_TEMPLATES.get(key)
        if template_str is None:
            raise TemplateNotFound(f"sms:{key}")
        return self.text_env.from_string(template_str).render(**variables).strip()

    def render_email(self, key: str, variables: dict) -> tuple:
        """
        Returns:
            (subject, html_body)
        """
        template = EMAIL_TEMPLATES.get(key)
        if template is None:
            raise TemplateNotFound(f"email:{key}")
        subject_str, body_str = template
        subject = self.text_env.from_string(subject_str).render(**variables).strip()
        html_body = self.html_env.from_string(body_str).render(**variables).strip()

        logger.debug("notification_rendered", template=key, subject=subject)
        return subject, html_body


def format_when(iso_value) -> str:
    """Human-readable UTC timestamp for notification bodies."""
    from datetime import datetime

    if not iso_value:
        return "an unknown time"
    try:
        value = datetime.fromisoformat(iso_value) if isinstance(iso_value, str) else iso_value
    except ValueError:
        return str(iso_value)
    return value.strftime("%a %d %b %Y, %H:%M UTC")


notification_renderer = NotificationRenderer()
