"""
Occupancy Transition Service
Document Service — default renderer for status notifications.

Text rendering only; binary/PDF output is out of scope.

Two template sources:
    built-in     the defaults below, ``str.format_map`` placeholders
                 ({request_no}, {status_title}, ...)
    community    DocumentTemplate.content written by administrators, rendered
                 as a sandboxed, autoescaped Jinja2 template
                 ({{ request_no }}, {{ status_title }}, ...); literal braces
                 such as CSS rules pass through untouched

An approved move-in or renewal also carries the scope's welcome pack, when one
is configured, as an HTML attachment.
"""

from __future__ import annotations

import logging

from jinja2 import TemplateError, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment
from markupsafe import Markup
from sqlalchemy import select

from occupancy.core.exceptions import ValidationError
from occupancy.models import db
from occupancy.models.recipients import DocumentTemplate
from occupancy.services.collaborators import Artifact, Attachment, DocumentRenderer
from occupancy.services.scope_resolution import scope_candidates

logger = logging.getLogger(__name__)

_community_env = SandboxedEnvironment(autoescape=True)


# ═══════════════════════════════════════════════════════════════════════════
#  Status wording
# ═══════════════════════════════════════════════════════════════════════════

STATUS_TITLES = {
    "new": "Submitted",
    "rfi-pending": "Additional Information Required",
    "rfi-submitted": "Information Submitted",
    "approved": "Approved",
    "cancelled": "Cancelled",
    "user-cancelled": "Cancelled by User",
    "closed": "Completed",
}

NEXT_STEPS = {
    "approved": "Please have all required documents ready. Your welcome pack has detailed instructions.",
    "rfi-pending": "Please sign in to provide the additional information requested.",
    "rfi-submitted": "We will review your submission and update you within 2-3 business days.",
    "cancelled": "If you wish to submit a new request, please contact our support team.",
    "user-cancelled": "If you change your mind, you can submit a new request at any time.",
    "closed": "Contact support if you need any further assistance.",
}

KIND_LABELS = {
    "move-in": "Move-in",
    "move-out": "Move-out",
    "renewal": "Account renewal",
}

# Kinds whose approval mail carries the welcome pack
WELCOME_PACK_KINDS = frozenset({"move-in", "renewal"})


# ═══════════════════════════════════════════════════════════════════════════
#  Default templates
# ═══════════════════════════════════════════════════════════════════════════

_TEMPLATES: dict[str, dict[str, str]] = {
    "move-in": {
        "subject": "{kind_label} request {request_no}: {status_title}",
        "body": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="margin: 0 0 12px;">{kind_label} request {request_no}</h2>
            <p>Status: <strong>{status_title}</strong></p>
            <p>Unit: {unit_number}</p>
            {remark_block}
            <p>{next_steps}</p>
        </div>
        """,
    },
    "move-out": {
        "subject": "Move-out request {request_no}: {status_title}",
        "body": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="margin: 0 0 12px;">Move-out request {request_no}</h2>
            <p>Status: <strong>{status_title}</strong></p>
            <p>Unit: {unit_number}</p>
            {remark_block}
            <p>{next_steps}</p>
        </div>
        """,
    },
}


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"


# ═══════════════════════════════════════════════════════════════════════════
#  Community templates
# ═══════════════════════════════════════════════════════════════════════════


def check_template_source(content: str) -> None:
    """Raise ValidationError when ``content`` is not a valid community template."""
    try:
        _community_env.parse(content)
    except TemplateSyntaxError as exc:
        raise ValidationError(
            f"Template syntax error on line {exc.lineno}: {exc.message}",
            details={"content": f"line {exc.lineno}: {exc.message}"},
        )


def render_community_template(content: str, context: dict) -> str:
    return _community_env.from_string(content).render(context)


def active_template(template_type: str, scope: dict) -> DocumentTemplate | None:
    """Narrowest active DocumentTemplate for the scope, or None."""
    for level, filters in scope_candidates(scope):
        stmt = select(DocumentTemplate).where(
            DocumentTemplate.template_type == template_type,
            DocumentTemplate.is_active.is_(True),
            *filters(DocumentTemplate),
        )
        template = db.session.execute(stmt).scalars().first()
        if template is not None and (template.content or "").strip():
            return template
    return None


def wants_welcome_pack(kind: str, to_status: str) -> bool:
    return to_status == "approved" and kind in WELCOME_PACK_KINDS


# ═══════════════════════════════════════════════════════════════════════════
#  Renderer
# ═══════════════════════════════════════════════════════════════════════════


class DocumentService(DocumentRenderer):
    """
    Default renderer.

    ``data`` is the dispatcher's event context plus, when configured,
    ``template_content`` (community body) and ``welcome_pack_content``.
    """

    @staticmethod
    def get_template(template_type: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_type)

    def build_context(self, template_type: str, data: dict) -> dict:
        status = data.get("to_status") or ""
        remark = data.get("remark")
        context = dict(data)
        context.pop("template_content", None)
        context.pop("welcome_pack_content", None)
        context.setdefault("request_no", "")
        context.setdefault("unit_number", "")
        context["kind_label"] = KIND_LABELS.get(data.get("kind"), "Occupancy")
        context["status_title"] = STATUS_TITLES.get(status, status.replace("-", " ").title())
        context["next_steps"] = NEXT_STEPS.get(status, "Please sign in for more details.")
        context["remark_block"] = Markup("<p>Remarks: {}</p>").format(remark) if remark else Markup("")
        return context

    def _welcome_pack(self, content: str | None, context: dict) -> tuple[Attachment, ...]:
        if not content:
            return ()
        try:
            rendered = render_community_template(content, context)
        except TemplateError as exc:
            # The status mail still goes out; the pack is optional
            logger.warning("Welcome pack for %s not attached: %s", context["request_no"], exc,
                           extra={"request_no": context["request_no"], "template_type": "welcome-pack"})
            return ()
        filename = f"welcome-pack-{context['request_no'] or 'request'}.html"
        return (Attachment(filename=filename, content=rendered),)

    def render(self, template_type: str, data: dict) -> Artifact:
        template = self.get_template(template_type)
        if template is None:
            raise ValueError(f"Unknown template type: {template_type}")

        context = self.build_context(template_type, data)
        community_body = data.get("template_content")
        if community_body:
            body = render_community_template(community_body, context)
        else:
            body = template["body"].format_map(_SafeDict(context))

        artifact = Artifact(
            template_type=template_type,
            subject=template["subject"].format_map(_SafeDict(context)),
            body=body,
            attachments=self._welcome_pack(data.get("welcome_pack_content"), context),
        )
        logger.debug("Rendered %s notification for %s (%d attachments)",
                     template_type, context["request_no"], len(artifact.attachments),
                     extra={"request_no": context["request_no"], "template_type": template_type})
        return artifact
