from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from voxtro.models import BotFAQ, BotForm

FORM_INTRO = "I'd be happy to help you with that! Please fill out this form:"


def match_faq(db: Session, bot_id: UUID, text: str) -> Optional[BotFAQ]:
    """Exact, case-insensitive match of the trimmed message against active FAQ questions."""
    needle = (text or "").strip().lower()
    if not needle:
        return None
    faqs = (
        db.query(BotFAQ)
        .filter(BotFAQ.bot_id == bot_id, BotFAQ.is_active.is_(True))
        .order_by(BotFAQ.sort_order.asc(), BotFAQ.created_at.asc())
        .all()
    )
    for faq in faqs:
        if faq.answer and (faq.question or "").strip().lower() == needle:
            return faq
    return None


def match_form(db: Session, bot_id: UUID, text: str) -> Optional[BotForm]:
    """First active form, oldest first, with a trigger keyword contained in the message."""
    haystack = (text or "").lower()
    if not haystack.strip():
        return None
    forms = (
        db.query(BotForm)
        .filter(BotForm.bot_id == bot_id, BotForm.is_active.is_(True))
        .order_by(BotForm.created_at.asc())
        .all()
    )
    for form in forms:
        keywords = [keyword.strip().lower() for keyword in (form.trigger_keywords or []) if keyword and keyword.strip()]
        if any(keyword in haystack for keyword in keywords):
            return form
    return None


def form_payload(form: BotForm) -> dict:
    return {
        "id": str(form.id),
        "form_title": form.form_title,
        "form_description": form.form_description,
        "fields": form.fields or [],
        "success_message": form.success_message,
        "terms_and_conditions": form.terms_and_conditions,
        "require_terms_acceptance": bool(form.require_terms_acceptance),
    }
