"""Lead-capture state machine.

The state is never stored. Each turn it is derived again from the lead
details accumulated in memory plus whatever the current message revealed,
and mapped to a directive appended to the prompt sent to the chat model.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models import EmailValidation, LeadInfo
from ..utils.lead_detection import ExtractedLeadInfo


class LeadCaptureState(str, Enum):
    NEED_NAME = "need_name"
    NAME_JUST_PROVIDED = "name_just_provided"
    NEED_EMAIL = "need_email"
    INVALID_EMAIL = "invalid_email"
    COMPLETE = "complete"


@dataclass(frozen=True)
class LeadDirectives:
    """Instructions for the chat model, one per state."""

    need_name: str = (
        "[SYSTEM: The user has not provided their name yet. Ask for their name FIRST "
        "before answering any questions. Do NOT answer their question yet, just ask "
        "for their name in a friendly way.]"
    )
    name_just_provided: str = (
        '[SYSTEM: The user just provided their name. Greet them warmly by name ("Hi {name}!"). '
        "If the user asked a question earlier in the conversation that was not yet answered, "
        "answer it now politely using their name. Do NOT ask for their email yet.]"
    )
    invalid_email: str = (
        "[SYSTEM: The user provided an INVALID email. Reason: {reason}. "
        "Ask them for a different email address before answering.]"
    )
    need_email: str = (
        "[SYSTEM: Ask for the user's email before answering their request. "
        "Keep it brief and do NOT answer their question yet.]"
    )
    complete: str = (
        "[SYSTEM: The user's name is {name} and their email ({email}) has already been "
        "captured. Do NOT ask for any contact information. Just answer their question "
        "normally and helpfully.]"
    )


DEFAULT_DIRECTIVES = LeadDirectives()


@dataclass
class LeadDecision:
    state: LeadCaptureState
    directive: str
    capture_in_progress: bool
    show_form: bool
    name: Optional[str] = None
    email: Optional[str] = None


def decide(
    accumulated: LeadInfo,
    extracted: ExtractedLeadInfo,
    validation: Optional[EmailValidation],
    directives: LeadDirectives = DEFAULT_DIRECTIVES,
) -> LeadDecision:
    """Pick this turn's lead-capture state.

    ``validation`` is the result of checking the combined email and must be
    provided whenever an email is known.
    """

    name = extracted.name or accumulated.name
    email = extracted.email or accumulated.email
    name_just_provided = bool(extracted.name) and not accumulated.name

    if not name:
        return LeadDecision(
            state=LeadCaptureState.NEED_NAME,
            directive=directives.need_name,
            capture_in_progress=True,
            show_form=False,
        )

    if name_just_provided and not email:
        return LeadDecision(
            state=LeadCaptureState.NAME_JUST_PROVIDED,
            directive=directives.name_just_provided.format(name=name),
            capture_in_progress=True,
            show_form=False,
            name=name,
        )

    if email and validation is not None and not validation.valid:
        return LeadDecision(
            state=LeadCaptureState.INVALID_EMAIL,
            directive=directives.invalid_email.format(reason=validation.reason),
            capture_in_progress=True,
            show_form=True,
            name=name,
            email=email,
        )

    if not email:
        return LeadDecision(
            state=LeadCaptureState.NEED_EMAIL,
            directive=directives.need_email,
            capture_in_progress=True,
            show_form=True,
            name=name,
        )

    return LeadDecision(
        state=LeadCaptureState.COMPLETE,
        directive=directives.complete.format(name=name, email=email),
        capture_in_progress=False,
        show_form=False,
        name=name,
        email=email,
    )
