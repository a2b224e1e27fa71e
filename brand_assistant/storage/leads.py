"""Durable lead storage and the external email-validation authority."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Dict, List, Optional

import requests

from ..errors import DuplicateEmailError, StoreError
from ..models import EmailRejection, EmailValidation, LeadRecord
from ..utils.lead_detection import DEFAULT_PATTERNS, LeadPatterns, validate_email

logger = logging.getLogger(__name__)

DEFAULT_LEADS_TABLE = "chat_leads"


class LeadStore:
    """Insert-only lead store that also fronts the email-validation authority."""

    async def validate_email(self, email: str) -> EmailValidation:  # pragma: no cover - interface
        raise NotImplementedError

    async def insert(self, lead: LeadRecord) -> Dict[str, str]:  # pragma: no cover - interface
        """Persist ``lead`` and return ``{"id": ...}``.

        Raises :class:`DuplicateEmailError` when the email is already
        registered and :class:`StoreError` for any other failure.
        """
        raise NotImplementedError


class InMemoryLeadStore(LeadStore):
    """Process-local lead store enforcing email uniqueness."""

    def __init__(self, *, patterns: LeadPatterns = DEFAULT_PATTERNS) -> None:
        self.patterns = patterns
        self.leads: List[LeadRecord] = []

    async def validate_email(self, email: str) -> EmailValidation:
        return validate_email(email, self.patterns)

    async def insert(self, lead: LeadRecord) -> Dict[str, str]:
        if any(existing.email == lead.email for existing in self.leads):
            raise DuplicateEmailError(f"Lead already registered: {lead.email}")
        self.leads.append(lead)
        return {"id": str(len(self.leads))}


def _rejection_from_reason(reason: Optional[str]) -> EmailRejection:
    if reason and "disposable" in reason.lower():
        return EmailRejection.DISPOSABLE_DOMAIN
    return EmailRejection.INVALID_FORMAT


class SupabaseLeadStore(LeadStore):
    """Store leads through Supabase's REST API.

    Email validation goes to the ``validate-email`` edge function; when the
    function is unreachable or errors, the local offline check is used.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        table: str = DEFAULT_LEADS_TABLE,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        patterns: LeadPatterns = DEFAULT_PATTERNS,
    ) -> None:
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.table = table
        self.timeout = timeout
        self.http = session or requests.Session()
        self.patterns = patterns

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.anon_key}",
        }

    # ------------------------------------------------------------------
    def _validate_email_sync(self, email: str) -> EmailValidation:
        try:
            response = self.http.post(
                f"{self.url}/functions/v1/validate-email",
                json={"email": email},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Email validation function unreachable (%s); using local validation", exc)
            return validate_email(email, self.patterns)

        if not response.ok:
            logger.warning(
                "Email validation function returned %s; using local validation", response.status_code
            )
            return validate_email(email, self.patterns)

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Email validation function returned an unreadable reply; using local validation")
            return validate_email(email, self.patterns)
        if payload.get("valid"):
            return EmailValidation.ok()
        reason = payload.get("reason")
        return EmailValidation.rejected(_rejection_from_reason(reason), reason)

    async def validate_email(self, email: str) -> EmailValidation:
        return await asyncio.to_thread(self._validate_email_sync, email)

    # ------------------------------------------------------------------
    def _insert_sync(self, lead: LeadRecord) -> Dict[str, str]:
        body = asdict(lead)
        try:
            response = self.http.post(
                f"{self.url}/rest/v1/{self.table}",
                json=body,
                headers={**self._headers(), "Prefer": "return=representation"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StoreError(f"Lead store unreachable: {exc}") from exc

        if not response.ok:
            error_text = response.text
            if response.status_code == 409 or "duplicate" in error_text.lower():
                raise DuplicateEmailError(f"Lead already registered: {lead.email}")
            raise StoreError(f"Failed to save lead ({response.status_code}): {error_text}")

        try:
            data = response.json()
        except ValueError as exc:
            raise StoreError(f"Lead store returned an unreadable reply: {exc}") from exc
        saved = data[0] if isinstance(data, list) and data else data
        lead_id = (saved.get("uid") or saved.get("id")) if isinstance(saved, dict) else None
        return {"id": str(lead_id) if lead_id is not None else ""}

    async def insert(self, lead: LeadRecord) -> Dict[str, str]:
        return await asyncio.to_thread(self._insert_sync, lead)
