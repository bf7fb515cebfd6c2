"""Out-of-band delivery of verification codes.

Senders:
  - TwilioSmsDispatcher     SMS through the Twilio REST API
  - SendGridEmailDispatcher email through the SendGrid v3 API
  - ConsoleDispatcher       logs the code (development, no credentials)
  - ChannelDispatcher       routes a purpose to the email or SMS sender

A failed delivery raises DispatchError. Callers must not persist the code
in that case.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from printerp.config import Settings
from printerp.middleware.exceptions import DispatchError
from printerp.schemas.verification import VerificationPurpose

logger = logging.getLogger("printerp.auth.dispatch")

SUBJECTS = {
    VerificationPurpose.SIGNUP_EMAIL: "Verify Your Email",
    VerificationPurpose.SIGNUP_PHONE: "Verify Your Phone",
    VerificationPurpose.LOGIN_EMAIL: "Your Login Code",
    VerificationPurpose.LOGIN_PHONE: "Your Login Code",
}


def render_message(
    purpose: VerificationPurpose, code: str, expires_in: int, company: str
) -> tuple[str, str]:
    """Return (subject, body) for a code message."""
    minutes = max(1, expires_in // 60)
    subject = f"{SUBJECTS[purpose]} - {company}"
    body = (
        f"Your {company} verification code is: {code}\n"
        f"This code will expire in {minutes} minutes. "
        f"If you did not request it, please ignore this message."
    )
    return subject, body


class CodeDispatcher(ABC):
    """Delivers a code to its target. Raises DispatchError on failure."""

    dev_mode = False

    @abstractmethod
    async def send(
        self, target: str, purpose: VerificationPurpose, code: str, expires_in: int
    ) -> None:
        ...


class ConsoleDispatcher(CodeDispatcher):
    """Development dispatcher that logs the code instead of sending it."""

    dev_mode = True

    def __init__(self, company: str = "PrintERP"):
        self.company = company

    async def send(self, target, purpose, code, expires_in):
        subject, _ = render_message(purpose, code, expires_in, self.company)
        logger.info(f"[DEV] {purpose.value} to {target}: {subject} / code {code}")


class TwilioSmsDispatcher(CodeDispatcher):
    def __init__(self, account_sid: str, auth_token: str, from_number: str, company: str):
        self.client = Client(account_sid, auth_token)
        self.from_number = from_number
        self.company = company

    async def send(self, target, purpose, code, expires_in):
        _, body = render_message(purpose, code, expires_in, self.company)
        try:
            # Twilio's client is synchronous
            message = await asyncio.to_thread(
                self.client.messages.create,
                body=body,
                from_=self.from_number,
                to=target,
            )
        except TwilioException as e:
            logger.error(f"Twilio send failed for {purpose.value}: {e}")
            raise DispatchError() from e
        logger.info(f"SMS {message.sid} sent for {purpose.value}")


class SendGridEmailDispatcher(CodeDispatcher):
    SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, api_key: str, from_email: str, company: str, timeout: float = 30.0):
        self.api_key = api_key
        self.from_email = from_email
        self.company = company
        self.timeout = timeout

    async def send(self, target, purpose, code, expires_in):
        subject, body = render_message(purpose, code, expires_in, self.company)
        payload = {
            "personalizations": [{"to": [{"email": target}]}],
            "from": {"email": self.from_email, "name": self.company},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.SENDGRID_API_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid request failed for {purpose.value}: {e}")
            raise DispatchError() from e

        if response.status_code not in (200, 201, 202):
            logger.error(
                f"SendGrid rejected {purpose.value}: {response.status_code} - {response.text}"
            )
            raise DispatchError()


class ChannelDispatcher(CodeDispatcher):
    """Send email purposes by email and phone purposes by SMS."""

    def __init__(self, email: CodeDispatcher, sms: CodeDispatcher):
        self.email = email
        self.sms = sms

    @property
    def dev_mode(self) -> bool:
        return self.email.dev_mode and self.sms.dev_mode

    async def send(self, target, purpose, code, expires_in):
        sender = self.email if purpose.channel == "email" else self.sms
        await sender.send(target, purpose, code, expires_in)


def build_dispatcher(settings: Settings) -> CodeDispatcher:
    """Pick real senders where credentials exist, console otherwise."""
    console = ConsoleDispatcher(settings.company_name)

    if settings.sendgrid_api_key:
        email: CodeDispatcher = SendGridEmailDispatcher(
            settings.sendgrid_api_key, settings.email_from, settings.company_name
        )
    else:
        email = console

    if settings.twilio_account_sid:
        sms: CodeDispatcher = TwilioSmsDispatcher(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number,
            settings.company_name,
        )
    else:
        sms = console

    return ChannelDispatcher(email=email, sms=sms)
