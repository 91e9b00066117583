"""
Notification Service - account mail (welcome/verification, password reset)
Delivery goes through a MailSender; SMTP for real deployments, log-only for development
"""

import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List
from urllib.parse import quote

from loguru import logger

from src.config import MailSettings
from src.identity_gateway.exceptions import DependencyError


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    body: str


class MailSender(ABC):
    """Outbound mail transport"""

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> None:
        """Deliver one plain-text message; raise DependencyError on failure"""


class LogMailSender(MailSender):
    """Development sender: writes the message to the log and keeps it in memory"""

    def __init__(self):
        self.outbox: List[MailMessage] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.outbox.append(MailMessage(to=to, subject=subject, body=body))
        logger.info(f"[mail:log] To: {to} | Subject: {subject}")


class SmtpMailSender(MailSender):
    """SMTP sender with STARTTLS and an explicit socket timeout"""

    def __init__(self, settings: MailSettings):
        self.settings = settings

    def send(self, to: str, subject: str, body: str) -> None:
        msg = MIMEMultipart()
        msg["From"] = self.settings.from_address
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        try:
            with smtplib.SMTP(
                self.settings.server,
                self.settings.port,
                timeout=self.settings.timeout_seconds,
            ) as server:
                if self.settings.use_tls:
                    server.starttls()
                if self.settings.username:
                    server.login(self.settings.username, self.settings.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send mail '{subject}' to {to}: {e}")
            raise DependencyError("mail", "Mail delivery failed") from e

        logger.info(f"Mail '{subject}' sent to {to}")


def create_mail_sender(settings: MailSettings) -> MailSender:
    if settings.backend == "smtp":
        if not settings.server:
            raise ValueError("MAIL_BACKEND=smtp requires SMTP_SERVER")
        return SmtpMailSender(settings)
    return LogMailSender()


class NotificationService:
    """Composes account mails and hands them to a MailSender"""

    def __init__(self, sender: MailSender, app_base_url: str = "http://localhost:3000"):
        self.sender = sender
        self.app_base_url = app_base_url.rstrip("/")

    def send_welcome_email(self, email: str, name: str) -> None:
        subject = "Welcome to Nomcebo Bank! Please verify your email"
        verification_link = f"{self.app_base_url}/verify?email={quote(email)}"
        body = (
            f"Dear {name},\n\n"
            "Thank you for registering with Nomcebo Bank. Please verify your "
            f"email by clicking the link below:\n{verification_link}\n\n"
            "If you did not register, please ignore this email.\n\n"
            "Best regards,\nNomcebo Bank Team"
        )
        self.sender.send(email, subject, body)

    def send_password_reset_email(self, email: str, name: str, reset_token: str) -> None:
        subject = "Nomcebo Bank Password Reset"
        reset_link = f"{self.app_base_url}/reset-password?token={quote(reset_token)}"
        body = (
            f"Dear {name},\n\n"
            "We received a request to reset your password. Please reset your "
            f"password by clicking the link below:\n{reset_link}\n\n"
            "The link expires in one hour. If you did not request a password "
            "reset, please ignore this email.\n\n"
            "Best regards,\nNomcebo Bank Team"
        )
        self.sender.send(email, subject, body)
