"""
Tests for account mail composition, mail transports and log masking.
"""

import smtplib
from unittest.mock import patch

import pytest

from src.api.logging_config import mask_national_ids
from src.config import MailSettings
from src.identity_gateway.exceptions import DependencyError
from src.identity_gateway.services.notification_service import (
    LogMailSender,
    SmtpMailSender,
    create_mail_sender,
)
from tests.conftest import VALID_ID


class TestNotificationService:
    def test_welcome_email_links_to_verification(self, notifications, mail_sender):
        notifications.send_welcome_email("sipho@example.com", "Sipho")

        message = mail_sender.outbox[0]
        assert message.to == "sipho@example.com"
        assert "Dear Sipho" in message.body
        assert "https://bank.example/verify?email=sipho%40example.com" in message.body

    def test_reset_email_carries_token(self, notifications, mail_sender):
        notifications.send_password_reset_email("sipho@example.com", "Sipho", "abc-123_x")
        assert "https://bank.example/reset-password?token=abc-123_x" in mail_sender.outbox[0].body


class TestMailSenders:
    def test_default_backend_logs(self):
        assert isinstance(create_mail_sender(MailSettings()), LogMailSender)

    def test_smtp_backend_requires_server(self):
        with pytest.raises(ValueError):
            create_mail_sender(MailSettings(backend="smtp"))
        sender = create_mail_sender(MailSettings(backend="smtp", server="smtp.example.com"))
        assert isinstance(sender, SmtpMailSender)

    def test_smtp_failure_raises_dependency_error(self):
        sender = SmtpMailSender(MailSettings(backend="smtp", server="smtp.example.com"))
        with patch("smtplib.SMTP", side_effect=OSError("connection refused")):
            with pytest.raises(DependencyError) as exc_info:
                sender.send("sipho@example.com", "Hello", "Body")
        assert exc_info.value.dependency == "mail"

    def test_smtp_sends_with_starttls_and_login(self):
        settings = MailSettings(
            backend="smtp", server="smtp.example.com", username="bank", password="pw"
        )
        with patch("smtplib.SMTP") as smtp:
            SmtpMailSender(settings).send("sipho@example.com", "Hello", "Body")

        smtp.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        server = smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bank", "pw")
        server.send_message.assert_called_once()

    def test_smtp_protocol_error_is_wrapped(self):
        sender = SmtpMailSender(MailSettings(backend="smtp", server="smtp.example.com"))
        with patch("smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value
            server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
            with pytest.raises(DependencyError):
                sender.send("sipho@example.com", "Hello", "Body")


class TestLogMasking:
    def test_national_ids_are_masked(self):
        record = {"message": f"Registered user 'sipho' (ID {VALID_ID})"}
        mask_national_ids(record)
        assert record["message"] == "Registered user 'sipho' (ID 900101*******)"

    def test_longer_digit_runs_are_left_alone(self):
        record = {"message": "order 12345678901234 phone 0821234567"}
        mask_national_ids(record)
        assert record["message"] == "order 12345678901234 phone 0821234567"
