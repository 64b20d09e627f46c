import smtplib

import mailer as mailer_module
from mailer import Mailer


def test_unconfigured_mailer_skips():
    assert Mailer().send("a@example.com", "Hi", "Body") is False


def test_smtp_failure_is_logged_not_raised(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("no smtp here")

    monkeypatch.setattr(mailer_module.smtplib, "SMTP", refuse)
    assert Mailer(host="smtp.invalid").send_quietly("a@example.com", "Hi", "Body") is False


def test_smtp_send(monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            self.host = host

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            sent.append("tls")

        def login(self, user, password):
            sent.append(("login", user))

        def send_message(self, msg):
            sent.append(msg["To"])

    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    m = Mailer(host="smtp.example.com", user="mailer", password="pw", sender="shop@example.com")
    assert m.send("a@example.com", "Hi", "Body") is True
    assert sent == ["tls", ("login", "mailer"), "a@example.com"]


def test_order_confirmation_body(mailer):
    order = {
        "order_number": "ORD-1-ABCDEF",
        "total_amount": 1180.0,
        "items": [{"name": "Split AC", "quantity": 1, "subtotal": 1000.0}],
    }
    assert mailer.send_order_confirmation("a@example.com", "Asha", order) is True
    message = mailer.sent[0]
    assert message["subject"] == "Order ORD-1-ABCDEF confirmed"
    assert "Split AC x 1: 1000.00" in message["body"]
    assert "Total paid: 1180.00" in message["body"]


def test_smtp_exception_type_is_caught(monkeypatch):
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, b"busy")

    monkeypatch.setattr(mailer_module.smtplib, "SMTP", refuse)
    assert Mailer(host="smtp.invalid").send_quietly("a@example.com", "Hi", "Body") is False


def test_verification_code_body(mailer):
    assert mailer.send_verification_code("a@example.com", "Asha", "042917") is True
    message = mailer.sent[0]
    assert message["subject"] == "Verify your email"
    assert "Your verification code is 042917." in message["body"]
