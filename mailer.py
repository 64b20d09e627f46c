"""Outbound mail for verification codes, password resets and order confirmations."""
import smtplib
from email.message import EmailMessage
from typing import Any, Dict

import config
from logger import get_logger

logger = get_logger("mailer")


class Mailer:
    def __init__(self, host: str = "", port: int = 587, user: str = "", password: str = "",
                 sender: str = "no-reply@localhost"):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender

    @classmethod
    def from_config(cls) -> "Mailer":
        return cls(config.SMTP_HOST, config.SMTP_PORT, config.SMTP_USER, config.SMTP_PASSWORD, config.MAIL_FROM)

    def send(self, to: str, subject: str, body: str) -> bool:
        """Send a plain-text message. Returns False when SMTP is not configured."""
        if not self.host:
            logger.info("SMTP not configured, skipping mail to=%s subject=%r", to, subject)
            return False
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.user:
                smtp.starttls()
                smtp.login(self.user, self.password)
            smtp.send_message(msg)
        logger.info("Mail sent to=%s subject=%r", to, subject)
        return True

    def send_quietly(self, to: str, subject: str, body: str) -> bool:
        """Best-effort send for background tasks: failures are logged, never raised."""
        try:
            return self.send(to, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send mail to=%s subject=%r: %s", to, subject, e)
            return False

    def send_password_reset(self, to: str, name: str, link: str) -> bool:
        body = (
            f"Hi {name},\n\n"
            "We received a request to reset your password. Use the link below within the next hour:\n\n"
            f"{link}\n\n"
            "If you did not ask for this, you can ignore this email."
        )
        return self.send_quietly(to, "Reset your password", body)

    def send_verification_code(self, to: str, name: str, otp: str) -> bool:
        body = (
            f"Hi {name},\n\n"
            f"Your verification code is {otp}. "
            f"It expires in {config.EMAIL_OTP_TTL_MIN} minutes.\n"
        )
        return self.send_quietly(to, "Verify your email", body)

    def send_order_confirmation(self, to: str, name: str, order: Dict[str, Any]) -> bool:
        lines = [
            f"  {item['name']} x {item['quantity']}: {item['subtotal']:.2f}"
            for item in order.get("items", [])
        ]
        body = (
            f"Hi {name},\n\n"
            f"Thank you for your order {order['order_number']}.\n\n"
            + "\n".join(lines)
            + f"\n\nTotal paid: {order['total_amount']:.2f}\n"
        )
        return self.send_quietly(to, f"Order {order['order_number']} confirmed", body)
