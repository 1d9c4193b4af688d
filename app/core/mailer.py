"""
Entrega de codigos de verificacion de firma por email.

Backends:
- ``smtp``: SMTP con STARTTLS opcional (smtplib + EmailMessage)
- ``console``: solo registra el mensaje en el log, para desarrollo
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Mapping

logger = logging.getLogger(__name__)


class EmailSendError(RuntimeError):
    pass


def _code_body(name: str, code: str, document_title: str, tramite_code: str, expiry_minutes: int) -> str:
    return (
        f"Hola {name},\n\n"
        f"Tu codigo de verificacion para firmar el documento \"{document_title}\" "
        f"(tramite {tramite_code}) es:\n\n"
        f"    {code}\n\n"
        f"El codigo expira en {expiry_minutes} minutos y solo puede usarse una vez.\n"
        "Si no solicitaste este codigo, ignora este mensaje.\n"
    )


def _lockout_body(name: str, lockout_minutes: int) -> str:
    return (
        f"Hola {name},\n\n"
        "Se han registrado demasiados intentos fallidos de verificacion de firma "
        f"en tu cuenta. La verificacion queda bloqueada durante {lockout_minutes} minutos.\n"
        "Si no fuiste tu, contacta con el administrador del sistema.\n"
    )


class SmtpCodeMailer:
    def __init__(self, config: Mapping[str, Any]) -> None:
        self.host = config.get("SMTP_HOST") or ""
        self.port = int(config.get("SMTP_PORT") or 0)
        self.user = config.get("SMTP_USER") or ""
        self.password = config.get("SMTP_PASSWORD") or ""
        self.use_tls = bool(config.get("SMTP_USE_TLS", True))
        self.timeout = int(config.get("SMTP_TIMEOUT_SECONDS") or 30)
        self.mail_from = config.get("MAIL_FROM") or ""
        self.mail_from_name = config.get("MAIL_FROM_NAME") or ""

    def send_code(
        self,
        email: str,
        name: str,
        code: str,
        document_title: str,
        tramite_code: str,
        expiry_minutes: int,
    ) -> None:
        self._send(
            email,
            f"Codigo de verificacion de firma - {tramite_code}",
            _code_body(name, code, document_title, tramite_code, expiry_minutes),
        )

    def send_lockout_notice(self, email: str, name: str, lockout_minutes: int) -> None:
        self._send(email, "Verificacion de firma bloqueada", _lockout_body(name, lockout_minutes))

    def _send(self, to_email: str, subject: str, body_text: str) -> None:
        if not self.host or not self.port:
            raise EmailSendError("SMTP_HOST/SMTP_PORT no configurados")
        if not self.mail_from:
            raise EmailSendError("MAIL_FROM no configurado")

        msg = EmailMessage()
        msg["From"] = formataddr((self.mail_from_name, self.mail_from)) if self.mail_from_name else self.mail_from
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(body_text)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailSendError(f"Fallo enviando email SMTP: {exc}") from exc


class ConsoleCodeMailer:
    def send_code(
        self,
        email: str,
        name: str,
        code: str,
        document_title: str,
        tramite_code: str,
        expiry_minutes: int,
    ) -> None:
        logger.info(
            "Codigo de verificacion para %s (%s): %s [tramite %s, expira en %s min]",
            email,
            name,
            code,
            tramite_code,
            expiry_minutes,
        )

    def send_lockout_notice(self, email: str, name: str, lockout_minutes: int) -> None:
        logger.info("Aviso de bloqueo para %s (%s): %s min", email, name, lockout_minutes)


def build_code_mailer(config: Mapping[str, Any]) -> SmtpCodeMailer | ConsoleCodeMailer:
    backend = (config.get("MAIL_BACKEND") or "console").strip().lower()
    if backend == "smtp":
        return SmtpCodeMailer(config)
    if backend == "console":
        return ConsoleCodeMailer()
    raise RuntimeError(f"MAIL_BACKEND desconocido: {backend}")
