from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} debe ser un entero positivo") from exc
    if value <= 0:
        raise RuntimeError(f"{name} debe ser un entero positivo")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///tramites.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    CODIGO_VERIFICACION_EXPIRACION_MINUTOS = _env_int("CODIGO_VERIFICACION_EXPIRACION_MINUTOS", 5)
    CODIGO_VERIFICACION_MAX_INTENTOS = _env_int("CODIGO_VERIFICACION_MAX_INTENTOS", 5)
    CODIGO_VERIFICACION_BLOQUEO_MINUTOS = _env_int("CODIGO_VERIFICACION_BLOQUEO_MINUTOS", 15)

    MAIL_BACKEND = os.getenv("MAIL_BACKEND", "console").strip().lower()
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = _env_int("SMTP_PORT", 587)
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", True)
    SMTP_TIMEOUT_SECONDS = _env_int("SMTP_TIMEOUT_SECONDS", 30)
    MAIL_FROM = os.getenv("MAIL_FROM", "noreply@sistema.edu.pe")
    MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "Sistema de Trámites")


@dataclass(frozen=True)
class VerificationSettings:
    """Parameters of the signature verification-code challenge.

    Built once per application from the Flask config and shared by reference.
    """

    expiracion_minutos: int = 5
    max_intentos: int = 5
    bloqueo_minutos: int = 15

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "VerificationSettings":
        settings = cls(
            expiracion_minutos=int(config.get("CODIGO_VERIFICACION_EXPIRACION_MINUTOS", 5)),
            max_intentos=int(config.get("CODIGO_VERIFICACION_MAX_INTENTOS", 5)),
            bloqueo_minutos=int(config.get("CODIGO_VERIFICACION_BLOQUEO_MINUTOS", 15)),
        )
        if min(settings.expiracion_minutos, settings.max_intentos, settings.bloqueo_minutos) <= 0:
            raise RuntimeError("La configuracion de codigos de verificacion debe ser positiva")
        return settings
