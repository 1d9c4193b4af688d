from __future__ import annotations

from datetime import datetime, timezone

from flask import Request


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def censor_email(email: str) -> str:
    local, sep, domain = (email or "").partition("@")
    if not sep:
        return email
    if len(local) <= 2:
        return f"{local[:1]}***@{domain}"
    return f"{local[0]}***{local[-1]}@{domain}"


def extract_browser(user_agent: str | None) -> str:
    ua = user_agent or ""
    if not ua:
        return "Desconocido"
    if "Edg/" in ua or "Edge/" in ua:
        return "Microsoft Edge"
    if "OPR/" in ua or "Opera" in ua:
        return "Opera"
    if "Firefox/" in ua:
        return "Mozilla Firefox"
    if "Chrome/" in ua:
        return "Google Chrome"
    if "Safari/" in ua:
        return "Safari"
    return "Otro"


def extract_device(user_agent: str | None) -> str:
    ua = user_agent or ""
    if not ua:
        return "Desconocido"
    if "iPhone" in ua or "iPad" in ua:
        return "Mobile - iOS"
    if "Android" in ua:
        return "Mobile - Android" if "Mobile" in ua else "Tablet - Android"
    if "Mobile" in ua:
        return "Mobile"
    if "Windows" in ua:
        return "Desktop - Windows"
    if "Mac OS" in ua or "Macintosh" in ua:
        return "Desktop - macOS"
    if "Linux" in ua:
        return "Desktop - Linux"
    return "Desktop"


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP", "")
    if real_ip:
        return real_ip.strip()
    return request.remote_addr or ""
