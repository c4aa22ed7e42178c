"""Providers for the injected outbound collaborators.

main.py constructs the email service and bot gate once and stores them on
app.state; tests swap them through app.dependency_overrides.
"""

from fastapi import Depends, Header, Request

from warden.services.bot_gate import BotGate
from warden.services.email_service import EmailService
from warden.services.security_audit_service import SecurityAuditService


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service


def get_bot_gate(request: Request) -> BotGate:
    return request.app.state.bot_gate


def require_captcha(
    request: Request,
    x_captcha_response: str | None = Header(None),
    bot_gate: BotGate = Depends(get_bot_gate),
) -> None:
    """Reject the request before the handler runs unless the captcha passes."""
    ip_address, _ = SecurityAuditService.get_request_info(request)
    bot_gate.verify(x_captcha_response, remote_ip=ip_address)
