"""
Transactional email templates.

Each template returns ``(subject, html_body, text_body)``. Styles are inline
because most mail clients drop ``<style>`` blocks.
"""

from __future__ import annotations

from html import escape

INK = "#1B1B1F"
MUTED = "#6B6B76"
ACCENT = "#7C3AED"
PAPER = "#FAFAFC"
RULE = "#E4E4EA"

APP_NAME = "Luxicle"


def _layout(body: str) -> str:
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{APP_NAME}</title></head>
<body style="margin:0;padding:32px 16px;background:{PAPER};font-family:Helvetica,Arial,sans-serif;color:{INK};">
  <div style="max-width:560px;margin:0 auto;">
    <p style="font-size:20px;font-weight:700;color:{ACCENT};margin:0 0 24px;">{APP_NAME}</p>
    <div style="background:#FFFFFF;border:1px solid {RULE};border-radius:10px;padding:32px;">
      {body}
    </div>
    <p style="font-size:12px;color:{MUTED};margin-top:24px;">
      You received this because someone used this address on {APP_NAME}.
      If that wasn't you, no action is needed.
    </p>
  </div>
</body>
</html>"""


def _link_block(url: str, label: str) -> str:
    safe = escape(url, quote=True)
    return f"""\
<p style="margin:24px 0;">
  <a href="{safe}" style="background:{ACCENT};color:#FFFFFF;padding:12px 24px;border-radius:6px;text-decoration:none;font-weight:600;">{label}</a>
</p>
<p style="font-size:12px;color:{MUTED};word-break:break-all;">Or open this link: {safe}</p>"""


def confirm_signup(username: str | None, confirm_url: str, expires_hours: int = 24) -> tuple[str, str, str]:
    """Sent after registration when the address still needs confirming."""
    name = escape(username or "there")
    subject = f"Confirm your {APP_NAME} account"
    body = f"""\
<h1 style="font-size:22px;margin:0 0 12px;">Welcome, {name}!</h1>
<p style="line-height:1.6;color:{MUTED};">Confirm your email address to finish setting up your account.</p>
{_link_block(confirm_url, "Confirm email")}
<p style="font-size:13px;color:{MUTED};">The link expires in {expires_hours} hours.</p>"""
    text_body = (
        f"Welcome, {username or 'there'}!\n\n"
        f"Confirm your email address to finish setting up your {APP_NAME} account:\n\n"
        f"{confirm_url}\n\n"
        f"The link expires in {expires_hours} hours."
    )
    return subject, _layout(body), text_body


def password_reset(reset_url: str, expires_minutes: int = 60) -> tuple[str, str, str]:
    """Sent by the forgot-password flow."""
    subject = f"Reset your {APP_NAME} password"
    body = f"""\
<h1 style="font-size:22px;margin:0 0 12px;">Reset your password</h1>
<p style="line-height:1.6;color:{MUTED};">Use the link below to choose a new password.</p>
{_link_block(reset_url, "Choose a new password")}
<p style="font-size:13px;color:{MUTED};">The link expires in {expires_minutes} minutes and works once.</p>"""
    text_body = (
        f"Use this link to choose a new {APP_NAME} password:\n\n"
        f"{reset_url}\n\n"
        f"The link expires in {expires_minutes} minutes and works once."
    )
    return subject, _layout(body), text_body
