"""
notify/templates.py -- HTML bodies for outbound account emails.

All interpolated values pass through html.escape -- the display name is
user-supplied and lands inside an HTML document.
"""

import html

OTP_SUBJECT = "OTP for Account Verification"
OTP_RESEND_SUBJECT = "New OTP for Account Verification"

_OTP_TEMPLATE = """\
<div style="font-family: 'Roboto', Arial, sans-serif; background-color: #f4f6f9; padding: 30px; color: #333;">
  <div style="max-width: 480px; margin: 0 auto; background: #ffffff; border-radius: 8px; padding: 24px;">
    <h2 style="margin-top: 0;">Hi {name},</h2>
    <p>Use the code below to verify your account.</p>
    <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px; text-align: center;">{code}</p>
    <p>This code expires in {minutes} minutes. If you did not request it, you can ignore this email.</p>
  </div>
</div>
"""


def otp_email_html(name: str, code: str, expire_seconds: int) -> str:
    """Render the OTP email for a recipient."""
    minutes = max(1, expire_seconds // 60)
    return _OTP_TEMPLATE.format(
        name=html.escape(name),
        code=html.escape(code),
        minutes=minutes,
    )
