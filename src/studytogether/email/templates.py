"""
Email templates for StudyTogether.

All templates use inline CSS for email client compatibility.
Each template function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from html import escape

# Color constants
BG_PAGE = "#F9FAFB"
BG_CARD = "#FFFFFF"
BG_HIGHLIGHT = "#F3F4F6"
BLUE = "#3B82F6"
TEXT_PRIMARY = "#1F2937"
TEXT_SECONDARY = "#4B5563"
BORDER = "#E5E7EB"

APP_NAME = "StudyTogether"
SIGNATURE = f"Best regards,\n{APP_NAME} Team"


def _base_layout(content: str) -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{APP_NAME}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: Arial, Helvetica, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 32px 16px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 8px; padding: 32px;">
                            {content}
                            <p style="color: {TEXT_SECONDARY}; font-size: 14px; margin: 32px 0 0 0;">Best regards,<br>{APP_NAME} Team</p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _heading(text: str) -> str:
    return f'<h2 style="color: {BLUE}; font-size: 22px; margin: 0 0 16px 0;">{text}</h2>'


def _paragraph(text: str) -> str:
    return f'<p style="color: {TEXT_SECONDARY}; font-size: 15px; line-height: 1.6; margin: 0 0 12px 0;">{text}</p>'


def _highlight(inner: str) -> str:
    return (
        f'<div style="background-color: {BG_HIGHLIGHT}; padding: 20px; border-radius: 8px; '
        f'margin: 20px 0; text-align: center;">{inner}</div>'
    )


def _button(url: str, label: str) -> str:
    return (
        f'<p><a href="{escape(url, quote=True)}" target="_blank" style="background-color: {BLUE}; color: #FFFFFF; '
        f'padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">{label}</a></p>'
    )


def otp_verification(username: str, otp: str, expires_minutes: int = 10) -> tuple[str, str, str]:
    """
    Six-digit verification code sent at registration and on resend.

    Returns:
        (subject, html_body, text_body)
    """
    name = escape(username)
    subject = f"{APP_NAME} - Email Verification"
    content = (
        _heading(f"Welcome to {APP_NAME}!")
        + _paragraph(f"Hi {name},")
        + _paragraph("Thank you for signing up! Please verify your email address with the code below:")
        + _highlight(
            f'<h1 style="color: {TEXT_PRIMARY}; font-size: 36px; margin: 0; letter-spacing: 8px;">{escape(otp)}</h1>'
        )
        + _paragraph(f"This code will expire in {expires_minutes} minutes.")
        + _paragraph("If you didn't create an account with us, please ignore this email.")
    )
    text_body = (
        f"Hi {username},\n\n"
        f"Your {APP_NAME} verification code is: {otp}\n\n"
        f"This code will expire in {expires_minutes} minutes.\n\n"
        f"If you didn't create an account with us, please ignore this email.\n\n"
        f"{SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def session_reminder(
    username: str,
    title: str,
    subject_name: str,
    start_time: str,
    end_time: str | None = None,
) -> tuple[str, str, str]:
    """
    Reminder for an upcoming scheduled study block.

    ``start_time``/``end_time`` arrive pre-formatted in the study timezone.
    """
    subject = f"{APP_NAME} - Upcoming Study Session: {title}"
    details = (
        f'<h3 style="color: {TEXT_PRIMARY}; margin-top: 0;">{escape(title)}</h3>'
        f'<p style="color: {TEXT_SECONDARY};"><strong>Subject:</strong> {escape(subject_name)}</p>'
        f'<p style="color: {TEXT_SECONDARY};"><strong>Start Time:</strong> {escape(start_time)}</p>'
    )
    if end_time:
        details += f'<p style="color: {TEXT_SECONDARY};"><strong>End Time:</strong> {escape(end_time)}</p>'
    content = (
        _heading("Study Session Reminder")
        + _paragraph(f"Hi {escape(username)},")
        + _paragraph("You have an upcoming study session scheduled:")
        + _highlight(details)
        + _paragraph("Don't forget to prepare your study materials and find a quiet place to focus!")
    )
    text_lines = [
        f"Hi {username},",
        "",
        "You have an upcoming study session scheduled:",
        "",
        f"  {title}",
        f"  Subject: {subject_name}",
        f"  Start: {start_time}",
    ]
    if end_time:
        text_lines.append(f"  End: {end_time}")
    text_lines += ["", "Good luck with your studies!", "", SIGNATURE]
    return subject, _base_layout(content), "\n".join(text_lines)


def friend_invite(inviter_name: str, invite_code: str, register_url: str) -> tuple[str, str, str]:
    """Invitation to join, carrying the inviter's friend code."""
    subject = f"{APP_NAME} - Friend Invitation from {inviter_name}"
    content = (
        _heading(f"You've been invited to {APP_NAME}!")
        + _paragraph("Hi there,")
        + _paragraph(
            f"{escape(inviter_name)} has invited you to join them on {APP_NAME}, "
            "a platform for collaborative studying!"
        )
        + _highlight(
            f'<p style="color: {TEXT_SECONDARY}; margin: 0;">Use this invite code to connect:</p>'
            f'<h2 style="color: {TEXT_PRIMARY}; margin: 10px 0; letter-spacing: 2px;">{escape(invite_code)}</h2>'
        )
        + _button(register_url, f"Join {APP_NAME}")
    )
    text_body = (
        f"Hi there,\n\n"
        f"{inviter_name} has invited you to join them on {APP_NAME}.\n\n"
        f"Invite code: {invite_code}\n"
        f"Sign up here: {register_url}\n\n"
        f"{SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def achievement_unlocked(username: str, achievement_name: str) -> tuple[str, str, str]:
    """Congratulations for a newly unlocked achievement."""
    subject = f"{APP_NAME} - Achievement Unlocked: {achievement_name}"
    content = (
        _heading("Achievement Unlocked!")
        + _paragraph(f"Congratulations {escape(username)}!")
        + _highlight(f'<h2 style="color: {TEXT_PRIMARY}; margin: 0;">{escape(achievement_name)}</h2>')
        + _paragraph("Keep up the great work with your studies!")
    )
    text_body = (
        f"Congratulations {username}!\n\n"
        f"You unlocked a new achievement: {achievement_name}\n\n"
        f"Keep up the great work with your studies!\n\n"
        f"{SIGNATURE}"
    )
    return subject, _base_layout(content), text_body
