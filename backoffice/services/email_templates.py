"""
HTML bodies for transactional emails
"""
from html import escape
from typing import List

from backoffice.utils.helpers import format_currency

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #1f2937; color: white; padding: 20px; text-align: center; }
    .content { padding: 30px; background: #f9fafb; }
    .box { background: #e5e7eb; padding: 15px; border-radius: 5px; margin: 15px 0; }
    .button { display: inline-block; padding: 12px 30px; background: #2563eb; color: white; text-decoration: none; border-radius: 5px; }
    table { width: 100%; border-collapse: collapse; }
    th, td { padding: 8px; border-bottom: 1px solid #e5e7eb; text-align: left; }
    .footer { padding: 20px; text-align: center; color: #6b7280; font-size: 12px; }
"""


def _layout(app_name: str, title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head><style>{_STYLE}</style></head>
    <body>
        <div class="container">
            <div class="header"><h1>{escape(app_name)}</h1></div>
            <div class="content">
                <h2>{escape(title)}</h2>
                {body}
            </div>
            <div class="footer">
                <p>This is an automated message. Please do not reply to this email.</p>
            </div>
        </div>
    </body>
    </html>
    """


def welcome(app_name: str, full_name: str, email: str, password: str, role: str, website_url: str) -> str:
    body = f"""
        <p>Hello {escape(full_name or 'there')},</p>
        <p>Your {escape(role)} account has been created.</p>
        <div class="box">
            <p><strong>Email:</strong> {escape(email)}</p>
            <p><strong>Password:</strong> {escape(password)}</p>
        </div>
        <p>Please change your password after your first login.</p>
        <p style="text-align: center;"><a href="{escape(website_url)}" class="button">Sign in</a></p>
    """
    return _layout(app_name, "Welcome", body)


def password_reset(app_name: str, full_name: str, new_password: str, website_url: str) -> str:
    body = f"""
        <p>Hello {escape(full_name or 'there')},</p>
        <p>Your password has been reset by an administrator. Your new password is:</p>
        <div class="box"><code>{escape(new_password)}</code></div>
        <p style="text-align: center;"><a href="{escape(website_url)}" class="button">Sign in</a></p>
    """
    return _layout(app_name, "Password Reset", body)


def trial_change(app_name: str, full_name: str, trial_expiry: str, status: str) -> str:
    body = f"""
        <p>Hello {escape(full_name or 'there')},</p>
        <p>Your account status is now <strong>{escape(status)}</strong>.</p>
        <p>Your trial period ends on <strong>{escape(trial_expiry)}</strong>.</p>
    """
    return _layout(app_name, "Trial Period Updated", body)


def trial_extension(app_name: str, full_name: str, trial_expiry: str, extension_days: int) -> str:
    body = f"""
        <p>Hello {escape(full_name or 'there')},</p>
        <p>Your trial has been extended by {extension_days} days.</p>
        <p>It now ends on <strong>{escape(trial_expiry)}</strong>.</p>
    """
    return _layout(app_name, "Trial Extended", body)


def invite(app_name: str, role: str, invite_url: str, expire_days: int) -> str:
    body = f"""
        <p>You have been invited to join as a <strong>{escape(role)}</strong>.</p>
        <p style="text-align: center;"><a href="{escape(invite_url)}" class="button">Accept invitation</a></p>
        <p>Or paste this link in your browser:</p>
        <p style="word-break: break-all;">{escape(invite_url)}</p>
        <p>This invitation expires in {expire_days} days.</p>
    """
    return _layout(app_name, "You're Invited", body)


def invoice_created(
    app_name: str,
    full_name: str,
    invoice_number: str,
    issue_date: str,
    due_date: str,
    items: List[dict],
    subtotal,
    tax_total,
    total,
    created_by_name: str,
    created_by_role: str,
    website_url: str,
) -> str:
    rows = "".join(
        f"<tr><td>{escape(i['name'])}</td><td>{i['quantity']}</td>"
        f"<td>{format_currency(i['price'])}</td><td>{format_currency(i['total'])}</td></tr>"
        for i in items
    )
    body = f"""
        <p>Hello {escape(full_name or 'there')},</p>
        <p>A new invoice has been issued by {escape(created_by_name)} ({escape(created_by_role)}).</p>
        <div class="box">
            <p><strong>Invoice:</strong> {escape(invoice_number)}</p>
            <p><strong>Issue date:</strong> {escape(issue_date)}</p>
            <p><strong>Due date:</strong> {escape(due_date)}</p>
        </div>
        <table>
            <tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr>
            {rows}
        </table>
        <p>Subtotal: {format_currency(subtotal)}<br>Tax: {format_currency(tax_total)}<br>
        <strong>Total: {format_currency(total)}</strong></p>
        <p style="text-align: center;"><a href="{escape(website_url)}" class="button">View invoice</a></p>
    """
    return _layout(app_name, f"Invoice {invoice_number}", body)
