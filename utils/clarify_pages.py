# utils/clarify_pages.py
from html import escape
from typing import List

from utils.clarify_token import ClarifyOption, ClarifyPayload

HTML_CSP = "default-src 'self'; style-src 'unsafe-inline';"

_PAGE = """<!doctype html>
<html lang="en">
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<title>{title}</title>
<body style="font:14px system-ui;background:#f9fafb;margin:0">
<div style="max-width:28rem;margin:0 auto;padding:20px">
{body}
</div>
</body>
</html>"""


def _page(title: str, body: str) -> str:
    return _PAGE.format(title=escape(title), body=body)


def plain_notice(message: str, title: str = "Notice") -> str:
    return _page(title, f'<div style="padding:24px">{escape(message)}</div>')


def render_thanks_page() -> str:
    return _page(
        "Thanks!",
        '<div style="text-align:center;padding:24px;border:1px solid #e5e7eb;border-radius:12px;background:#fff">'
        '<div style="font-size:18px;font-weight:600">Noted</div>'
        '<div style="color:#4b5563;margin-top:4px">We&#39;ve updated your order.</div>'
        "</div>",
    )


def _option_form(token: str, index: int, opt: ClarifyOption) -> str:
    badge = ' <span style="font-size:10px;background:#d1fae5;color:#047857;border-radius:9999px;padding:1px 8px">Recommended</span>' if opt.recommended else ""
    details = " · ".join(p for p in (opt.canonical, opt.brand, opt.variant, opt.unit) if p)
    return (
        '<form method="post" action="/api/clarify" style="margin:0 0 8px">'
        f'<input type="hidden" name="token" value="{escape(token)}" />'
        f'<input type="hidden" name="choice" value="{index}" />'
        '<button style="width:100%;text-align:left;border:1px solid #e5e7eb;border-radius:8px;padding:8px 12px;background:#fff">'
        f'<div style="font-weight:500">{escape(opt.label)}{badge}</div>'
        f'<div style="font-size:12px;color:#6b7280">{escape(details)}</div>'
        "</button></form>"
    )


def render_clarify_page(token: str, payload: ClarifyPayload, options: List[ClarifyOption]) -> str:
    parts = [
        '<div style="border:1px solid #e5e7eb;border-radius:12px;background:#fff;padding:16px">',
        '<div style="font-size:18px;font-weight:600">Help us confirm your item</div>',
        '<p style="color:#4b5563">Please tap the exact option below:</p>',
    ]
    parts.extend(_option_form(token, i, opt) for i, opt in enumerate(options))

    if payload.allow_other:
        fields = []
        if payload.ask.brand:
            fields.append('<label>Brand<br><input name="other_brand" placeholder="e.g., Maggi" /></label><br>')
        if payload.ask.variant:
            fields.append('<label>Variant<br><input name="other_variant" placeholder="e.g., Masala 70g" /></label><br>')
        parts.append(
            '<div style="margin-top:16px;border-top:1px solid #f3f4f6;padding-top:12px">'
            '<div style="font-weight:500">Or tell us exactly:</div>'
            '<form method="post" action="/api/clarify">'
            f'<input type="hidden" name="token" value="{escape(token)}" />'
            '<input type="hidden" name="choice" value="-1" />'
            + "".join(fields)
            + '<button style="margin-top:8px;background:#000;color:#fff;border-radius:8px;padding:8px 12px">Submit</button>'
            "</form></div>"
        )

    parts.append('<p style="font-size:12px;color:#6b7280">This link will auto-update your order. Thanks!</p>')
    parts.append("</div>")
    return _page("Confirm your item", "".join(parts))
