"""Download-link email bodies."""

from html import escape

from pydantic import BaseModel, ConfigDict

DEFAULT_GREETING_NAME = "valued customer"


class EmailContent(BaseModel):
    """Subject plus HTML and plain-text bodies of one message."""

    model_config = ConfigDict(frozen=True)

    subject: str
    html_body: str
    text_body: str


def build_asset_link(template: str, asset_id: str) -> str:
    """Build the purchaser-facing download link for an asset id."""
    return template.format(asset_id=asset_id)


def build_download_email(
    product_name: str,
    link: str,
    customer_name: str | None = None,
) -> EmailContent:
    """Build the thank-you email carrying a download link.

    Args:
        product_name: Purchased product name
        link: Download link for the product's asset
        customer_name: Purchaser name, if Stripe collected one

    Returns:
        EmailContent for the notifier
    """
    name = customer_name or DEFAULT_GREETING_NAME
    safe_name = escape(name)
    safe_product = escape(product_name)
    safe_link = escape(link, quote=True)

    html_body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Thank you for your purchase, {safe_name}!</h2>
  <p>Your payment has been successfully processed.</p>
  <p><strong>Product:</strong> {safe_product}</p>
  <p>You can access your PDF here:</p>
  <p style="margin: 20px 0;">
    <a href="{safe_link}"
       style="background-color: #4CAF50; color: white; padding: 12px 24px;
              text-decoration: none; border-radius: 4px; display: inline-block;">
      Download PDF
    </a>
  </p>
  <p>Or copy this link: <a href="{safe_link}">{safe_link}</a></p>
  <hr style="margin: 30px 0; border: none; border-top: 1px solid #eee;">
  <p style="color: #666; font-size: 12px;">
    If you have any questions, please reply to this email.
  </p>
</div>
"""

    text_body = (
        f"Thank you for your purchase, {name}!\n"
        "\n"
        "Your payment has been successfully processed.\n"
        f"Product: {product_name}\n"
        "\n"
        f"Download your PDF here: {link}\n"
        "\n"
        "If you have any questions, please reply to this email.\n"
    )

    return EmailContent(
        subject=f"Your Purchase: {product_name}",
        html_body=html_body,
        text_body=text_body,
    )
