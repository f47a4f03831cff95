import httpx


class SendGridClient:
    """Client for the SendGrid v3 mail API."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        base_url: str = "https://api.sendgrid.com",
        transport=None
    ):
        self.base_url = base_url.rstrip("/")
        self.from_email = from_email
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json"
        }
        self.transport = transport

    async def send(self, to: str, subject: str, html: str):
        """Send one HTML email. Raises httpx errors on failure."""
        async with httpx.AsyncClient(transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/v3/mail/send",
                headers=self.headers,
                json={
                    "personalizations": [{"to": [{"email": to}]}],
                    "from": {"email": self.from_email},
                    "subject": subject,
                    "content": [{"type": "text/html", "value": html}]
                },
                timeout=10.0
            )
            response.raise_for_status()
