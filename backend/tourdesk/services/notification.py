from dataclasses import dataclass
from typing import Optional
import logging
import httpx
from tourdesk.config import get_settings
from tourdesk.models import EmailStatus

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    """Outcome of a single delivery attempt."""
    status: EmailStatus
    error: Optional[str] = None
    provider_id: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status in (EmailStatus.SENT, EmailStatus.SIMULATED)


class EmailNotifier:
    """
    Transactional email sender backed by an HTTP email API (Resend-compatible).

    Features:
    - JSON POST with bearer API key
    - Simulated delivery (logged only) when no API key is configured
    - Never raises on transport errors; failures come back as EmailResult
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
    ):
        self.api_url = api_url or settings.email_api_url
        self.api_key = settings.email_api_key if api_key is None else api_key
        self.from_email = from_email or settings.from_email
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def close(self):
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def send_email(self, to: str, subject: str, html: str) -> EmailResult:
        if not self.is_configured:
            logger.info(f"[simulated email] to={to} subject={subject!r}")
            logger.debug(f"[simulated email] body: {html[:200]}...")
            return EmailResult(status=EmailStatus.SIMULATED)

        try:
            client = await self._get_client()
            response = await client.post(
                self.api_url,
                json={
                    "from": self.from_email,
                    "to": to,
                    "subject": subject,
                    "html": html,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
            )

            if response.is_success:
                provider_id = None
                try:
                    provider_id = response.json().get("id")
                except ValueError:
                    pass
                logger.info(f"Email sent to {to}: {subject}")
                return EmailResult(status=EmailStatus.SENT, provider_id=provider_id)

            logger.error(f"Email API returned {response.status_code} for {to}: {response.text}")
            return EmailResult(
                status=EmailStatus.FAILED,
                error=f"HTTP {response.status_code}: {response.text[:500]}",
            )

        except httpx.ConnectError as e:
            logger.warning(f"Could not connect to email API at {self.api_url}: {e}")
            return EmailResult(status=EmailStatus.FAILED, error=str(e))
        except httpx.HTTPError as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return EmailResult(status=EmailStatus.FAILED, error=str(e))


_global_notifier: Optional[EmailNotifier] = None


def get_global_notifier() -> EmailNotifier:
    global _global_notifier
    if _global_notifier is None:
        _global_notifier = EmailNotifier()
    return _global_notifier


async def shutdown_notifier():
    """Close the global notifier's HTTP client."""
    global _global_notifier
    if _global_notifier is not None:
        await _global_notifier.close()
        _global_notifier = None
