"""
Web client login.
Performs the form-based sign-in and collects the cookies and CSRF token for the channel.
"""

import httpx
from bs4 import BeautifulSoup

from ..core import errors
from ..core.config import settings
from ..core.log import Loggable
from ..core.models import Credentials, SessionArtifacts


VERIFICATION_FIELD = "__RequestVerificationToken"
ANTIFORGERY_PREFIX = ".AspNetCore.Antiforgery."
CSRF_TOKEN_PREFIX = "CfDJ8"


def parse_set_cookies(response: httpx.Response) -> dict[str, str]:
    """Name/value pairs from every Set-Cookie header of a response."""
    cookies = {}
    for header in response.headers.get_list("set-cookie"):
        pair = header.split(";", 1)[0]
        if "=" not in pair:
            continue
        name, value = pair.split("=", 1)
        cookies[name.strip()] = value.strip()
    return cookies


def extract_verification_token(html: str) -> str | None:
    """Read the hidden anti-forgery input from the sign-in page."""
    soup = BeautifulSoup(html, "html.parser")
    field = soup.find("input", attrs={"name": VERIFICATION_FIELD})
    if field is None:
        return None
    value = field.get("value")
    return value or None


def select_csrf_token(cookies: dict[str, str], fallback: str) -> str:
    """The channel expects the anti-forgery cookie value, not the form token."""
    for name, value in cookies.items():
        if name.startswith(ANTIFORGERY_PREFIX) and value.startswith(CSRF_TOKEN_PREFIX):
            return value
    return fallback


class Authenticator(Loggable):
    """
    Form-based sign-in against the web client.

    Rejected credentials and unparseable login pages raise
    AuthenticationError; network failures raise ConnectionError.
    """

    name = "Auth"

    def __init__(
        self,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize authenticator.

        Args:
            timeout: Request timeout in seconds (defaults to config)
            user_agent: User-Agent header (defaults to config)
            transport: Optional httpx transport, used by tests
        """
        self.timeout = timeout if timeout is not None else settings.connect_timeout
        self.user_agent = user_agent or settings.user_agent
        self.transport = transport

    async def authenticate(self, credentials: Credentials) -> SessionArtifacts:
        """
        Sign in and return the session artifacts.

        Args:
            credentials: User, password, tenant, and base URL

        Returns:
            Cookies and CSRF token for the channel handshake
        """
        base_url = credentials.base_url.rstrip("/")
        sign_in_url = f"{base_url}/SignIn"
        headers = {"User-Agent": self.user_agent}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=False,
                transport=self.transport,
            ) as client:
                page = await client.get(
                    sign_in_url,
                    params={"tenant": credentials.tenant_id},
                    headers=headers,
                )
                cookies = parse_set_cookies(page)

                token = extract_verification_token(page.text)
                if token is None:
                    raise errors.AuthenticationError(
                        "Login page has no verification token",
                        context={"url": sign_in_url, "status": page.status_code},
                    )

                artifacts = SessionArtifacts(base_url=base_url, cookies=cookies)
                self.log(f"Signing in as {credentials.username} (tenant {credentials.tenant_id})")

                response = await client.post(
                    sign_in_url,
                    params={"tenant": credentials.tenant_id},
                    data={
                        "userName": credentials.username,
                        "password": credentials.password,
                        VERIFICATION_FIELD: token,
                    },
                    headers={**headers, "Cookie": artifacts.cookie_header()},
                )
        except httpx.RequestError as e:
            raise errors.ConnectionError(
                f"Login request failed: {e}",
                context={"url": sign_in_url},
            ) from e

        if response.status_code != 302:
            raise errors.AuthenticationError(
                f"Login rejected with status {response.status_code}",
                context={"url": sign_in_url, "status": response.status_code},
            )

        cookies.update(parse_set_cookies(response))
        self.log(f"Signed in, {len(cookies)} cookies collected")

        return SessionArtifacts(
            base_url=base_url,
            cookies=cookies,
            csrf_token=select_csrf_token(cookies, token),
        )
