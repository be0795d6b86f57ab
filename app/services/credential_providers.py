import base64
import json
import logging
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from urllib import error, parse, request

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 300


class CredentialError(Exception):
    pass


@dataclass(frozen=True)
class AccessToken:
    access_token: str
    expires_at: float
    issued_at: float
    token_type: str = "Bearer"
    instance_url: str | None = None

    def is_fresh(self, now: float, margin_seconds: float = TOKEN_EXPIRY_MARGIN_SECONDS) -> bool:
        return now < self.expires_at - margin_seconds


class CachedTokenProvider:
    """Holds one access token and refreshes it on first use or near expiry.

    Refreshes are serialized so concurrent requests that see an expired token
    trigger a single token call.
    """

    def __init__(self, timeout_seconds: float = 10.0, clock=time.time) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock = threading.Lock()

    def get_token(self) -> AccessToken:
        token = self._token
        if token and token.is_fresh(self._clock()):
            return token

        with self._lock:
            token = self._token
            if token and token.is_fresh(self._clock()):
                return token
            token = self._fetch_token()
            self._token = token
            return token

    def get_access_token(self) -> str:
        return self.get_token().access_token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None

    def _fetch_token(self) -> AccessToken:
        raise NotImplementedError

    def _post_form(
        self,
        url: str,
        form: dict[str, str],
        headers: dict[str, str],
        provider_name: str,
    ) -> dict[str, Any]:
        req = request.Request(
            url,
            data=parse.urlencode(form).encode("utf-8"),
            headers={"Content-Type": "application/x-www-form-urlencoded", **headers},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise CredentialError(f"{provider_name} token request timed out.") from exc
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise CredentialError(
                f"{provider_name} token HTTP {exc.code}: {body or 'empty response body'}",
            ) from exc
        except error.URLError as exc:
            raise CredentialError(f"{provider_name} token connection error: {exc.reason}") from exc

        try:
            payload = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CredentialError(f"{provider_name} token endpoint returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise CredentialError(f"{provider_name} token response is not a JSON object.")

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise CredentialError(f"{provider_name} token response did not include access_token.")
        return payload


class ZoomCredentialProvider(CachedTokenProvider):
    def __init__(
        self,
        *,
        account_id: str,
        client_id: str,
        client_secret: str,
        oauth_token_url: str = "https://zoom.us/oauth/token",
        timeout_seconds: float = 10.0,
        clock=time.time,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, clock=clock)
        self.account_id = account_id.strip()
        self.client_id = client_id.strip()
        self.client_secret = client_secret.strip()
        self.oauth_token_url = oauth_token_url

    def _fetch_token(self) -> AccessToken:
        if not (self.account_id and self.client_id and self.client_secret):
            raise CredentialError("Zoom Server-to-Server OAuth credentials are not configured.")

        credentials = base64.b64encode(
            f"{self.client_id}:{self.client_secret}".encode("utf-8"),
        ).decode("ascii")
        logger.info("Fetching new Zoom access token")
        issued_at = self._clock()
        payload = self._post_form(
            self.oauth_token_url,
            form={"grant_type": "account_credentials", "account_id": self.account_id},
            headers={"Authorization": f"Basic {credentials}"},
            provider_name="Zoom OAuth",
        )
        expires_in = _to_positive_int(payload.get("expires_in")) or 3600
        return AccessToken(
            access_token=payload["access_token"].strip(),
            token_type=str(payload.get("token_type") or "Bearer"),
            issued_at=issued_at,
            expires_at=issued_at + expires_in,
        )


class SalesforceCredentialProvider(CachedTokenProvider):
    """OAuth for the Salesforce REST API.

    Uses the username-password flow when a username is configured (the
    password must include the security token), otherwise the client
    credentials flow. Salesforce does not return a token lifetime, so tokens
    are kept for ``token_ttl_seconds``.
    """

    def __init__(
        self,
        *,
        login_url: str,
        client_id: str,
        client_secret: str,
        username: str = "",
        password: str = "",
        token_ttl_seconds: int = 7200,
        timeout_seconds: float = 10.0,
        clock=time.time,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, clock=clock)
        self.login_url = login_url.rstrip("/")
        self.client_id = client_id.strip()
        self.client_secret = client_secret.strip()
        self.username = username.strip()
        self.password = password
        self.token_ttl_seconds = token_ttl_seconds

    @property
    def token_url(self) -> str:
        return f"{self.login_url}/services/oauth2/token"

    def _fetch_token(self) -> AccessToken:
        if not (self.client_id and self.client_secret):
            raise CredentialError("Salesforce connected app credentials are not configured.")

        form = {"client_id": self.client_id, "client_secret": self.client_secret}
        if self.username:
            form.update(
                {"grant_type": "password", "username": self.username, "password": self.password},
            )
        else:
            form["grant_type"] = "client_credentials"

        logger.info("Fetching new Salesforce access token grant_type=%s", form["grant_type"])
        payload = self._post_form(
            self.token_url,
            form=form,
            headers={"Accept": "application/json"},
            provider_name="Salesforce OAuth",
        )
        instance_url = payload.get("instance_url")
        if not isinstance(instance_url, str) or not instance_url.strip():
            raise CredentialError("Salesforce token response did not include instance_url.")

        issued_at = self._clock()
        raw_issued_at = _to_positive_int(payload.get("issued_at"))
        if raw_issued_at:
            # Salesforce reports issued_at in milliseconds.
            issued_at = raw_issued_at / 1000
        return AccessToken(
            access_token=payload["access_token"].strip(),
            token_type=str(payload.get("token_type") or "Bearer"),
            instance_url=instance_url.strip().rstrip("/"),
            issued_at=issued_at,
            expires_at=issued_at + self.token_ttl_seconds,
        )


def create_zoom_credential_provider(
    account_id: str,
    client_id: str,
    client_secret: str,
    oauth_token_url: str,
    timeout_seconds: float,
) -> ZoomCredentialProvider:
    return _create_zoom_credential_provider_cached(
        account_id=account_id,
        client_id=client_id,
        client_secret=client_secret,
        oauth_token_url=oauth_token_url,
        timeout_seconds=timeout_seconds,
    )


@lru_cache
def _create_zoom_credential_provider_cached(
    account_id: str,
    client_id: str,
    client_secret: str,
    oauth_token_url: str,
    timeout_seconds: float,
) -> ZoomCredentialProvider:
    return ZoomCredentialProvider(
        account_id=account_id,
        client_id=client_id,
        client_secret=client_secret,
        oauth_token_url=oauth_token_url,
        timeout_seconds=timeout_seconds,
    )


def create_salesforce_credential_provider(
    login_url: str,
    client_id: str,
    client_secret: str,
    username: str,
    password: str,
    token_ttl_seconds: int,
    timeout_seconds: float,
) -> SalesforceCredentialProvider:
    return _create_salesforce_credential_provider_cached(
        login_url=login_url,
        client_id=client_id,
        client_secret=client_secret,
        username=username,
        password=password,
        token_ttl_seconds=token_ttl_seconds,
        timeout_seconds=timeout_seconds,
    )


@lru_cache
def _create_salesforce_credential_provider_cached(
    login_url: str,
    client_id: str,
    client_secret: str,
    username: str,
    password: str,
    token_ttl_seconds: int,
    timeout_seconds: float,
) -> SalesforceCredentialProvider:
    return SalesforceCredentialProvider(
        login_url=login_url,
        client_id=client_id,
        client_secret=client_secret,
        username=username,
        password=password,
        token_ttl_seconds=token_ttl_seconds,
        timeout_seconds=timeout_seconds,
    )


def clear_credential_provider_cache() -> None:
    _create_zoom_credential_provider_cached.cache_clear()
    _create_salesforce_credential_provider_cached.cache_clear()


def _to_positive_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed_value = int(value)
    except (TypeError, ValueError):
        return None
    return parsed_value if parsed_value > 0 else None
