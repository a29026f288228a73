"""DanDomain webshop GraphQL client with OAuth2 client-credentials auth.

The access token lives on the provider instance and is refreshed when it is
about to expire. Configuration is passed in explicitly at construction.
"""

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from ..config import Settings
from .secrets import reveal

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = 86400
TOKEN_TTL_BUFFER = 300
TOKEN_REFRESH_MARGIN = 60

ORDER_FIELDS = """
        id
        createdAt
        total
        subTotal
        isPaid
        status { id }
        customer {
          id
          businessCustomer
          billingAddress {
            firstName lastName company addressLine zipCode city country
            phoneNumber mobileNumber email
          }
          shippingAddress {
            firstName lastName company addressLine zipCode city country
            phoneNumber mobileNumber email
          }
        }
        orderLines { id productTitle amount }
"""

ORDER_BY_ID_QUERY = f"""
    query GetOrder($id: ID!) {{
      orderById(id: $id) {{{ORDER_FIELDS}      }}
    }}"""

ORDERS_SINCE_QUERY = """
    query RebuildQueue($limit: Int!, $page: Int!, $from: String!) {
      orders(
        pagination: { limit: $limit, page: $page }
        order: { field: id, direction: DESC }
        search: [{ field: createdAt, comparator: GREATER_THAN, value: $from }]
      ) {
        data {
          id
          createdAt
          status { id }
          customer {
            billingAddress { email firstName lastName }
            shippingAddress { email firstName lastName }
          }
        }
      }
    }"""


class DanDomainError(Exception):
    """Token or GraphQL request to DanDomain failed."""


@dataclass(frozen=True)
class DanDomainConfig:
    graphql_url: str
    oauth_url: str
    client_id: str
    client_secret: str
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, s: Settings) -> "DanDomainConfig":
        if not s.effective_graphql_url:
            raise DanDomainError("Missing DANDOMAIN_GRAPHQL_URL or DANDOMAIN_SHOP_ID")
        return cls(
            graphql_url=s.effective_graphql_url,
            oauth_url=s.effective_oauth_url,
            client_id=s.dandomain_client_id,
            client_secret=reveal(s.dandomain_client_secret),
        )


class DanDomainTokenProvider:
    """Fetches and caches an OAuth2 access token for one DanDomain shop."""

    def __init__(self, config: DanDomainConfig, client: httpx.Client, clock=time.monotonic) -> None:
        self._config = config
        self._client = client
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0

    def _request_form(self) -> dict:
        response = self._client.post(
            self._config.oauth_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "scope": "",
            },
            timeout=10,
        )
        return _json_or_empty(response)

    def _request_basic(self) -> dict:
        response = self._client.post(
            self._config.oauth_url,
            data={"grant_type": "client_credentials"},
            auth=(self._config.client_id, self._config.client_secret),
            timeout=10,
        )
        return _json_or_empty(response)

    def get_token(self) -> str:
        now = self._clock()
        if self._token and now < self._expires_at - TOKEN_REFRESH_MARGIN:
            return self._token

        if not self._config.oauth_url:
            raise DanDomainError("Missing DANDOMAIN_OAUTH_URL or DANDOMAIN_SHOP_ID")
        if not self._config.client_id or not self._config.client_secret:
            raise DanDomainError("Missing DANDOMAIN_CLIENT_ID or DANDOMAIN_CLIENT_SECRET")

        try:
            data = self._request_form()
            if not data.get("access_token") and "invalid_client" in str(data).lower():
                logger.warning("Form grant returned invalid_client, falling back to Basic auth")
                data = self._request_basic()
        except httpx.HTTPError as exc:
            logger.error("DanDomain token request failed: %s", exc)
            raise DanDomainError(f"Token request failed: {exc}") from exc

        token = data.get("access_token")
        if not token:
            raise DanDomainError(f"Token response invalid: {data}")

        try:
            ttl = int(data.get("expires_in") or DEFAULT_TOKEN_TTL)
        except (TypeError, ValueError):
            ttl = DEFAULT_TOKEN_TTL
        self._token = token
        self._expires_at = now + ttl - TOKEN_TTL_BUFFER
        logger.info("Fetched DanDomain access token from %s", self._config.oauth_url)
        return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


def _json_or_empty(response: httpx.Response) -> dict:
    if response.status_code >= 500:
        response.raise_for_status()
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class DanDomainClient:
    def __init__(
        self,
        config: DanDomainConfig,
        client: httpx.Client | None = None,
        token_provider: DanDomainTokenProvider | None = None,
    ) -> None:
        self._config = config
        self._client = client or httpx.Client(timeout=config.timeout)
        self.tokens = token_provider or DanDomainTokenProvider(config, self._client)

    def post_graphql(self, query: str, variables: dict | None = None) -> dict:
        token = self.tokens.get_token()
        try:
            response = self._client.post(
                self._config.graphql_url,
                json={"query": query, "variables": variables or {}},
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise DanDomainError(f"GraphQL request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error("GraphQL request failed: HTTP %d %s", response.status_code, response.text[:500])
            raise DanDomainError(f"GraphQL HTTP {response.status_code}")

        payload = response.json()
        if payload.get("errors"):
            logger.error("GraphQL returned errors: %s", payload["errors"])
            raise DanDomainError(str(payload["errors"]))
        return payload.get("data") or {}

    def fetch_order_by_id(self, order_id: str) -> dict | None:
        data = self.post_graphql(ORDER_BY_ID_QUERY, {"id": order_id})
        return data.get("orderById")

    def fetch_orders_since(self, since: datetime, page_size: int = 50) -> list[dict]:
        """All orders created after ``since``, following pagination."""
        orders: list[dict] = []
        page = 1
        while True:
            data = self.post_graphql(
                ORDERS_SINCE_QUERY,
                {"limit": page_size, "page": page, "from": since.isoformat()},
            )
            items = ((data.get("orders") or {}).get("data")) or []
            if not items:
                break
            orders.extend(items)
            if len(items) < page_size:
                break
            page += 1
        return orders


def extract_contact(order: dict) -> tuple[str, str]:
    """Recipient (email, name) from an order: billing email first, then shipping."""
    customer = order.get("customer") or {}
    billing = customer.get("billingAddress") or {}
    shipping = customer.get("shippingAddress") or {}
    email = (billing.get("email") or shipping.get("email") or "").strip()
    name = " ".join(p for p in (billing.get("firstName"), billing.get("lastName")) if p).strip()
    return email, name


def parse_order_timestamp(value: str | None) -> datetime:
    """Order createdAt as aware UTC datetime; now when missing or unparsable."""
    if value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            logger.warning("Unparsable order createdAt %r, using now", value)
        else:
            return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)
    return datetime.now(UTC)


def create_dandomain_client(s: Settings) -> DanDomainClient | None:
    """Factory: None when no shop is configured."""
    try:
        config = DanDomainConfig.from_settings(s)
    except DanDomainError:
        logger.warning("DanDomain not configured, order lookups disabled")
        return None
    return DanDomainClient(config)
