"""
Calls we make against a shop: the oauth token exchange, Admin GraphQL and
Storefront GraphQL.

Each call is one shot with a bounded timeout, nothing here retries.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import requests
import zope.interface

from .interfaces import IAdminAPI
from .scopes import parse_scopes

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_IN_SECONDS = 10


# Shopify has no error code for this, only the message.
DUPLICATE_SUBSCRIPTION_MESSAGE = "address for this topic has already been taken"


APP_UNINSTALLED_TOPIC = "APP_UNINSTALLED"


class AdminAPIError(Exception):
    """The shop answered, but not with what we asked for."""

    def __init__(self, message, user_errors=None, status_code=None):
        super().__init__(message)
        self.user_errors = user_errors or []
        self.status_code = status_code


@dataclass
class AccessTokenResponse:
    access_token: str
    # The granted scopes.
    scopes: list
    # Whatever else came back, ie. associated_user for online tokens.
    extra: dict = field(default_factory=dict)


def join_user_errors(user_errors):
    return ", ".join(e.get("message") or "" for e in user_errors)


def is_duplicate_subscription(user_errors):
    return any(
        DUPLICATE_SUBSCRIPTION_MESSAGE in (e.get("message") or "").lower()
        for e in user_errors
    )


CREATE_STOREFRONT_TOKEN_MUTATION = """
mutation CreateSfToken($input: StorefrontAccessTokenInput!) {
  storefrontAccessTokenCreate(input: $input) {
    storefrontAccessToken { accessToken title }
    userErrors { message field }
  }
}
"""


REGISTER_WEBHOOK_MUTATION = """
mutation RegisterWebhook($topic: WebhookSubscriptionTopic!, $sub: WebhookSubscriptionInput!) {
  webhookSubscriptionCreate(topic: $topic, webhookSubscription: $sub) {
    webhookSubscription { id }
    userErrors { message field }
  }
}
"""


PRODUCTS_QUERY = """
query Products($first: Int!) {
  products(first: $first, sortKey: TITLE) {
    nodes {
      id
      title
      handle
      featuredImage { url }
      variants(first: 1) { nodes { id price } }
    }
  }
}
"""


SHOP_INFO_QUERY = """
query ShopInfo {
  shop {
    id
    name
    email
    myshopifyDomain
    currencyCode
    ianaTimezone
    plan { displayName partnerDevelopment shopifyPlus }
    primaryDomain { host sslEnabled url }
  }
}
"""


CART_CREATE_MUTATION = """
mutation CartCreate($input: CartInput) {
  cartCreate(input: $input) {
    cart { id checkoutUrl }
    userErrors { message field }
  }
}
"""


@zope.interface.implementer(IAdminAPI)
@dataclass
class AdminAPIService:
    """Helps with interacting with a shop's admin and storefront apis."""

    api_key: str
    api_secret: str
    api_version: str = "2024-07"
    timeout: float = DEFAULT_TIMEOUT_IN_SECONDS
    # The title given to storefront tokens we create, a timestamp is appended.
    storefront_token_title: str = "shoplink"
    utcnow: callable = field(default=lambda: datetime.now(timezone.utc))

    admin_api_url: str = "https://{shop_host}/admin/api/{api_version}/graphql.json"

    storefront_api_url: str = "https://{shop_host}/api/{api_version}/graphql.json"

    def request_access_token(self, shop_host, grant_code):
        """
        Use grant code from shopify to fetch the access token using a post request.

        raise:
            requests.HTTPError if shopify doesn't answer with 2xx.
        """
        response = requests.post(
            f"https://{shop_host}/admin/oauth/access_token",
            json={
                "client_id": self.api_key,
                "client_secret": self.api_secret,
                "code": grant_code,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        json_payload = response.json()
        if not json_payload.get("access_token"):
            raise AdminAPIError("Token exchange returned no access token.")
        extra = {
            k: v for k, v in json_payload.items() if k not in ("access_token", "scope")
        }
        return AccessTokenResponse(
            access_token=json_payload["access_token"],
            scopes=parse_scopes(json_payload.get("scope")),
            extra=extra,
        )

    def _post_graphql(self, url, headers, query, variables, label):
        payload = {"query": query}
        if variables:
            payload["variables"] = variables
        response = requests.post(
            url,
            json=payload,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                **headers,
            },
            timeout=self.timeout,
        )
        if not response.ok:
            raise AdminAPIError(
                f"Shopify {label} GraphQL HTTP {response.status_code}: "
                f"{response.text or response.reason}",
                status_code=response.status_code,
            )
        body = response.json()
        if body.get("errors"):
            messages = "; ".join(e.get("message", "") for e in body["errors"])
            raise AdminAPIError(f"Shopify {label} GraphQL errors: {messages}")
        return body.get("data") or {}

    def execute_graphql(self, shop_host, access_token, query, variables=None):
        """
        Run a query against the admin api.

        return:
            The `data` of the response.

        raise:
            AdminAPIError if the response is not ok or carries `errors`.
        """
        url = self.admin_api_url.format(
            shop_host=shop_host, api_version=self.api_version
        )
        return self._post_graphql(
            url, {"X-Shopify-Access-Token": access_token}, query, variables, "Admin"
        )

    def execute_storefront_graphql(
        self, shop_host, storefront_access_token, query, variables=None
    ):
        url = self.storefront_api_url.format(
            shop_host=shop_host, api_version=self.api_version
        )
        return self._post_graphql(
            url,
            {"X-Shopify-Storefront-Access-Token": storefront_access_token},
            query,
            variables,
            "Storefront",
        )

    def create_storefront_access_token(self, shop_host, admin_access_token):
        title = f"{self.storefront_token_title} {self.utcnow().isoformat()}"
        data = self.execute_graphql(
            shop_host,
            admin_access_token,
            CREATE_STOREFRONT_TOKEN_MUTATION,
            {"input": {"title": title}},
        )
        payload = data.get("storefrontAccessTokenCreate")
        if not payload:
            raise AdminAPIError("storefrontAccessTokenCreate error: no payload")
        user_errors = payload.get("userErrors") or []
        if user_errors:
            raise AdminAPIError(
                f"storefrontAccessTokenCreate error: {join_user_errors(user_errors)}",
                user_errors=user_errors,
            )
        if not payload.get("storefrontAccessToken"):
            raise AdminAPIError("No storefront access token returned")
        return payload["storefrontAccessToken"]["accessToken"]

    def register_app_uninstalled_webhook(
        self, shop_host, admin_access_token, callback_url
    ):
        """Subscribe to APP_UNINSTALLED, returns the subscription id.

        Registering the same address twice is fine, we get None back then.
        """
        data = self.execute_graphql(
            shop_host,
            admin_access_token,
            REGISTER_WEBHOOK_MUTATION,
            {
                "topic": APP_UNINSTALLED_TOPIC,
                "sub": {"callbackUrl": callback_url, "format": "JSON"},
            },
        )
        payload = data.get("webhookSubscriptionCreate")
        if not payload:
            raise AdminAPIError("webhookSubscriptionCreate error: no payload")
        user_errors = payload.get("userErrors") or []
        subscription = payload.get("webhookSubscription") or {}
        if user_errors:
            if is_duplicate_subscription(user_errors):
                logger.info(f"Webhook already registered for {shop_host}.")
                return subscription.get("id")
            raise AdminAPIError(
                f"webhookSubscriptionCreate error: {join_user_errors(user_errors)}",
                user_errors=user_errors,
            )
        return subscription.get("id")

    def fetch_products(self, shop_host, admin_access_token, first=20):
        data = self.execute_graphql(
            shop_host, admin_access_token, PRODUCTS_QUERY, {"first": first}
        )
        nodes = ((data.get("products") or {}).get("nodes")) or []
        products = []
        for node in nodes:
            variants = (node.get("variants") or {}).get("nodes") or []
            first_variant = variants[0] if variants else {}
            products.append(
                {
                    "id": node.get("id"),
                    "title": node.get("title"),
                    "handle": node.get("handle"),
                    "imageUrl": (node.get("featuredImage") or {}).get("url"),
                    "price": first_variant.get("price"),
                    "variantId": first_variant.get("id"),
                }
            )
        return products

    def fetch_shop_info(self, shop_host, admin_access_token):
        return self.execute_graphql(shop_host, admin_access_token, SHOP_INFO_QUERY).get(
            "shop"
        )

    def create_cart(self, shop_host, storefront_access_token, lines):
        """Create a cart from [{variantId, quantity?}] and return its checkout url."""
        data = self.execute_storefront_graphql(
            shop_host,
            storefront_access_token,
            CART_CREATE_MUTATION,
            {
                "input": {
                    "lines": [
                        {
                            "merchandiseId": line["variantId"],
                            "quantity": line.get("quantity") or 1,
                        }
                        for line in lines
                    ]
                }
            },
        )
        payload = data.get("cartCreate")
        if not payload:
            raise AdminAPIError("cartCreate error: no payload")
        user_errors = payload.get("userErrors") or []
        if user_errors:
            raise AdminAPIError(
                f"cartCreate error: {join_user_errors(user_errors)}",
                user_errors=user_errors,
            )
        cart = payload.get("cart") or {}
        if not cart.get("checkoutUrl") or not cart.get("id"):
            raise AdminAPIError("cartCreate error: missing checkoutUrl or id")
        return {"checkoutUrl": cart["checkoutUrl"], "cartId": cart["id"]}
