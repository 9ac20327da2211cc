"""
@NOTE: Resolution for shop name overloading.

shop_name: The name of the shop, used as a subdomain of myshopify.com
shop_host: The shopname and the correct top level domain: "{shop_name}.myshopify.com".
    This is also what we key stored shops by and what the host calls the shop domain.

@NOTE: Resolution for token overloading.

There are three different tokens flowing through an install and they are easy
to mix up:

auth (install token): Minted by us for a logged in host session, proves the
    install for one experience was asked for.  Lives a few minutes.
state: Opaque blob we give shopify on authorize and get back untouched on
    callback.  Carries the experience id, return url and creator.
access tokens: What shopify gives us, the admin token from the code exchange
    and the storefront token we create with the admin token.

@NOTE: Only the admin token is required for a shop to be connected.  The
storefront token and the uninstall webhook are attempted after it is saved
and a shop without them is degraded but usable.
"""
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import requests
from sqlalchemy.exc import SQLAlchemyError

from .interfaces import IWebShim, ICredentialStore, IAdminAPI, IHostSessionVerifier
from .admin_api import AdminAPIError
from .host_auth import ADMIN_ACCESS, extract_bearer_token
from .install_token import sign_install_token, verify_install_token
from .scopes import missing_scopes
from .signing import verify_callback_hmac
from .state import InvalidStateError, create_state, decode_state
from .storage.sqlalchemy_shim import ShopNotFoundError
from .util import normalize_shop_domain

logger = logging.getLogger(__name__)


@dataclass
class ShopLinkConfig:
    """
    Mechanism to provide configuration to ShopLinkService.
    """

    api_key: str
    api_secret: str
    # Signs install tokens, keep it different from api_secret.
    install_signing_secret: str
    # The shopify access scopes that our app needs, such as read_products, etc.
    access_scopes: tuple
    api_version: str = "2024-07"
    # Verifies session tokens from the embedding host, if None nobody can
    # manage a shop.
    host_session_secret: str = None
    # Skip install token checks, never honored in production.
    allow_dev_install: bool = False
    environment: str = "production"
    # Seconds before we give up on shopify.
    request_timeout: float = 10
    install_token_lifetime: int = 5 * 60
    jwt_leeway_in_seconds: int = 5


UPSTREAM_ERRORS = (requests.RequestException, AdminAPIError)


PRODUCTS_LIMIT_MAX = 250


@dataclass
class ShopLinkService:
    """
    Connect a shopify shop to a host experience and serve what the
    experience needs from it afterwards.
    """

    config: ShopLinkConfig
    web_shim: IWebShim
    store: ICredentialStore
    admin_api: IAdminAPI
    host_session_verifier: IHostSessionVerifier = None

    def dev_install_allowed(self):
        if not self.config.allow_dev_install:
            return False
        elif self.config.environment == "production":
            logger.warning("Dev install bypass is enabled in production, ignoring it.")
            return False
        return True

    def begin_install(self):
        """
        Check the install token and redirect to shopify to authorize our app.
        """
        params = self.web_shim.get_params(["shop", "experienceId", "auth", "returnUrl"])
        if not params["shop"] or not params["experienceId"]:
            return self.web_shim.response_bad_request("Missing required parameters")

        shop_host = normalize_shop_domain(params["shop"])
        if not shop_host:
            return self.web_shim.response_bad_request(
                f"Invalid shop domain: {params['shop']}. Must end with .myshopify.com"
            )

        experience_id = params["experienceId"]
        claims = verify_install_token(
            params["auth"], self.config.install_signing_secret, experience_id
        )
        if not claims:
            if not self.dev_install_allowed():
                logger.warning(
                    f"Unauthorized install for {shop_host} experience {experience_id}"
                )
                return self.web_shim.response_401()
            logger.warning(f"Dev install bypass used for {shop_host}")

        state = create_state(
            {
                "experienceId": experience_id,
                "returnUrl": params["returnUrl"],
                "creator": {"sub": claims.sub} if claims else None,
            }
        )
        logger.info(f"Install started for {shop_host} experience {experience_id}")
        return self.web_shim.redirect_302_url(self.build_authorize_url(shop_host, state))

    def build_authorize_url(self, shop_host, state):
        query_string = urlencode(
            sorted(
                {
                    "client_id": self.config.api_key,
                    # The scopes our app needs, like read_products, etc.
                    "scope": ",".join(self.config.access_scopes),
                    # This tells shopify where to send the callback with our grant code.
                    "redirect_uri": self.web_shim.get_auth_callback_url(),
                    "state": state,
                }.items()
            )
        )
        return f"https://{shop_host}/admin/oauth/authorize?{query_string}"

    def auth_callback(self):
        """
        Validate oauth callback, get access token, bind the experience then redirect.

        Nothing is written until the hmac checks out.  Once the admin token
        is saved the shop counts as connected, the storefront token and
        webhook after that are best effort.
        """
        params = self.web_shim.get_params()
        shop, code, state = params.get("shop"), params.get("code"), params.get("state")
        required = (shop, code, state, params.get("hmac"))
        if not all(value and isinstance(value, str) for value in required):
            logger.warning("Callback is missing params.")
            return self.web_shim.response_bad_request("Invalid callback params")

        shop_host = normalize_shop_domain(shop)
        if not shop_host:
            return self.web_shim.response_bad_request("Invalid callback params")

        if not verify_callback_hmac(self.config.api_secret, params):
            logger.warning(f"Callback HMAC did not match for {shop_host}")
            return self.web_shim.response_401("Invalid HMAC")

        # Decode before the code is spent, everything after depends on it.
        try:
            state_data = decode_state(state)
        except InvalidStateError as e:
            logger.warning(f"Bad state on callback for {shop_host}: {e}")
            return self.web_shim.response_bad_request("Invalid state parameter")
        experience_id = state_data.get("experienceId")
        creator = state_data.get("creator")

        try:
            token = self.admin_api.request_access_token(shop_host, code)
        except UPSTREAM_ERRORS as e:
            logger.error(f"Token exchange failed for {shop_host}: {e}")
            return self.web_shim.response_server_error(f"Token exchange failed: {e}")

        missing = missing_scopes(token.scopes, self.config.access_scopes)
        if missing:
            logger.warning(f"Shop {shop_host} did not grant scopes: {','.join(missing)}")

        try:
            self.store.save_shop(
                shop_host, admin_access_token=token.access_token, creator=creator
            )
        except SQLAlchemyError:
            logger.exception(f"Failed to save shop {shop_host}")
            return self.web_shim.response_server_error("Failed to save shop")

        self.provision_storefront_token(shop_host, token.access_token)
        self.register_uninstall_webhook(shop_host, token.access_token)

        if experience_id:
            try:
                self.store.save_experience_mapping(experience_id, shop_host, creator)
            except (ShopNotFoundError, SQLAlchemyError):
                logger.exception(f"Failed to bind experience {experience_id}")
                return self.web_shim.response_server_error("Failed to bind experience")

        logger.info(f"Install complete for {shop_host} experience {experience_id}")
        if state_data.get("returnUrl"):
            return self.web_shim.redirect_302_url(state_data["returnUrl"])
        return self.web_shim.response_json(
            {"ok": True, "shop": shop_host, "experienceId": experience_id}
        )

    def provision_storefront_token(self, shop_host, admin_access_token):
        """Best effort, returns the token or None."""
        try:
            storefront_access_token = self.admin_api.create_storefront_access_token(
                shop_host, admin_access_token
            )
            self.store.save_shop(
                shop_host,
                admin_access_token=admin_access_token,
                storefront_access_token=storefront_access_token,
            )
        except Exception as e:
            logger.warning(f"Storefront token creation failed for {shop_host}: {e}")
            return None
        return storefront_access_token

    def register_uninstall_webhook(self, shop_host, admin_access_token):
        """Best effort, a failure only means we won't hear about uninstalls."""
        try:
            self.admin_api.register_app_uninstalled_webhook(
                shop_host, admin_access_token, self.web_shim.get_webhook_url()
            )
        except Exception as e:
            logger.warning(f"Webhook registration failed for {shop_host}: {e}")
            return False
        return True

    """
    Host session utils
    """

    def get_input(self, name):
        """Look in the query string first and fall back to a json body."""
        value = self.web_shim.get_param(name)
        if value is None:
            body = self.web_shim.get_request_json_body()
            if isinstance(body, dict):
                value = body.get(name)
        return value

    def verify_host_session(self):
        if not self.host_session_verifier:
            return None
        token = extract_bearer_token(self.web_shim.get_header("Authorization"))
        return self.host_session_verifier.verify(token)

    def require_admin_session(self, experience_id):
        """
        Check the host session may manage `experience_id`.

        Returns a 2-tuple of (host_session, error_response).
        """
        host_session = self.verify_host_session()
        if not host_session:
            return None, self.web_shim.response_401()
        elif host_session.access_level(experience_id) != ADMIN_ACCESS:
            logger.info(f"User {host_session.sub} is not admin of {experience_id}")
            return None, self.web_shim.response_403()
        return host_session, None

    def start_install(self):
        """Mint an install token for a logged in admin and hand back the install url."""
        params = self.web_shim.get_params(["shop", "experienceId", "returnUrl"])
        if not params["shop"] or not params["experienceId"]:
            return self.web_shim.response_bad_request("Missing shop or experienceId")
        host_session, error_response = self.require_admin_session(
            params["experienceId"]
        )
        if error_response:
            return error_response

        install_params = {
            "shop": params["shop"],
            "experienceId": params["experienceId"],
            "auth": sign_install_token(
                self.config.install_signing_secret,
                host_session.sub,
                params["experienceId"],
                expires_in=self.config.install_token_lifetime,
            ),
        }
        if params["returnUrl"]:
            install_params["returnUrl"] = params["returnUrl"]
        return self.web_shim.response_json(
            {"installUrl": self.web_shim.get_install_url(install_params)}
        )

    """
    Experience scoped reads
    """

    def get_connected_shop(self):
        """
        Returns a 2-tuple of (shop_record, error_response).
        """
        experience_id = self.web_shim.get_param("experienceId")
        if not experience_id:
            return None, self.web_shim.response_bad_request("Missing experienceId")
        record = self.store.get_shop_by_experience(experience_id)
        if not record or not record.admin_access_token:
            return None, self.web_shim.response_not_found("Not connected")
        return record, None

    def get_shop_info(self):
        record, error_response = self.get_connected_shop()
        if error_response:
            return error_response
        try:
            shop_info = self.admin_api.fetch_shop_info(
                record.shop_domain, record.admin_access_token
            )
        except UPSTREAM_ERRORS as e:
            logger.error(f"Shop info fetch failed for {record.shop_domain}: {e}")
            return self.web_shim.response_bad_gateway(f"{e}")
        if not shop_info:
            return self.web_shim.response_not_found("Shop information not found")
        return self.web_shim.response_json(
            {"shopDomain": record.shop_domain, "name": record.name, "shopInfo": shop_info}
        )

    def get_products(self):
        first = self.web_shim.get_param("first")
        try:
            first = int(first) if first else 20
        except ValueError:
            return self.web_shim.response_bad_request("first must be a number")
        first = max(1, min(first, PRODUCTS_LIMIT_MAX))

        record, error_response = self.get_connected_shop()
        if error_response:
            return error_response
        try:
            products = self.admin_api.fetch_products(
                record.shop_domain, record.admin_access_token, first=first
            )
        except UPSTREAM_ERRORS as e:
            logger.error(f"Products fetch failed for {record.shop_domain}: {e}")
            return self.web_shim.response_bad_gateway(f"{e}")
        return self.web_shim.response_json(
            {"shopDomain": record.shop_domain, "products": products}
        )

    def get_storefront_config(self):
        record, error_response = self.get_connected_shop()
        if error_response:
            return error_response
        if not record.storefront_access_token:
            return self.web_shim.response_not_found("Not connected")
        return self.web_shim.response_json(
            {
                "shopDomain": record.shop_domain,
                "storefrontAccessToken": record.storefront_access_token,
            }
        )

    def create_cart(self):
        body = self.web_shim.get_request_json_body()
        lines = parse_cart_lines(body)
        if not lines or not isinstance(body.get("experienceId"), str):
            return self.web_shim.response_bad_request("Invalid body")
        record = self.store.get_shop_by_experience(body["experienceId"])
        if not record or not record.admin_access_token:
            return self.web_shim.response_not_found("Not connected")

        storefront_access_token = record.storefront_access_token
        if not storefront_access_token:
            # Shops installed while storefront creation failed get one now.
            try:
                storefront_access_token = (
                    self.admin_api.create_storefront_access_token(
                        record.shop_domain, record.admin_access_token
                    )
                )
            except UPSTREAM_ERRORS as e:
                logger.error(f"Storefront token backfill failed: {e}")
                return self.web_shim.response_bad_gateway(f"{e}")
            try:
                self.store.save_shop(
                    record.shop_domain,
                    admin_access_token=record.admin_access_token,
                    storefront_access_token=storefront_access_token,
                )
            except SQLAlchemyError:
                # The next cart makes another one.
                logger.exception(
                    f"Failed to save backfilled storefront token for {record.shop_domain}"
                )

        try:
            cart = self.admin_api.create_cart(
                record.shop_domain, storefront_access_token, lines
            )
        except UPSTREAM_ERRORS as e:
            logger.error(f"Cart create failed for {record.shop_domain}: {e}")
            return self.web_shim.response_bad_gateway(f"{e}")
        return self.web_shim.response_json(cart)

    """
    Experience scoped commands
    """

    def _run_shop_command(self, command, *args):
        experience_id = self.get_input("experienceId")
        if not experience_id:
            return self.web_shim.response_bad_request("Missing experienceId")
        _, error_response = self.require_admin_session(experience_id)
        if error_response:
            return error_response
        result = command(experience_id, *args)
        if not result["success"]:
            return self.web_shim.response_bad_request(result["message"])
        return self.web_shim.response_json(result)

    def disconnect_shop(self):
        return self._run_shop_command(self.store.disconnect_shop)

    def close_shop(self):
        return self._run_shop_command(self.store.soft_delete_shop)

    def update_shop_name(self):
        name = self.get_input("name")
        if not isinstance(name, str) or not name.strip():
            return self.web_shim.response_bad_request("Missing or empty name")
        return self._run_shop_command(self.store.update_shop_name, name.strip())


def parse_cart_lines(body):
    """Validate [{variantId, quantity?}], returns None if anything is off."""
    if not isinstance(body, dict):
        return None
    lines = body.get("lines")
    if not isinstance(lines, list) or not lines:
        return None
    parsed = []
    for line in lines:
        if not isinstance(line, dict):
            return None
        variant_id = line.get("variantId")
        quantity = line.get("quantity", 1)
        if not isinstance(variant_id, str) or not variant_id:
            return None
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            return None
        parsed.append({"variantId": variant_id, "quantity": quantity})
    return parsed
