import logging
from dataclasses import dataclass, field

import zope.interface
from sqlalchemy.exc import SQLAlchemyError

from .signing import verify_webhook_hmac
from .interfaces import IWebShim, ICredentialStore, IWebhookEndpoint


logger = logging.getLogger(__name__)


HMAC_HEADER = "X-Shopify-Hmac-SHA256"


SHOP_DOMAIN_HEADER = "X-Shopify-Shop-Domain"


@zope.interface.implementer(IWebhookEndpoint)
@dataclass
class WebhookEndpointService:
    """
    Receive the app uninstalled webhook from shopify.

    @NOTE: Shopify only looks at the status code, the body is just for humans.
    @NOTE: The shop is soft deleted, its tokens stay in the row for audit
        and a reinstall revives it.
    """

    web_shim: IWebShim

    store: ICredentialStore

    api_secret: str

    logger: object = field(default=logger)

    def process_app_uninstalled(self):
        # Signature is over the exact bytes, never over re-serialized json.
        verified = verify_webhook_hmac(
            self.api_secret,
            self.web_shim.get_request_body(),
            self.web_shim.get_header(HMAC_HEADER),
        )
        if not verified:
            self.logger.warning("Webhook HMAC did not match.")
            return self.web_shim.response_text("invalid hmac", status=401)

        # The shop isn't covered by the hmac, it comes from a header.
        shop_host = self.web_shim.get_header(SHOP_DOMAIN_HEADER)
        if not shop_host:
            self.logger.warning("App uninstalled webhook without a shop domain.")
            return self.web_shim.response_text("ok")
        try:
            deleted = self.store.soft_delete_shop_by_domain(shop_host.strip().lower())
        except SQLAlchemyError:
            self.logger.exception(f"Failed to deprovision {shop_host}")
            return self.web_shim.response_text("error", status=500)
        if deleted:
            self.logger.info(f"App uninstalled, shop {shop_host} deprovisioned.")
        else:
            self.logger.info(f"App uninstalled for unknown or closed shop {shop_host}.")
        return self.web_shim.response_text("ok")
