from zope.interface import Interface


class IWebShim(Interface):
    pass


class ICredentialStore(Interface):
    pass


class IAdminAPI(Interface):
    pass


class IHostSessionVerifier(Interface):
    pass


class IWebhookEndpoint(Interface):
    pass
