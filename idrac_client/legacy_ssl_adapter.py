"""
Legacy TLS Adapter for iDRAC 7/8
================================

iDRAC 7/8 firmware (1.x/2.x) only negotiates TLSv1.0/TLSv1.1 with old cipher
suites, which current OpenSSL builds refuse by default. Mounting this adapter
on the client's requests.Session re-enables them for that one connection.

Usage:
    from idrac_client.legacy_ssl_adapter import LegacySSLAdapter

    session = requests.Session()
    session.mount('https://', LegacySSLAdapter(verify_ssl=False))
"""

import ssl

from requests.adapters import HTTPAdapter
from urllib3.util.ssl_ import create_urllib3_context


class LegacySSLAdapter(HTTPAdapter):
    """
    HTTPAdapter that accepts the TLS settings of older iDRAC generations.

    - minimum protocol TLSv1.0
    - SECLEVEL=1 cipher list
    - legacy (unsafe) renegotiation
    """

    def __init__(self, verify_ssl: bool = False, *args, **kwargs):
        self.verify_ssl = verify_ssl
        self.ssl_context = self._create_legacy_context()
        super().__init__(*args, **kwargs)

    def _create_legacy_context(self) -> ssl.SSLContext:
        ctx = create_urllib3_context()

        # OP_LEGACY_SERVER_CONNECT, missing as a named constant on some builds
        ctx.options |= getattr(ssl, "OP_LEGACY_SERVER_CONNECT", 0x4)

        # TLSv1 is deprecated but it is all iDRAC 7 speaks
        ctx.minimum_version = ssl.TLSVersion.TLSv1

        if not self.verify_ssl:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE

        try:
            ctx.set_ciphers("DEFAULT:@SECLEVEL=1")
        except ssl.SSLError:
            ctx.set_ciphers("DEFAULT")

        return ctx

    def init_poolmanager(self, *args, **kwargs):
        kwargs["ssl_context"] = self.ssl_context
        return super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        proxy_kwargs["ssl_context"] = self.ssl_context
        return super().proxy_manager_for(proxy, **proxy_kwargs)
