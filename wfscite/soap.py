"""Wrapping requests in a SOAP envelope, for the POST/SOAP binding.

The request element becomes the payload of the SOAP body::

    <soap:Envelope xmlns:soap="http://www.w3.org/2003/05/soap-envelope">
      <soap:Body>
        <wfs:GetFeature service="WFS" version="2.0.0">...</wfs:GetFeature>
      </soap:Body>
    </soap:Envelope>
"""

from __future__ import annotations

import logging

from wfscite import conf
from wfscite.document import RequestDocument
from wfscite.xml import NSElement, XmlSource, xmlns

logger = logging.getLogger(__name__)

__all__ = ("wrap_entity_in_soap_envelope", "SOAP_NAMESPACES", "get_soap_namespace")

#: The envelope namespace for each supported SOAP version.
SOAP_NAMESPACES = {
    "1.1": xmlns.soap11,
    "1.2": xmlns.soap12,
}


def get_soap_namespace(soap_version: str | None = None) -> xmlns:
    """Tell which envelope namespace belongs to a SOAP version."""
    soap_version = soap_version or conf.WFSCITE_SOAP_VERSION
    try:
        return SOAP_NAMESPACES[soap_version]
    except KeyError:
        raise ValueError(
            f"Unsupported SOAP version: {soap_version!r}, "
            f"use one of: {', '.join(SOAP_NAMESPACES)}"
        ) from None


def wrap_entity_in_soap_envelope(
    source: XmlSource | RequestDocument | NSElement, soap_version: str | None = None
) -> RequestDocument:
    """Create a new document, holding the request inside a ``<soap:Envelope>``.

    :param source: The request. This is copied, so the source is not modified.
    :param soap_version: Either "1.1" or "1.2". The default is SOAP 1.2.
    """
    soap_ns = get_soap_namespace(soap_version)
    request = RequestDocument.from_source(source)

    envelope = NSElement(soap_ns.qname("Envelope"))
    body = NSElement(soap_ns.qname("Body"))
    body.append(request.root)
    envelope.append(body)

    logger.debug("Wrapping %s request in SOAP envelope %s", request.root.tag, soap_ns.value)
    return RequestDocument(envelope, {"soap": soap_ns.value, **request.ns_aliases})
