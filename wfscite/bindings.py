"""Encoding a request for the protocol binding that submits it.

The HTTP client is not part of this package; it receives the
:class:`EncodedRequest` and performs the actual GET or POST call.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from wfscite import conf
from wfscite.document import RequestDocument
from wfscite.kvp import transform_entity_to_kvp
from wfscite.soap import get_soap_namespace, wrap_entity_in_soap_envelope
from wfscite.xml import xmlns

__all__ = ("ProtocolBinding", "EncodedRequest", "encode_request")


class ProtocolBinding(Enum):
    """The wire-encoding/transport combination to submit a request with."""

    GET = "GET/KVP"
    POST = "POST/XML"
    SOAP = "POST/SOAP"
    ANY = "ANY"

    def __str__(self):
        # Python 3.11+ has StrEnum for this.
        return self.value

    @property
    def method(self) -> str:
        return self.value.partition("/")[0]


@dataclass(frozen=True)
class EncodedRequest:
    """The request, ready for submission by an HTTP client."""

    binding: ProtocolBinding
    content_type: str | None
    body: str | None = None
    query_string: str | None = None

    @property
    def method(self) -> str:
        return self.binding.method


def encode_request(
    document: RequestDocument, binding: ProtocolBinding, soap_version: str | None = None
) -> EncodedRequest:
    """Serialize the request document for the given binding."""
    if binding is ProtocolBinding.ANY:
        binding = ProtocolBinding(conf.WFSCITE_DEFAULT_BINDING)

    if binding is ProtocolBinding.GET:
        return EncodedRequest(binding, None, query_string=transform_entity_to_kvp(document))
    elif binding is ProtocolBinding.POST:
        return EncodedRequest(
            binding, "application/xml", body=document.tostring(xml_declaration=True)
        )
    elif binding is ProtocolBinding.SOAP:
        envelope = wrap_entity_in_soap_envelope(document, soap_version)
        if get_soap_namespace(soap_version) is xmlns.soap11:
            content_type = "text/xml; charset=UTF-8"
        else:
            content_type = "application/soap+xml; charset=UTF-8"
        return EncodedRequest(
            binding, content_type, body=envelope.tostring(xml_declaration=True)
        )
    else:
        raise ValueError(f"Unsupported protocol binding: {binding}")
