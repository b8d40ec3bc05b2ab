from xml.etree.ElementTree import QName

import pytest

from wfscite.bindings import EncodedRequest, ProtocolBinding, encode_request
from wfscite.builder import add_resource_id_predicate, append_simple_query
from wfscite.kvp import transform_entity_to_kvp
from wfscite.xml import xmlns

from ..utils import NAMESPACES, NS1, parse_xml


@pytest.fixture()
def river_request(get_feature):
    append_simple_query(get_feature, QName(NS1, "River"))
    add_resource_id_predicate(get_feature, ["River.1"])
    return get_feature


def test_get(river_request):
    encoded = encode_request(river_request, ProtocolBinding.GET)
    assert encoded.method == "GET"
    assert encoded.body is None
    assert encoded.query_string == transform_entity_to_kvp(river_request)


def test_post(river_request):
    encoded = encode_request(river_request, ProtocolBinding.POST)
    assert encoded.method == "POST"
    assert encoded.content_type == "application/xml"
    assert encoded.query_string is None
    assert encoded.body.startswith('<?xml version="1.0" encoding="UTF-8"?>\n')

    root = parse_xml(encoded.body.split("\n", 1)[1])
    predicate = root.find("wfs:Query/fes:Filter/fes:ResourceId", NAMESPACES)
    assert predicate.get("rid") == "River.1"


@pytest.mark.parametrize(
    ("soap_version", "content_type", "namespace"),
    [
        ("1.1", "text/xml; charset=UTF-8", xmlns.soap11),
        ("1.2", "application/soap+xml; charset=UTF-8", xmlns.soap12),
        (None, "application/soap+xml; charset=UTF-8", xmlns.soap12),
    ],
)
def test_soap(river_request, soap_version, content_type, namespace):
    encoded = encode_request(river_request, ProtocolBinding.SOAP, soap_version=soap_version)
    assert encoded.method == "POST"
    assert encoded.content_type == content_type

    root = parse_xml(encoded.body.split("\n", 1)[1])
    assert root.tag == namespace.qname("Envelope")
    assert root[0][0].tag == xmlns.wfs20.qname("GetFeature")


def test_any(river_request, settings):
    assert encode_request(river_request, ProtocolBinding.ANY).binding is ProtocolBinding.GET

    settings.WFSCITE_DEFAULT_BINDING = "POST/XML"
    encoded = encode_request(river_request, ProtocolBinding.ANY)
    assert isinstance(encoded, EncodedRequest)
    assert encoded.binding is ProtocolBinding.POST


def test_binding_str():
    assert str(ProtocolBinding.SOAP) == "POST/SOAP"
    assert ProtocolBinding("GET/KVP") is ProtocolBinding.GET
