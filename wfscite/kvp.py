"""Writing requests in the Key-Value-Pair (KVP) format.

This translates the XML request into the parameters of an HTTP GET request,
following the XML-to-KVP mapping of the WFS 2.0 standard (09-025r2, clause 6 and 7).
For example:

.. code-block:: xml

    <wfs:GetFeature service="WFS" version="2.0.0" count="10">
      <wfs:Query typeNames="tns:River"/>
      <wfs:Query typeNames="tns:Lake"/>
    </wfs:GetFeature>

becomes:

.. code-block:: urlencoded

    request=GetFeature&service=WFS&version=2.0.0&count=10
    &typenames=tns:River,tns:Lake&namespaces=xmlns(tns,http://example.org/ns1)

Parameters of multiple queries use the parenthesis notation, e.g. ``FILTER=(...)(...)``.
Filters that can't be expressed as a ``RESOURCEID`` parameter
are included as percent-encoded XML.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from wfscite.document import RequestDocument
from wfscite.exceptions import KVPMappingNotSupported
from wfscite.xml import NSElement, XmlSource, copy_element, parse_qname, split_ns, xmlns

logger = logging.getLogger(__name__)

__all__ = ("transform_entity_to_kvp", "KVPEncoder")

# Characters that the KVP syntax allows to be used literally.
SAFE_CHARS = ":,()/"

# Fully qualified tag names
WFS_QUERY = xmlns.wfs20.qname("Query")
WFS_STORED_QUERY = xmlns.wfs20.qname("StoredQuery")
WFS_PARAMETER = xmlns.wfs20.qname("Parameter")
WFS_PROPERTY_NAME = xmlns.wfs20.qname("PropertyName")
FES_FILTER = xmlns.fes20.qname("Filter")
FES_RESOURCE_ID = xmlns.fes20.qname("ResourceId")
FES_SORT_BY = xmlns.fes20.qname("SortBy")
FES_SORT_PROPERTY = xmlns.fes20.qname("SortProperty")
FES_VALUE_REFERENCE = xmlns.fes20.qname("ValueReference")
FES_SORT_ORDER = xmlns.fes20.qname("SortOrder")

# Child elements of the request that are written as a comma-separated list.
LIST_ELEMENTS = {
    xmlns.ows11.qname("AcceptVersions"): ("acceptversions", xmlns.ows11.qname("Version")),
    xmlns.ows11.qname("Sections"): ("sections", xmlns.ows11.qname("Section")),
    xmlns.ows11.qname("AcceptFormats"): ("acceptformats", xmlns.ows11.qname("OutputFormat")),
}

# Attributes of <wfs:Query> that have a KVP equivalent.
QUERY_ATTRIBUTES = ("srsName", "aliases", "featureVersion")

# Operations that can only be sent as XML.
XML_ONLY_OPERATIONS = ("Transaction", "CreateStoredQuery")


def transform_entity_to_kvp(source: XmlSource | RequestDocument | NSElement) -> str:
    """Translate an XML request into the equivalent KVP query string.
    The source is not modified.
    """
    document = RequestDocument.from_source(source)
    return KVPEncoder(document).encode()


class KVPEncoder:
    """Collect the KVP parameters of a single request document.

    All values are stored in their percent-encoded form,
    so the separators of the KVP notation can be added literally.
    """

    def __init__(self, document: RequestDocument):
        self.document = document
        self.params: dict[str, str] = {}
        self.used_namespaces: dict[str, str] = {}  # {uri: prefix}

    def encode(self) -> str:
        root = self.document.root
        operation = root.localname
        if operation in XML_ONLY_OPERATIONS:
            raise KVPMappingNotSupported(
                f"The {operation} request has no KVP encoding.", locator="request"
            )

        self.params["request"] = quote(operation, safe=SAFE_CHARS)
        self._encode_root_attributes(root)

        queries = []
        stored_queries = []
        for child in root:
            if child.tag in LIST_ELEMENTS:
                key, item_tag = LIST_ELEMENTS[child.tag]
                items = [_text(item) for item in child.iter(item_tag)]
                self.add_param(key, ",".join(quote(item, safe="") for item in items))
            elif child.tag == xmlns.wfs20.qname("TypeName"):
                self.add_param("typenames", self.qname_value(child, _text(child)))
            elif child.tag == xmlns.wfs20.qname("StoredQueryId"):
                self.add_param("storedquery_id", quote(_text(child), safe=SAFE_CHARS))
            elif child.tag == WFS_QUERY:
                queries.append(child)
            elif child.tag == WFS_STORED_QUERY:
                stored_queries.append(child)
            else:
                raise KVPMappingNotSupported(
                    f"Element {child.tag} has no KVP encoding.", locator=child.localname
                )

        if stored_queries:
            if queries or len(stored_queries) > 1:
                raise KVPMappingNotSupported(
                    "The KVP encoding only supports a single stored query.",
                    locator="STOREDQUERY_ID",
                )
            self._encode_stored_query(stored_queries[0])
        elif queries:
            self._encode_queries(queries)

        if self.used_namespaces:
            self.params["namespaces"] = ",".join(
                f"xmlns({prefix},{quote(uri, safe=':/')})"
                for uri, prefix in self.used_namespaces.items()
            )

        kvp = "&".join(f"{key}={value}" for key, value in self.params.items())
        logger.debug("Translated %s request into KVP: %s", operation, kvp)
        return kvp

    def add_param(self, key: str, value: str):
        """Add a parameter, values of repeated keys become a comma-separated list."""
        if key in self.params:
            self.params[key] = f"{self.params[key]},{value}"
        else:
            self.params[key] = value

    def qname_value(self, element: NSElement, value: str) -> str:
        """Write a QName value (or simple XPath) with the prefixes of the document.
        The namespace is registered for the ``NAMESPACES`` parameter.
        """
        ns_aliases = {**self.document.ns_aliases, **element.ns_aliases}
        steps = []
        for step in value.strip().split("/"):
            is_attribute = step.startswith("@")
            name = step[1:] if is_attribute else step
            if not name or "[" in name or "(" in name:
                # Predicates and functions are passed as-is.
                steps.append(step)
                continue

            ns, localname = split_ns(parse_qname(name, ns_aliases))
            if ns is not None:
                prefix = self.document.get_prefix(ns)
                self.used_namespaces.setdefault(ns, prefix)
                name = f"{prefix}:{localname}"
            steps.append(f"@{name}" if is_attribute else name)

        return quote("/".join(steps), safe=SAFE_CHARS)

    def xml_value(self, element: NSElement) -> str:
        """Write an XML fragment as percent-encoded parameter value.
        This is the fallback for all elements that don't have a KVP notation of their own.
        """
        fragment = copy_element(element)
        for node in fragment.iter():
            # Drop the indentation whitespace
            if node.text is not None and not node.text.strip():
                node.text = None
            if node.tail is not None and not node.tail.strip():
                node.tail = None
        fragment.tail = None
        return quote(self.document.tostring(fragment), safe="")

    def _encode_root_attributes(self, root: NSElement):
        for name, value in root.attrib.items():
            if name == "handle" or split_ns(name)[0] is not None:
                # No KVP equivalent for the handle, or xsi:schemaLocation
                continue
            elif name == "valueReference":
                self.params["valuereference"] = self.qname_value(root, value)
            elif name == "id" and root.localname == "DropStoredQuery":
                self.params["storedquery_id"] = quote(value, safe=SAFE_CHARS)
            else:
                self.params[name.lower()] = quote(value, safe=SAFE_CHARS)

    def _encode_queries(self, queries: list[NSElement]):
        """Write the parameters of ``<wfs:Query>`` elements.
        Multiple queries use the parenthesis notation, e.g. ``TYPENAMES=(A,B)(C)``.
        Only a plain list of single types is written as ``TYPENAMES=A,B``.
        """
        query_params = [self._get_query_params(query) for query in queries]
        if len(query_params) == 1:
            self.params.update(query_params[0])
            return

        keys = list(dict.fromkeys(key for params in query_params for key in params))
        for key in keys:
            values = [params.get(key) for params in query_params]
            if keys == ["typenames"] and not any("," in value for value in values):
                # Multiple queries of a single type, nothing else: TYPENAMES=A,B
                # Otherwise the types are paired with the other parameters: TYPENAMES=(A)(B)
                self.params[key] = ",".join(values)
            elif None in values:
                raise KVPMappingNotSupported(
                    f"The KVP encoding requires a '{key}' value for each query.",
                    locator=key,
                )
            else:
                self.params[key] = "".join(f"({value})" for value in values)

    def _get_query_params(self, query: NSElement) -> dict[str, str]:
        params = {
            "typenames": ",".join(
                self.qname_value(query, type_name)
                for type_name in query.get_str_attribute("typeNames").split()
            )
        }
        for name in QUERY_ATTRIBUTES:
            value = query.get(name)
            if value is not None:
                # XML lists are whitespace separated, KVP lists are comma separated
                params[name.lower()] = ",".join(
                    quote(item, safe=SAFE_CHARS) for item in value.split()
                )

        for child in query:
            if child.tag == WFS_PROPERTY_NAME:
                value = self.qname_value(child, _text(child))
                if "propertyname" in params:
                    params["propertyname"] += f",{value}"
                else:
                    params["propertyname"] = value
            elif child.tag == FES_FILTER:
                if _is_resource_id_filter(child):
                    params["resourceid"] = ",".join(
                        quote(predicate.get("rid"), safe="") for predicate in child
                    )
                else:
                    params["filter"] = self.xml_value(child)
            elif child.tag == FES_SORT_BY:
                params["sortby"] = self._get_sort_by(child)
            else:
                raise KVPMappingNotSupported(
                    f"Element {child.tag} has no KVP encoding.", locator=child.localname
                )
        return params

    def _get_sort_by(self, sort_by: NSElement) -> str:
        """Write the ``<fes:SortBy>`` as ``SORTBY=name ASC,name2 DESC``."""
        items = []
        for sort_property in sort_by.iter(FES_SORT_PROPERTY):
            value_reference = sort_property.find(FES_VALUE_REFERENCE)
            if value_reference is None:
                raise KVPMappingNotSupported(
                    "SortProperty misses a ValueReference.", locator="sortby"
                )
            item = self.qname_value(value_reference, _text(value_reference))
            order = sort_property.findtext(FES_SORT_ORDER)
            if order and order.strip():
                item = f"{item}%20{order.strip().upper()}"
            items.append(item)
        return ",".join(items)

    def _encode_stored_query(self, stored_query: NSElement):
        """Write the stored query as ``STOREDQUERY_ID=...&{name}={value}``."""
        self.params["storedquery_id"] = quote(
            stored_query.get_str_attribute("id"), safe=SAFE_CHARS
        )
        for parameter in stored_query.iter(WFS_PARAMETER):
            name = parameter.get_str_attribute("name")
            if len(parameter):
                # e.g. a <gml:Envelope> as parameter value.
                value = "".join(self.xml_value(child) for child in parameter)
            else:
                value = self._get_parameter_text(parameter)
            self.params[name] = value

    def _get_parameter_text(self, parameter: NSElement) -> str:
        value = _text(parameter)
        prefix, sep, localname = value.partition(":")
        ns_aliases = {**self.document.ns_aliases, **parameter.ns_aliases}
        if sep and prefix in ns_aliases and localname.isidentifier():
            # A QName value, e.g. for the typeName parameter of GetFeatureByType
            return self.qname_value(parameter, value)
        else:
            return quote(value, safe=SAFE_CHARS)


def _text(element: NSElement) -> str:
    return (element.text or "").strip()


def _is_resource_id_filter(filter: NSElement) -> bool:
    """Tell whether the filter can be written as ``RESOURCEID=id1,id2``.
    Version selection attributes don't have a KVP equivalent.
    """
    return len(filter) > 0 and all(
        predicate.tag == FES_RESOURCE_ID and set(predicate.attrib) == {"rid"}
        for predicate in filter
    )
