"""Building WFS 2.0 request documents.

These functions create a request skeleton, and add the query expressions,
filter predicates and GML properties that the tests need.
For example:

.. code-block:: python

    document = create_request_entity("GetFeature")
    append_simple_query(document, QName("http://example.org/ns1", "River"))
    add_resource_id_predicate(document, {"River.1", "River.2"})

The namespace prefixes of all qualified names are registered
in the prefix table of the :class:`~wfscite.document.RequestDocument`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any
from xml.etree.ElementTree import QName

from wfscite import conf
from wfscite.document import RequestDocument
from wfscite.exceptions import MissingContainerElement
from wfscite.xml import NSElement, to_clark, xmlns

logger = logging.getLogger(__name__)

__all__ = (
    "create_request_entity",
    "append_simple_query",
    "append_stored_query",
    "new_resource_id_filter",
    "add_resource_id_predicate",
    "insert_gml_property",
    "set_presentation_parameters",
    "add_property_names",
    "add_sort_by",
    "GML_PROPERTY_ORDER",
)

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

# The operations that hold query expressions.
QUERY_CONTAINERS = tuple(
    xmlns.wfs20.qname(name)
    for name in ("GetFeature", "GetFeatureWithLock", "GetPropertyValue", "LockFeature")
)

#: The sequence of the GML properties, as defined by
#: gml:AbstractGMLType and gml:AbstractFeatureType.
#: Any feature-specific properties follow after these.
GML_PROPERTY_ORDER = tuple(
    xmlns.gml32.qname(name)
    for name in (
        "metaDataProperty",
        "description",
        "descriptionReference",
        "identifier",
        "name",
        "boundedBy",
        "location",
    )
)


def create_request_entity(operation: str, version: str | None = None) -> RequestDocument:
    """Create the skeleton of a request, e.g. ``<wfs:GetFeature service="WFS" version="2.0.0"/>``."""
    root = NSElement(
        xmlns.wfs20.qname(operation),
        {"service": "WFS", "version": version or conf.WFSCITE_SERVICE_VERSION},
    )
    return RequestDocument(root, {"wfs": xmlns.wfs20.value})


def _get_query_container(document: RequestDocument) -> NSElement:
    """Find the element that holds the query expressions."""
    try:
        return next(document.iterfind_tag(*QUERY_CONTAINERS))
    except StopIteration:
        raise MissingContainerElement(
            f"No element found to hold a query in request: {document.root.tag}"
        ) from None


def append_simple_query(document: RequestDocument, type_name: QName | str) -> NSElement:
    """Add a ``<wfs:Query typeNames="...">`` element for a single feature type."""
    container = _get_query_container(document)
    query = NSElement(WFS_QUERY, {"typeNames": document.to_qname(type_name)})
    container.append(query)
    return query


def append_stored_query(
    document: RequestDocument, query_id: str, parameters: Mapping[str, Any]
) -> NSElement:
    """Add a ``<wfs:StoredQuery>`` invocation.

    The parameters are written in the ordering of the mapping.
    Values can be given as :class:`~xml.etree.ElementTree.QName`,
    which are written in their ``prefix:localname`` notation.
    """
    container = _get_query_container(document)
    stored_query = NSElement(WFS_STORED_QUERY, {"id": query_id})
    for name, value in parameters.items():
        parameter = NSElement(WFS_PARAMETER, {"name": name})
        if isinstance(value, QName):
            parameter.text = document.to_qname(value)
        else:
            parameter.text = str(value)
        stored_query.append(parameter)

    container.append(stored_query)
    return stored_query


def new_resource_id_filter(identifier: str) -> NSElement:
    """Create a ``<fes:Filter>`` that selects a single resource by its identifier."""
    filter = NSElement(FES_FILTER)
    filter.append(NSElement(FES_RESOURCE_ID, {"rid": identifier}))
    return filter


def add_resource_id_predicate(document: RequestDocument, ids: Iterable[str]) -> NSElement | None:
    """Add a ``<fes:ResourceId>`` predicate for each identifier to the first query.

    Multiple predicates within the same filter match any of the identifiers.
    Nothing is changed when no identifiers are given.
    """
    ids = list(dict.fromkeys(ids))  # unique, keep the ordering
    if not ids:
        return None

    query = next(document.iterfind_tag(WFS_QUERY), None)
    if query is None:
        raise MissingContainerElement(
            f"No wfs:Query element found in request: {document.root.tag}"
        )

    filter = new_resource_id_filter(ids[0])
    for identifier in ids[1:]:
        filter.append(NSElement(FES_RESOURCE_ID, {"rid": identifier}))

    query.append(filter)
    return filter


def insert_gml_property(feature: NSElement, property: NSElement) -> NSElement:
    """Insert a GML property in a feature, following the ordering of the GML schema.

    An existing property with the same name is replaced in place.
    """
    for index, child in enumerate(feature):
        if child.tag == property.tag:
            property.tail = child.tail
            feature[index] = property
            return property

    try:
        rank = GML_PROPERTY_ORDER.index(property.tag)
    except ValueError:
        # Not a GML property, it belongs after all existing properties.
        feature.append(property)
        return property

    for index, child in enumerate(feature):
        if child.tag not in GML_PROPERTY_ORDER or GML_PROPERTY_ORDER.index(child.tag) > rank:
            logger.debug("Inserting %s before %s", property.tag, child.tag)
            property.tail = child.tail
            feature.insert(index, property)
            return property

    feature.append(property)
    return property


def set_presentation_parameters(
    document: RequestDocument,
    count: int | None = None,
    start_index: int | None = None,
    result_type: str | None = None,
    output_format: str | None = None,
):
    """Set the standard presentation parameters of a GetFeature/GetPropertyValue request."""
    root = document.root
    if count is not None:
        root.set("count", str(count))
    if start_index is not None:
        root.set("startIndex", str(start_index))
    if result_type is not None:
        if result_type not in ("results", "hits"):
            raise ValueError(f"Invalid resultType: {result_type}")
        root.set("resultType", result_type)
    if output_format is not None:
        root.set("outputFormat", output_format)


def add_property_names(document: RequestDocument, query: NSElement, names: Iterable[QName | str]):
    """Limit the properties of the returned features (the projection clause)."""
    # The projection clause comes before any <fes:Filter> or <fes:SortBy>.
    index = next(
        (i for i, child in enumerate(query) if child.tag in (FES_FILTER, FES_SORT_BY)),
        len(query),
    )
    for name in names:
        element = NSElement(WFS_PROPERTY_NAME)
        element.text = document.to_qname(name)
        query.insert(index, element)
        index += 1


def add_sort_by(
    document: RequestDocument, query: NSElement, properties: Iterable[tuple[QName | str, str]]
) -> NSElement:
    """Add a ``<fes:SortBy>`` clause, for a list of ``(name, "ASC"|"DESC")`` pairs."""
    sort_by = NSElement(FES_SORT_BY)
    for name, order in properties:
        order = order.upper()
        if order not in ("ASC", "DESC"):
            raise ValueError(f"Invalid sort order for {to_clark(name)}: {order}")

        sort_property = NSElement(FES_SORT_PROPERTY)
        value_reference = NSElement(FES_VALUE_REFERENCE)
        value_reference.text = document.to_qname(name)
        sort_order = NSElement(FES_SORT_ORDER)
        sort_order.text = order
        sort_property.extend((value_reference, sort_order))
        sort_by.append(sort_property)

    query.append(sort_by)
    return sort_by
