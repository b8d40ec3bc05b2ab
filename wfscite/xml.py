"""XML parsing for all request sources.

This logic uses the etree logic from the standard library,
with some extra extensions to expose the original namespace aliases.
Using defusedxml, malicious XML input (e.g. entity expansion) is refused.
"""

from __future__ import annotations

import logging
import typing
from enum import Enum
from os import PathLike
from xml.etree.ElementTree import Element, QName, TreeBuilder

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import DefusedXMLParser, ParseError

from wfscite.exceptions import ExternalParsingError

logger = logging.getLogger(__name__)

#: All input types that can be read as XML.
XmlSource = typing.Union[str, bytes, PathLike, typing.IO]

__all__ = (
    "xmlns",
    "NSElement",
    "copy_element",
    "parse_xml_from_string",
    "parse_xml_source",
    "parse_qname",
    "split_ns",
    "to_clark",
)


class xmlns(Enum):
    """Common namespaces within WFS land.
    Note these short aliases are arbitrary in XML syntax; the XML code may use any alias (such as ns0).
    The full qualified name (e.g. ``<{http://www.opengis.net/gml/3.2}Point>``) is the actual tag name.
    """

    # XML standard
    xml = "http://www.w3.org/XML/1998/namespace"
    xsd = "http://www.w3.org/2001/XMLSchema"
    xsi = "http://www.w3.org/2001/XMLSchema-instance"
    xlink = "http://www.w3.org/1999/xlink"

    # SOAP envelopes
    soap11 = "http://schemas.xmlsoap.org/soap/envelope/"
    soap12 = "http://www.w3.org/2003/05/soap-envelope"

    # APIs by the Open Geospatial Consortium (OGC)
    ows11 = "http://www.opengis.net/ows/1.1"
    wfs20 = "http://www.opengis.net/wfs/2.0"  # Web Feature Service (WFS)
    fes20 = "http://www.opengis.net/fes/2.0"  # Filter Encoding Standard (FES)
    gml32 = "http://www.opengis.net/gml/3.2"

    # Internal aliases
    ows = ows11  # alias to currently used version (WFS 2.0 uses OWS 1.1)
    wfs = wfs20
    fes = fes20
    gml = gml32  # alias to latest version
    soap = soap12  # the default SOAP version
    xs = xsd  # commonly used

    @classmethod
    def as_namespaces(cls) -> dict[str, str]:
        """Map the namespaces as {uri: alias}. This will use the common aliases (without version numbers)"""
        return {member.value: prefix for prefix, member in cls._member_map_.items()}

    def __str__(self):
        # Python 3.11+ has StrEnum for this.
        return self.value

    def qname(self, local_name) -> str:
        """Convert the tag name into a fully qualified name."""
        return f"{{{self.value}}}{local_name}"  # same as QName(..).text


class NSElement(Element):
    """Custom XML element, which also exposes its original namespace aliases.
    That information is needed to read text content and attributes in WFS
    that hold a QName value. For example:

    * ``<ValueReference>ns0:elementName</ValueReference>``
    * ``<Query typeNames="ns1:name">``

    Elements created by the request builder have no aliases of their own;
    their QName values are written with the prefixes of the owning
    :class:`~wfscite.document.RequestDocument`.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.ns_aliases = {}  # assigned by NSTreeBuilder, in {prefix: uri} format.

    @property
    def localname(self) -> str:
        return split_ns(self.tag)[1]

    def get_str_attribute(self, name: str) -> str:
        """Resolve an attribute, raise an error when it's missing."""
        try:
            return self.attrib[name]
        except KeyError:
            raise ExternalParsingError(
                f"Element {self.tag} misses required attribute '{name}'"
            ) from None

    if typing.TYPE_CHECKING:
        # Make sure the type checking knows the actual type of the elements.
        def find(self, path: str, namespaces: dict[str, str] | None = None) -> NSElement | None:
            return super().find(path, namespaces)

        def findall(self, path: str, namespaces: dict[str, str] | None = None) -> list[NSElement]:
            return super().findall(path, namespaces)

        def iter(self, tag: str | None = None) -> typing.Iterator[NSElement]:
            return super().iter(tag)

        def __iter__(self) -> typing.Iterator[NSElement]:
            return super().__iter__()


def copy_element(element: Element) -> NSElement:
    """Deep copy an element tree, keeping the namespace aliases.
    The C-accelerated ``copy.deepcopy()`` would return plain Element objects.
    """
    clone = NSElement(element.tag, dict(element.attrib))
    clone.text = element.text
    clone.tail = element.tail
    clone.ns_aliases = dict(getattr(element, "ns_aliases", {}))
    for child in element:
        clone.append(copy_element(child))
    return clone


def to_clark(name: QName | str) -> str:
    """Translate the various notations of a qualified name into ``{uri}local``."""
    if isinstance(name, QName):
        return name.text
    elif isinstance(name, str):
        return name
    else:
        raise TypeError(f"Expected QName or string, not {name.__class__.__name__}")


def parse_qname(qname: str | None, ns_aliases: dict) -> str | None:
    """Resolve the QName aliases.

    For example, ``gml:Point`` will be resolved to ``{http://www.opengis.net/gml/3.2}Point``.
    The XML namespace prefix is a custom alias, so if "ns0" is declared as "http://www.opengis.net/gml/3.2",
    it means "ns0:Point" should resolve to the same fully qualified type name.
    """
    if not qname:
        return None

    if "/" in qname:
        raise ExternalParsingError(f"Can't resolve QName '{qname}', this is an XPath notation.")

    prefix, _, localname = qname.rpartition(":")
    if not prefix and ("" not in ns_aliases or ns_aliases[""] == xmlns.wfs20.value):
        # In case a request uses <GetFeature xmlns="http://www.opengis.net/wfs/2.0">,
        # non-prefixed QName values will be interpreted as existing in "wfs" namespace. Avoid that.
        return localname

    try:
        uri = ns_aliases[prefix]
    except KeyError:
        logger.debug("Can't resolve QName '%s', available namespaces: %r", qname, ns_aliases)
        raise ExternalParsingError(
            f"Can't resolve QName '{qname}', an XML namespace declaration is missing."
        ) from None

    return QName(uri, localname).text


class NSTreeBuilder(TreeBuilder):
    """Custom TreeBuilder to track namespaces."""

    def __init__(self, **kwargs):
        super().__init__(element_factory=NSElement, **kwargs)
        # A new stack level is added directly, as start_ns() is called before start()
        self.ns_stack = [{}]

    def start(self, tag, attrs):
        element = super().start(tag, attrs)
        element.ns_aliases = self._flatten_ns()
        self.ns_stack.append({})  # reserve stack for child tags
        return element

    def start_ns(self, prefix, uri):
        self.ns_stack[-1][prefix] = uri

    def end(self, tag) -> Element:
        element = super().end(tag)
        self.ns_stack.pop()  # clear reservation for child tags
        self.ns_stack[-1] = {}  # declarations of this element no longer apply to siblings
        return element

    def _flatten_ns(self) -> dict:
        result = {}
        for level in self.ns_stack:
            result.update(level)
        return result


def parse_xml_from_string(xml_string: str | bytes) -> NSElement:
    """Provide a safe and consistent way for parsing XML.

    This uses a custom parser, so namespace aliases can be tracked.
    All elements also have an :attr:`ns_aliases` attribute that exposes
    the original alias that was used for the namespace.
    """
    # Passing a custom parser potentially circumvents defusedxml,
    # so note the parser is again configured in the same way:
    parser = DefusedXMLParser(
        target=NSTreeBuilder(),
        forbid_dtd=True,
        forbid_entities=True,
        forbid_external=True,
    )

    # Not allowing DTD, do a primitive strip, and allow parsing to fail if it was mangled.
    if isinstance(xml_string, str) and xml_string.startswith("<?"):
        xml_string = xml_string[xml_string.find("?>") + 2 :]

    try:
        parser.feed(xml_string)
        return parser.close()
    except (ParseError, DefusedXmlException) as e:
        # Offer consistent results for callers to check for invalid data.
        logger.debug("Parsing XML error: %s: %s", e, xml_string)
        raise ExternalParsingError(str(e)) from e


def parse_xml_source(source: XmlSource) -> NSElement:
    """Parse XML from the supported source types.

    This accepts XML text, a filesystem path or an open file object.
    A string is only treated as XML text; pass a :class:`~pathlib.Path` for files.
    """
    if isinstance(source, PathLike):
        with open(source, "rb") as f:
            return parse_xml_from_string(f.read())
    elif isinstance(source, (str, bytes)):
        return parse_xml_from_string(source)
    elif hasattr(source, "read"):
        return parse_xml_from_string(source.read())
    else:
        raise TypeError(f"Unsupported XML source: {source.__class__.__name__}")


def split_ns(xml_name: str) -> tuple[str | None, str]:
    """Split the element tag or attribute/text value into the namespace and
    local name. The stdlib etree doesn't have the properties for this (lxml does).
    """
    # Tags may start with a `{ns}`
    if xml_name.startswith("{"):
        end = xml_name.index("}")
        return xml_name[1:end], xml_name[end + 1 :]
    else:
        return None, xml_name
