"""The request document model.

A :class:`RequestDocument` owns an element tree and the prefix table
that is used to write its qualified names. The tree follows the ElementTree model:
each element owns its children, and parents are only found by lookup.
"""

from __future__ import annotations

import logging
import re
import typing
from copy import copy
from xml.etree.ElementTree import QName

from wfscite import conf
from wfscite.xml import NSElement, XmlSource, copy_element, parse_xml_source, split_ns, to_clark, xmlns

logger = logging.getLogger(__name__)

__all__ = (
    "RequestDocument",
    "attr_escape",
    "tag_escape",
)

COMMON_NAMESPACES = xmlns.as_namespaces()

# Text content or attribute values that look like a prefixed QName (e.g. "tns:Alpha").
RE_QNAME_PREFIX = re.compile(r"(?:^|[\s,(])([A-Za-z_][\w.-]*):[A-Za-z_]")


def tag_escape(s: str):
    """Escape a value for usage in XML text."""
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def attr_escape(s: str):
    """Escape a value for usage in an XML attribute.
    This is slightly faster than ``html.escape()`` as it doesn't replace single quotes.
    """
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("\n", "&#10;")
        .replace("\r", "&#13;")
        .replace("\t", "&#9;")
    )


class RequestDocument:
    """A mutable request document, with an explicit namespace prefix table.

    Each namespace is bound to exactly one prefix. The table is filled
    when the document is parsed, and extended by :meth:`get_prefix`
    whenever a builder function needs a new namespace.
    """

    def __init__(self, root: NSElement, ns_aliases: dict[str, str] | None = None):
        self.root = root
        self.ns_aliases: dict[str, str] = {}  # {prefix: uri}
        for prefix, uri in (ns_aliases or {}).items():
            self.bind_prefix(prefix, uri)

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.root.tag}>"

    @classmethod
    def from_source(cls, source: XmlSource | RequestDocument | NSElement) -> RequestDocument:
        """Read a document from any of the supported XML sources.
        Existing documents and elements are copied, so the caller's tree is never changed.
        """
        if isinstance(source, RequestDocument):
            return cls(copy_element(source.root), source.ns_aliases)
        elif isinstance(source, NSElement):
            root = copy_element(source)
        else:
            root = parse_xml_source(source)

        document = cls(root)
        for element in root.iter():
            for prefix, uri in element.ns_aliases.items():
                if prefix and uri not in document.namespaces:
                    document.bind_prefix(prefix, uri)
        return document

    @property
    def namespaces(self) -> dict[str, str]:
        """The prefix table in {uri: prefix} format."""
        return {uri: prefix for prefix, uri in self.ns_aliases.items()}

    def bind_prefix(self, prefix: str, uri: str):
        """Register a prefix for a namespace.
        Namespaces that are already bound keep their existing prefix,
        and a prefix that is taken by another namespace is not rebound.
        """
        if not prefix or prefix == "xml" or uri in self.namespaces:
            return
        if prefix in self.ns_aliases:
            logger.debug(
                "Prefix '%s' is already bound to %s, not rebinding it to %s",
                prefix,
                self.ns_aliases[prefix],
                uri,
            )
            return
        self.ns_aliases[prefix] = uri

    def get_prefix(self, uri: str) -> str:
        """Return the prefix of a namespace, allocate one when it's not bound yet."""
        if uri == xmlns.xml.value:
            return "xml"

        prefix = self.namespaces.get(uri)
        if prefix is not None:
            return prefix

        # Prefer the well-known alias (e.g. "gml", "fes"), then the default prefix, then ns1, ns2..
        prefix = COMMON_NAMESPACES.get(uri)
        if prefix is None or prefix in self.ns_aliases:
            prefix = conf.WFSCITE_DEFAULT_PREFIX
            counter = 0
            while prefix in self.ns_aliases:
                counter += 1
                prefix = f"ns{counter}"

        logger.debug("Binding XML namespace prefix '%s' to %s", prefix, uri)
        self.ns_aliases[prefix] = uri
        return prefix

    def to_qname(self, name: QName | str) -> str:
        """Write a qualified name in the ``prefix:local`` notation.
        The namespace prefix is bound in the document when it's new.
        """
        ns, localname = split_ns(to_clark(name))
        if ns is None:
            return localname
        return f"{self.get_prefix(ns)}:{localname}"

    def iterfind_tag(self, *tags: str) -> typing.Iterator[NSElement]:
        """Iterate over all elements with the given tag names, in document order."""
        for element in self.root.iter():
            if element.tag in tags:
                yield element

    def get_parent(self, element: NSElement) -> NSElement | None:
        """Find the parent of an element by lookup. The root element has no parent."""
        for parent in self.root.iter():
            for child in parent:
                if child is element:
                    return parent
        return None

    def tostring(self, element: NSElement | None = None, xml_declaration=False) -> str:
        """Serialize the document, or a fragment of it.

        For the whole document, all bound namespaces are declared at the root element.
        For a fragment, only the namespaces it references are declared,
        so the result can be embedded in other content (e.g. a KVP ``FILTER`` parameter).
        The prefix table of the document is not changed by writing it.
        """
        # Namespaces that are not bound yet receive a prefix in a copy of the table.
        writer = copy(self)
        writer.ns_aliases = dict(self.ns_aliases)

        if element is None:
            element = self.root
            # Register the tag namespaces before the declarations are written
            writer._collect_namespaces(element)
            declarations = dict(sorted(writer.ns_aliases.items()))
        else:
            declarations = writer._collect_namespaces(element)

        xmlns_attrs = "".join(
            f' xmlns:{prefix}="{attr_escape(uri)}"'
            for prefix, uri in declarations.items()
            if prefix != "xml"
        )
        output = []
        writer._write(element, output, xmlns_attrs)
        xml = "".join(output)
        if xml_declaration:
            return f'<?xml version="1.0" encoding="UTF-8"?>\n{xml}'
        return xml

    def _collect_namespaces(self, element: NSElement) -> dict[str, str]:
        """Tell which namespaces a fragment references, in {prefix: uri} format.
        This includes the tags and attribute names, and prefixes of QName values in the text.
        """
        used = {}
        for node in element.iter():
            for name in (node.tag, *node.attrib):
                ns, _ = split_ns(name)
                if ns is not None:
                    used[self.get_prefix(ns)] = ns

        for node in element.iter():
            # QName values are written as-is, so use the declarations they were parsed with.
            ns_aliases = {**self.ns_aliases, **node.ns_aliases}
            for value in (node.text, *node.attrib.values()):
                if value:
                    for prefix in RE_QNAME_PREFIX.findall(value):
                        if prefix in ns_aliases and prefix not in used:
                            used[prefix] = ns_aliases[prefix]
        return used

    def _write(self, element: NSElement, output: list[str], extra_attrs: str = ""):
        tag = self.to_qname(element.tag)
        attrs = "".join(
            f' {self.to_qname(name)}="{attr_escape(str(value))}"'
            for name, value in element.attrib.items()
        )
        output.append(f"<{tag}{extra_attrs}{attrs}")
        if element.text or len(element):
            output.append(">")
            if element.text:
                output.append(tag_escape(element.text))
            for child in element:
                self._write(child, output)
                if child.tail:
                    output.append(tag_escape(child.tail))
            output.append(f"</{tag}>")
        else:
            output.append("/>")
