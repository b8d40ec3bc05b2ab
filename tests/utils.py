from __future__ import annotations

from doctest import Example
from pathlib import Path

from django.http import QueryDict
from lxml import etree
from lxml.doctestcompare import PARSE_XML, LXMLOutputChecker

from wfscite.xml import xmlns

FILES_ROOT = Path(__file__).parent.joinpath("files")

# Namespaces for tag retrieval
NAMESPACES = {
    "fes": xmlns.fes20.value,
    "gml": xmlns.gml32.value,
    "ows": xmlns.ows11.value,
    "soap11": xmlns.soap11.value,
    "soap12": xmlns.soap12.value,
    "wfs": xmlns.wfs20.value,
}

NS1 = "http://example.org/ns1"
NS2 = "http://example.org/ns2"
GMLSF = "http://cite.opengeospatial.org/gmlsf"


def get_file(name: str) -> Path:
    """Tell where a test file is stored."""
    return FILES_ROOT.joinpath(name)


def read_file(name: str) -> str:
    return get_file(name).read_text(encoding="utf-8")


def parse_xml(xml_text: str) -> etree._Element:
    """Parse the produced XML with lxml, independent of the code that produced it."""
    return etree.fromstring(xml_text.encode())


def parse_kvp(kvp: str) -> QueryDict:
    """Read the produced query string the same way a Django view would."""
    return QueryDict(kvp)


def assert_xml_equal(got: bytes | str, want: str):
    """Compare two XML strings."""
    checker = LXMLOutputChecker()

    if isinstance(want, str) and isinstance(got, bytes):
        got = got.decode()

    if isinstance(got, str) and got.startswith("<?"):
        # Strip <?xml version='1.0' encoding="UTF-8" ?>
        # because it's not supported on utf-8 strings
        got = got[got.index("?>") + 3 :]

    if not checker.check_output(want, got, PARSE_XML):
        example = Example("", "")
        example.want = want  # unencoded, avoid doctest for bytes type.
        message = checker.output_difference(example, got, PARSE_XML)
        raise AssertionError(message)


def split_parameter_lists(params: QueryDict) -> list[dict[str, str]]:
    """Split the ``(..)(..)`` parameter lists into the parameters of each query,
    the way a WFS server reads them. Parameters without parentheses are shared.
    """
    pairs = {
        name: value[1:-1].split(")(")
        for name, value in params.items()
        if value.startswith("(") and value.endswith(")")
    }
    if not pairs:
        return [params.dict()]

    pair_sizes = {len(value) for value in pairs.values()}
    assert len(pair_sizes) == 1, f"Inconsistent pairs between: {', '.join(sorted(pairs))}"
    return [
        {**params.dict(), **{key: value[i] for key, value in pairs.items()}}
        for i in range(pair_sizes.pop())
    ]
