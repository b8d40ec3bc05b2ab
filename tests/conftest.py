from __future__ import annotations

import django
import pytest

from wfscite import conf
from wfscite.builder import create_request_entity
from wfscite.document import RequestDocument

from .utils import get_file


def pytest_configure():
    print(f"Running with Django {django.__version__}")
    print(
        f"Using WFSCITE_SERVICE_VERSION={conf.WFSCITE_SERVICE_VERSION}"
        f" WFSCITE_SOAP_VERSION={conf.WFSCITE_SOAP_VERSION}"
    )


@pytest.fixture()
def get_feature() -> RequestDocument:
    """An empty GetFeature request, as created by the builder."""
    return create_request_entity("GetFeature")


@pytest.fixture()
def load_document():
    """Read one of the request files as document."""

    def _load(name: str) -> RequestDocument:
        return RequestDocument.from_source(get_file(name))

    return _load
