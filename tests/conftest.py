"""
Shared test fixtures and utilities for the formtree test suite.
"""

import pytest

from formtree.core.settings import FormTreeSettings
from formtree.document.memory import MemoryDocument, MemoryPersistentData
from formtree.model import DocumentModel

SETTINGS = FormTreeSettings()
DESCRIPTION_ID = SETTINGS.data_ids.form_description
VALUES_ID = SETTINGS.data_ids.form_values


@pytest.fixture
def document():
    """Empty unsaved in-memory document."""
    return MemoryDocument()


@pytest.fixture
def persistent_data(document):
    """Blob store attached to `document`."""
    return MemoryPersistentData(document)


@pytest.fixture
def make_model(document, persistent_data):
    """Factory for a DocumentModel on the shared document.

    Blobs passed as keyword arguments are stored before the model is created.

    Usage:
        def test_something(make_model):
            model = make_model(descriptor="WM(Formular(Funktionen(F(VALUE 'X'))))")
    """

    def factory(descriptor: str | None = None, values: str | None = None, **kwargs):
        if descriptor is not None:
            persistent_data.set_data(DESCRIPTION_ID, descriptor)
        if values is not None:
            persistent_data.set_data(VALUES_ID, values)
        return DocumentModel(document, persistent_data, **kwargs)

    return factory


@pytest.fixture
def model(make_model):
    """DocumentModel without persisted form data."""
    return make_model()
