import pytest

from testapp.fakes import ScriptedProvider


@pytest.fixture
def provider():
    return ScriptedProvider()
