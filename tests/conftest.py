import pytest

from tagl import DictProvider, Engine


@pytest.fixture
def provider():
    return DictProvider()


@pytest.fixture
def engine(tmp_path, provider):
    return Engine(provider, tmp_path / "compiled")


@pytest.fixture
def render(engine):
    """Compile template source with the engine and render it with keyword vars."""

    def _render(source, **v):
        return engine.compile_code(source).fetch(v)

    return _render
