"""Tests for template resolution and caching."""

import pytest

from tagl import DictProvider, Engine, Options
from tagl.cache import NoOpCache, RetainingCache
from tagl.exceptions import DisallowedCallError, ProviderNotFoundError, TemplateNotFoundError


class CountingProvider(DictProvider):
    """DictProvider that counts source reads."""

    def __init__(self, templates=None):
        super().__init__(templates)
        self.loads = 0

    def load_text(self, name):
        self.loads += 1
        return super().load_text(name)


@pytest.fixture
def counting():
    return CountingProvider({"page.tpl": "Hello {$name}"})


def test_resolve_twice_returns_same_artifact(tmp_path, counting):
    """Without CHECK_MTIME the second resolve is a pure in-memory hit."""
    engine = Engine(counting, tmp_path)

    first = engine.get_template("page.tpl")
    second = engine.resolve("page.tpl")

    assert first is second
    assert counting.loads == 1
    assert first.fetch({"name": "ann"}) == "Hello ann"


def test_persisted_record_is_reused_by_new_engine(tmp_path, counting):
    Engine(counting, tmp_path).get_template("page.tpl")

    template = Engine(counting, tmp_path).get_template("page.tpl")

    assert counting.loads == 1
    assert template.fetch({"name": "bob"}) == "Hello bob"


def test_check_mtime_recompiles_changed_source(tmp_path, counting):
    engine = Engine(counting, tmp_path, Options.CHECK_MTIME)
    first = engine.get_template("page.tpl")

    counting.set("page.tpl", "Bye {$name}")
    second = engine.get_template("page.tpl")

    assert second is not first
    assert engine.get_template("page.tpl") is second
    assert second.fetch({"name": "ann"}) == "Bye ann"


def test_check_mtime_keeps_unchanged_template(tmp_path, counting):
    engine = Engine(counting, tmp_path, {"compile_check": True})

    first = engine.get_template("page.tpl")

    assert engine.get_template("page.tpl") is first


def test_without_check_mtime_changes_are_ignored(tmp_path, counting):
    engine = Engine(counting, tmp_path)
    engine.get_template("page.tpl")

    counting.set("page.tpl", "Bye {$name}")

    assert engine.fetch("page.tpl", {"name": "ann"}) == "Hello ann"


def test_check_mtime_revalidates_persisted_record(tmp_path, counting):
    Engine(counting, tmp_path, Options.CHECK_MTIME).get_template("page.tpl")
    counting.set("page.tpl", "Changed")

    engine = Engine(counting, tmp_path, Options.CHECK_MTIME)

    assert engine.fetch("page.tpl") == "Changed"


def test_force_compile_never_retains(tmp_path, counting):
    engine = Engine(counting, tmp_path, Options.FORCE_COMPILE)

    first = engine.get_template("page.tpl")
    second = engine.get_template("page.tpl")

    assert first is not second
    assert counting.loads == 2
    assert isinstance(engine._cache, NoOpCache)


def test_set_force_compile_switches_cache(tmp_path, counting):
    engine = Engine(counting, tmp_path)
    assert isinstance(engine._cache, RetainingCache)

    engine.set_force_compile(True)
    assert isinstance(engine._cache, NoOpCache)
    assert engine.options & Options.FORCE_COMPILE

    engine.set_force_compile(False)
    assert isinstance(engine._cache, RetainingCache)


def test_option_masks_get_distinct_records(tmp_path, counting):
    engine = Engine(counting, tmp_path)
    engine.get_template("page.tpl")
    engine.set_options(Options.DENY_METHODS)
    engine.get_template("page.tpl")

    records = sorted(p.name for p in tmp_path.iterdir())

    assert len(records) == 2
    assert all(name.startswith("page.tpl.") and name.endswith(".py") for name in records)


def test_clear_compiled_template_is_idempotent(tmp_path, counting):
    engine = Engine(counting, tmp_path)
    engine.get_template("page.tpl")

    assert engine.clear_compiled_template("page.tpl") is True
    assert engine.clear_compiled_template("page.tpl") is False
    assert list(tmp_path.iterdir()) == []

    engine.get_template("page.tpl")
    assert counting.loads == 2


def test_clear_all_compiles_is_not_supported(engine):
    with pytest.raises(NotImplementedError):
        engine.clear_all_compiles()


def test_compile_without_store(tmp_path, counting):
    engine = Engine(counting, tmp_path)

    template = engine.compile("page.tpl", store=False)

    assert template.fetch({"name": "x"}) == "Hello x"
    assert not tmp_path.exists() or list(tmp_path.iterdir()) == []


def test_compile_records_dependency_mtime(engine, provider):
    provider.set("a.tpl", "A")

    template = engine.compile("a.tpl")

    assert template.depends == {"a.tpl": provider.last_modified("a.tpl")}


def test_missing_template(engine):
    with pytest.raises(TemplateNotFoundError):
        engine.get_template("missing.tpl")


def test_provider_schemes(engine):
    engine.add_provider("mem", DictProvider({"x.tpl": "from mem"}))

    assert engine.fetch("mem:x.tpl") == "from mem"
    with pytest.raises(ProviderNotFoundError):
        engine.get_template("db:x.tpl")


def test_add_template_short_circuits_resolution(engine):
    template = engine.compile_code("prepared", name="virtual.tpl")

    engine.add_template(template)

    assert engine.get_template("virtual.tpl") is template


def test_pre_and_post_compile_filters(engine, provider):
    provider.set("f.tpl", "hello [[name]]")
    engine.add_pre_compile_filter(lambda text: text.replace("[[", "{$").replace("]]", "}"))
    engine.add_post_compile_filter(lambda code: code + "\n# filtered\n")

    template = engine.get_template("f.tpl")

    assert template.fetch({"name": "ann"}) == "hello ann"
    assert template.code.endswith("# filtered\n")


def test_registry_changes_apply_to_later_compiles(engine):
    engine.add_function_smart("join", lambda *parts, sep="-": sep.join(parts))
    engine.add_block_function("wrap", lambda params, content, scope: f"<{params['tag']}>{content}</{params['tag']}>")

    assert engine.compile_code("{join 'a', 'b', sep='+'}").fetch() == "a+b"
    assert engine.compile_code("{wrap tag='b'}x{/wrap}").fetch() == "<b>x</b>"


def test_force_include_inlines_and_revalidates(tmp_path):
    provider = DictProvider({"inc.tpl": "[{$v}]", "page.tpl": "{include 'inc.tpl' v=1}"})
    engine = Engine(provider, tmp_path, Options.FORCE_INCLUDE | Options.CHECK_MTIME)

    template = engine.get_template("page.tpl")

    assert "tpl.include(" not in template.code
    assert "inc.tpl" in template.depends
    assert template.fetch() == "[1]"

    provider.set("inc.tpl", "<{$v}>")
    assert engine.fetch("page.tpl") == "<1>"


def test_force_include_cycle_falls_back_to_runtime_include(engine, provider):
    provider.set("self.tpl", "{if $n > 0}{$n}{include 'self.tpl' n=$n - 1}{/if}")
    engine.set_options(Options.FORCE_INCLUDE)

    assert engine.fetch("self.tpl", {"n": 3}) == "321"


def test_factory_reads_template_dirs(tmp_path):
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "hi.tpl").write_text("hi {$who}")

    engine = Engine.factory(templates, tmp_path / "compiled")

    assert engine.fetch("hi.tpl", {"who": "there"}) == "hi there"
    assert (tmp_path / "compiled").is_dir()


class Greeter:
    def hi(self):
        return "hi"


def test_set_options_drops_templates_compiled_under_old_mask(engine, provider):
    """A restriction flag applies to templates resolved before it was set."""
    provider.set("greet.tpl", "{$o->hi()}")
    assert engine.fetch("greet.tpl", {"o": Greeter()}) == "hi"

    engine.set_options(Options.DENY_METHODS)

    with pytest.raises(DisallowedCallError):
        engine.get_template("greet.tpl")


def test_set_options_with_same_mask_keeps_cache(engine, provider):
    provider.set("a.tpl", "A")
    first = engine.get_template("a.tpl")

    engine.set_options(Options.NONE)

    assert engine.get_template("a.tpl") is first
