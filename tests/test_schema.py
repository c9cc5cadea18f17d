"""Tests for the tag schema: aliases, cycles, hierarchy expansion, persistence."""

import pytest

from tagr.errors import (
    AliasExists,
    AliasNotFound,
    CircularReference,
    ReservedDelimiter,
    SchemaError,
    SchemaLoadError,
)
from tagr.schema import TagSchema, find_cycle


class TestAliases:
    """Adding, removing and listing aliases."""

    def test_add_and_canonicalize(self):
        schema = TagSchema()
        assert schema.add_alias("js", "javascript") is True

        assert schema.canonicalize("js") == "javascript"
        assert schema.canonicalize("javascript") == "javascript"
        assert schema.canonicalize("python") == "python"

    def test_lookup_is_case_insensitive(self):
        schema = TagSchema()
        schema.add_alias("JS", "javascript")

        assert schema.canonicalize("js") == "javascript"
        assert schema.canonicalize("Js") == "javascript"
        assert "js" in schema
        # Original spelling is kept
        assert schema.list_aliases() == [("JS", "javascript")]

    def test_chains_resolve_to_fixed_point(self):
        schema = TagSchema()
        schema.add_alias("a", "b")
        schema.add_alias("b", "c")
        assert schema.canonicalize("a") == "c"

    def test_allow_alias_false(self):
        schema = TagSchema.from_dict({"js": "javascript"})
        assert schema.canonicalize("js", allow_alias=False) == "js"

    def test_hierarchical_levels_resolved(self):
        schema = TagSchema.from_dict({"js": "javascript", "k8s": "devops:kubernetes"})

        assert schema.canonicalize("js:react") == "javascript:react"
        assert schema.canonicalize("k8s") == "devops:kubernetes"
        assert schema.canonicalize("infra:k8s") == "infra:devops:kubernetes"

    def test_delimiter_in_alias_rejected(self):
        schema = TagSchema()
        with pytest.raises(ReservedDelimiter):
            schema.add_alias("lang:js", "javascript")
        assert len(schema) == 0

    def test_canonical_may_be_hierarchical(self):
        schema = TagSchema()
        schema.add_alias("rs", "lang:rust")
        assert schema.canonicalize("rs") == "lang:rust"

    def test_identical_readd_is_noop(self):
        schema = TagSchema()
        schema.add_alias("js", "javascript")
        assert schema.add_alias("js", "javascript") is False

    def test_repointing_raises(self):
        schema = TagSchema()
        schema.add_alias("js", "javascript")
        with pytest.raises(AliasExists) as exc_info:
            schema.add_alias("JS", "jscript")
        assert exc_info.value.existing == "javascript"

    def test_remove_alias(self):
        schema = TagSchema.from_dict({"js": "javascript"})
        assert schema.remove_alias("JS") == "javascript"
        assert schema.canonicalize("js") == "js"

    def test_remove_unknown_alias(self):
        with pytest.raises(AliasNotFound):
            TagSchema().remove_alias("nope")

    def test_invalid_names(self):
        schema = TagSchema()
        with pytest.raises(SchemaError):
            schema.add_alias("", "x")
        with pytest.raises(SchemaError):
            schema.add_alias("x", "a::b")

    def test_synonyms_of(self):
        schema = TagSchema.from_dict({"js": "javascript", "ecmascript": "javascript", "py": "python"})

        assert schema.synonyms_of("javascript") == {"js", "ecmascript"}
        assert schema.synonyms_of("js") == {"js", "ecmascript"}
        assert schema.synonyms_of("rust") == set()

    def test_synonyms_follow_chains(self):
        schema = TagSchema.from_dict({"a": "b", "b": "c"})
        assert schema.synonyms_of("c") == {"a", "b"}


class TestCycles:
    """The alias graph never contains a cycle."""

    def test_three_cycle_rejected(self):
        schema = TagSchema()
        schema.add_alias("A", "B")
        schema.add_alias("B", "C")

        with pytest.raises(CircularReference) as exc_info:
            schema.add_alias("C", "A")
        assert exc_info.value.chain == ["c", "a", "b", "c"]
        # Nothing was mutated
        assert schema.get_alias("C") is None
        assert len(schema) == 2

    def test_two_cycle_is_case_insensitive(self):
        schema = TagSchema()
        schema.add_alias("a", "B")
        with pytest.raises(CircularReference):
            schema.add_alias("b", "A")

    def test_self_reference_is_noop(self):
        schema = TagSchema()
        assert schema.add_alias("A", "A") is False
        assert schema.add_alias("a", "A") is False
        assert len(schema) == 0
        assert schema.canonicalize("A") == "A"

    def test_find_cycle_is_pure(self):
        edges = {"a": "b", "b": "c"}
        assert find_cycle(edges, "c", "a") == ["c", "a", "b", "c"]
        assert find_cycle(edges, "d", "a") is None
        assert find_cycle(edges, "x", "x") is None
        assert edges == {"a": "b", "b": "c"}


class TestExpandForSearch:
    """Search-term expansion through aliases and stored descendants."""

    def test_descendants_come_from_index(self, index):
        index.upsert("f1", ["lang:rust"])
        index.upsert("f2", ["lang:rust:async"])
        index.upsert("f3", ["lang:python"])
        schema = TagSchema()

        assert schema.expand_for_search("lang:rust", index=index) == {"lang:rust", "lang:rust:async"}
        assert schema.expand_for_search("lang", index=index) == {
            "lang", "lang:rust", "lang:rust:async", "lang:python",
        }

    def test_no_hierarchy(self, index):
        index.upsert("f2", ["lang:rust:async"])
        schema = TagSchema()
        assert schema.expand_for_search("lang:rust", include_hierarchy=False, index=index) == {"lang:rust"}

    def test_ancestors_never_added(self, index):
        index.upsert("f1", ["lang"])
        schema = TagSchema()
        assert schema.expand_for_search("lang:rust", index=index) == {"lang:rust"}

    def test_aliases_included(self, index):
        index.upsert("f1", ["javascript:react"])
        schema = TagSchema.from_dict({"js": "javascript"})

        assert schema.expand_for_search("js", index=index) == {"js", "javascript", "javascript:react"}
        assert schema.expand_for_search("javascript", include_hierarchy=False) == {"javascript", "js"}

    def test_aliases_disabled(self):
        schema = TagSchema.from_dict({"js": "javascript"})
        assert schema.expand_for_search("js", include_aliases=False) == {"js"}


class TestPersistence:
    """Schema file load/save."""

    def test_round_trip(self, tmp_path):
        path = tmp_path / "tag_schema.toml"
        schema = TagSchema.from_dict(
            {"JS": "javascript", "k8s": "devops:kubernetes", "py": "python"}, path=path,
        )
        schema.save()

        loaded = TagSchema.load(path)
        assert loaded.to_dict() == schema.to_dict()
        assert loaded.canonicalize("js") == "javascript"
        assert not list(tmp_path.glob(".schema-*"))

    def test_missing_file_is_empty(self, tmp_path):
        schema = TagSchema.load(tmp_path / "absent.toml")
        assert len(schema) == 0
        assert schema.path == tmp_path / "absent.toml"

    def test_save_without_path_raises(self):
        with pytest.raises(SchemaError):
            TagSchema().save()

    @pytest.mark.parametrize("content", [
        "this is = = not toml",
        'aliases = "not a table"',
        "[aliases]\njs = 3",
        '[aliases]\n"lang:js" = "javascript"',
        '[aliases]\na = "b"\nb = "c"\nc = "a"',
        '[aliases]\nx = ""',
    ])
    def test_malformed_files_rejected(self, tmp_path, content):
        path = tmp_path / "tag_schema.toml"
        path.write_text(content)
        with pytest.raises(SchemaLoadError) as exc_info:
            TagSchema.load(path)
        assert exc_info.value.path == path
