"""Tests for the command line entry points: theme loading and queue draining."""

import json
from types import SimpleNamespace

import pytest

from conftest import LONG_ENOUGH_TEXT, unit
from shared.models.job import EntityKind
from worker.theme_loader import ThemeDefinition, load_themes, read_theme_file
from worker.worker_runner import drain


class TestThemeFile:
    """Parsing of theme definition files."""

    def test_reads_definitions(self, tmp_path):
        path = tmp_path / "themes.json"
        path.write_text(json.dumps([
            {"code": "earth", "label": "Earth", "description": "soil, ground, burial"},
            {"code": "air", "label": "Air", "embedding": [0.0, 0.0, 1.0, 0.0]},
        ]))

        definitions = read_theme_file(path)

        assert [definition.code for definition in definitions] == ["earth", "air"]
        assert definitions[0].embedding_text() == "Earth: soil, ground, burial"
        assert definitions[1].embedding_text() == "Air"

    def test_rejects_duplicates(self, tmp_path):
        path = tmp_path / "themes.json"
        path.write_text(json.dumps([{"code": "a", "label": "A"}, {"code": "a", "label": "B"}]))
        with pytest.raises(ValueError):
            read_theme_file(path)

    def test_rejects_non_list(self, tmp_path):
        path = tmp_path / "themes.json"
        path.write_text(json.dumps({"code": "a", "label": "A"}))
        with pytest.raises(ValueError):
            read_theme_file(path)


class TestLoadThemes:
    """Embedding and storing catalog entries."""

    async def test_embeds_only_missing_vectors(self, vector_store, embed_client):
        embed_client.vectors["Earth: soil"] = unit(1, 1, 0, 0)
        definitions = [
            ThemeDefinition(code="earth", label="Earth", description="soil"),
            ThemeDefinition(code="air", label="Air", embedding=[0.0, 0.0, 1.0, 0.0]),
        ]

        stored = await load_themes(definitions, embed_client, vector_store)

        assert stored == 2
        assert embed_client.calls == [["Earth: soil"]]
        themes = {theme.code: theme for theme in await vector_store.do_fetch_themes()}
        assert themes["earth"].embedding == pytest.approx(unit(1, 1, 0, 0))
        assert themes["air"].embedding == [0.0, 0.0, 1.0, 0.0]
        assert themes["water"].label == "Water"

    async def test_upsert_keeps_one_entry_per_code(self, vector_store, embed_client):
        await load_themes([ThemeDefinition(code="water", label="Deep water", embedding=[1.0, 0.0, 0.0, 0.0])], embed_client, vector_store)

        themes = await vector_store.do_fetch_themes()

        assert [theme.code for theme in themes].count("water") == 1
        assert next(theme for theme in themes if theme.code == "water").label == "Deep water"
        assert embed_client.calls == []

    async def test_stored_theme_keeps_its_vector(self, vector_store, embed_client):
        stored = await load_themes([ThemeDefinition(code="water", label="Water")], embed_client, vector_store)

        assert stored == 1
        assert embed_client.calls == []
        themes = {theme.code: theme for theme in await vector_store.do_fetch_themes()}
        assert themes["water"].embedding == [1.0, 0.0, 0.0, 0.0]

    async def test_changed_label_is_embedded_again(self, vector_store, embed_client):
        embed_client.vectors["Open water: sea, lake"] = unit(1, 0, 1, 0)
        definitions = [
            ThemeDefinition(code="water", label="Open water", description="sea, lake"),
            ThemeDefinition(code="fire", label="Fire"),
            ThemeDefinition(code="earth", label="Earth"),
        ]

        await load_themes(definitions, embed_client, vector_store)

        assert embed_client.calls == [["Open water: sea, lake", "Earth"]]
        themes = {theme.code: theme for theme in await vector_store.do_fetch_themes()}
        assert themes["water"].embedding == pytest.approx(unit(1, 0, 1, 0))
        assert themes["water"].label == "Open water"
        assert themes["fire"].embedding == [0.0, 1.0, 0.0, 0.0]
        assert len(themes["earth"].embedding) == 4


class TestDrain:
    """--once mode of the worker runner."""

    async def test_processes_until_empty(self, pool, job_queue):
        job_queue.enqueue_job("dream-1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT)
        job_queue.enqueue_job("dream-2", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT + " Again.")

        assert await drain(SimpleNamespace(pool=pool)) == 2
        assert job_queue.count_by_status()["completed"] == 2
