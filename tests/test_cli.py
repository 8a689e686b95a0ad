"""Tests for the command line interface."""

import pytest
from click.testing import CliRunner
from conftest import FakeMetadataSource, FakeSuggester

from link_tagger import main
from link_tagger.processing.pipeline import LinkProcessor
from link_tagger.storage.database import Database
from link_tagger.storage.models import LinkStatus
from link_tagger.tagging.vocabulary import TagVocabulary


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    for name in ("DATABASE_PATH", "LINK_TAGGER_USER", "LINK_TAGGER_PLAN"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(f"database_path: {tmp_path / 'cli.db'}\nplan: unlimited\n")
    return path


@pytest.fixture
def fake_processor(monkeypatch):
    suggester = FakeSuggester(tags=["python", "web"])

    def build(cfg, db):
        return LinkProcessor(
            db=db,
            vocabulary=TagVocabulary(db, cfg.user_id, cfg.limits()),
            metadata_source=FakeMetadataSource(),
            suggester=suggester,
            retry_delay=0,
        )

    monkeypatch.setattr(main, "build_processor", build)
    return suggester


def run(config_file, *args):
    return CliRunner().invoke(main.cli, ["--config", str(config_file), *args])


def test_add_without_processing(config_file, fake_processor):
    result = run(config_file, "add", "https://example.com/a", "--no-process")
    assert result.exit_code == 0, result.output
    assert "Saved" in result.output
    assert fake_processor.calls == []

    links = Database(config_file.parent / "cli.db").list_links("local")
    assert [l.status for l in links] == [LinkStatus.PENDING]


def test_add_and_process(config_file, fake_processor):
    result = run(config_file, "add", "https://example.com/a", "--tag", "reading")
    assert result.exit_code == 0, result.output
    assert "[completed]" in result.output

    db = Database(config_file.parent / "cli.db")
    link = db.list_links("local")[0]
    names = {t.id: t.name for t in db.get_tags("local")}
    assert sorted(names[i] for i in link.tag_ids) == ["python", "reading", "web"]


def test_add_rejects_bad_url(config_file, fake_processor):
    result = run(config_file, "add", "ftp://example.com")
    assert result.exit_code != 0
    assert "Not an http(s) URL" in result.output


def test_rejected_add_creates_no_tags(config_file, fake_processor):
    run(config_file, "add", "https://example.com/a", "--no-process")

    duplicate = run(config_file, "add", "https://example.com/a", "--tag", "orphan")
    bad_url = run(config_file, "add", "ftp://example.com", "--tag", "orphan")

    assert duplicate.exit_code == 1
    assert bad_url.exit_code == 1
    db = Database(config_file.parent / "cli.db")
    assert db.get_tags("local") == []
    assert len(db.list_links("local")) == 1


def test_hand_tagged_add_without_processing(config_file, fake_processor):
    result = run(config_file, "add", "https://example.com/a", "--tag", "reading", "--no-process")
    assert result.exit_code == 0, result.output

    db = Database(config_file.parent / "cli.db")
    link = db.list_links("local")[0]
    assert link.status == LinkStatus.COMPLETED
    assert [t.id for t in db.get_tags("local")] == link.tag_ids
    assert fake_processor.calls == []


def test_process_pending(config_file, fake_processor):
    run(config_file, "add", "https://example.com/a", "--no-process")
    run(config_file, "add", "https://example.com/b", "--no-process")

    result = run(config_file, "process", "--pending")
    assert result.exit_code == 0, result.output
    assert "Processed 2 links" in result.output


def test_process_requires_targets(config_file, fake_processor):
    result = run(config_file, "process")
    assert result.exit_code == 2


def test_tag_commands(config_file):
    result = run(config_file, "add-tag", "Python")
    assert result.exit_code == 0, result.output
    tag_id = result.output.strip().rsplit(" ", 1)[-1]

    assert "Python (manual)" in run(config_file, "tags").output

    result = run(config_file, "delete-tag", tag_id)
    assert result.exit_code == 0
    assert "No tags found." in run(config_file, "tags").output
    assert run(config_file, "delete-tag", tag_id).exit_code == 1


def test_links_shows_unknown_tags(config_file, fake_processor):
    run(config_file, "add", "https://example.com/a")
    db = Database(config_file.parent / "cli.db")
    for tag in db.get_tags("local"):
        db.delete_tag("local", tag.id)

    result = run(config_file, "links")
    assert "(unknown tag)" in result.output


def test_delete_link(config_file, fake_processor):
    run(config_file, "add", "https://example.com/a", "--no-process")
    link = Database(config_file.parent / "cli.db").list_links("local")[0]

    assert run(config_file, "delete-link", link.id).exit_code == 0
    assert run(config_file, "delete-link", link.id).exit_code == 1


def test_limits_and_stats(config_file):
    result = run(config_file, "limits")
    assert "Plan: unlimited" in result.output
    assert "0 / unlimited" in result.output

    result = run(config_file, "stats")
    assert result.exit_code == 0
    assert "Total links:  0" in result.output
