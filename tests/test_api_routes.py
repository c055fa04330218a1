import io
import json
import sys
from pathlib import Path

import pytest
from docx import Document

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybible import create_app
from storybible.config import TestConfig
from storybible.extensions import db
from storybible.services.intake import IntakeService


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


def _create_character(client, name="Lin Mo", role="main"):
    response = client.post("/api/characters", json={"name": name, "role": role})
    assert response.status_code == 201
    return response.get_json()["data"]


def test_health(client):
    response = client.get("/api/health")

    body = response.get_json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["data"]["status"] == "ok"


def test_unknown_route_and_wrong_method_use_error_envelope(client):
    missing = client.get("/api/nothing-here")
    wrong_method = client.put("/api/health")

    assert missing.status_code == 404
    assert missing.get_json()["error"]["code"] == "NOT_FOUND"
    assert wrong_method.status_code == 405
    assert wrong_method.get_json()["success"] is False


def test_character_crud(client):
    character = _create_character(client)
    assert character["id"] == "C001"

    updated = client.patch(f"/api/characters/{character['id']}", json={"appearance": "Tall"})
    assert updated.get_json()["data"]["appearance"] == "Tall"

    listed = client.get("/api/characters?role=main").get_json()["data"]
    assert [item["name"] for item in listed] == ["Lin Mo"]

    assert client.delete(f"/api/characters/{character['id']}").get_json()["data"] == {"deleted": True}
    missing = client.get(f"/api/characters/{character['id']}")
    assert missing.status_code == 404
    assert missing.get_json()["error"]["code"] == "NOT_FOUND"


def test_character_form_validation(client):
    no_name = client.post("/api/characters", json={"role": "main"})
    bad_role = client.post("/api/characters", json={"name": "Lin Mo", "role": "hero"})

    assert no_name.status_code == 400
    assert no_name.get_json()["error"] == {
        "code": "VALIDATION_ERROR",
        "message": "Character name is required",
        "context": {"field": "name"},
    }
    assert bad_role.get_json()["error"]["message"] == "Invalid character role"


def test_relationship_rules_over_http(client):
    lin = _create_character(client)
    su = _create_character(client, "Su Yan", "supporting")

    self_link = client.post(
        "/api/relationships", json={"source_id": lin["id"], "target_id": lin["id"], "type": "rival"}
    )
    created = client.post(
        "/api/relationships", json={"source_id": lin["id"], "target_id": su["id"], "type": "companion"}
    )
    duplicate = client.post(
        "/api/relationships", json={"source_id": lin["id"], "target_id": su["id"], "type": "rival"}
    )

    assert self_link.get_json()["error"]["code"] == "SELF_REFERENCE"
    assert created.status_code == 201
    assert duplicate.status_code == 409

    relationship_id = created.get_json()["data"]["id"]
    patched = client.patch(
        f"/api/relationships/{relationship_id}", json={"type": "rival", "source_id": su["id"]}
    ).get_json()["data"]
    assert patched["type"] == "rival"
    assert patched["source_id"] == lin["id"]


def test_search_requires_query(client):
    _create_character(client)

    missing = client.get("/api/search")
    found = client.get("/api/search?q=lin&types=character").get_json()["data"]

    assert missing.status_code == 400
    assert missing.get_json()["error"]["context"] == {"field": "q"}
    assert found[0]["entity_id"] == "C001"


def test_chapter_routes(client):
    chapter = client.post("/api/chapters", json={"title": "The Gate"}).get_json()["data"]

    saved = client.put(f"/api/chapters/{chapter['id']}/content", json={"content": "Rain fell."})
    assert saved.get_json()["data"]["word_count"] == 2

    patched = client.patch(f"/api/chapters/{chapter['id']}", json={"title": "Gate", "status": None})
    assert patched.get_json()["data"]["status"] == "outline"

    summary = client.get(f"/api/chapters/{chapter['id']}").get_json()["data"]
    full = client.get(f"/api/chapters/{chapter['id']}?include_content=true").get_json()["data"]
    assert "content" not in summary
    assert full["content"] == "Rain fell."

    bad_content = client.put(f"/api/chapters/{chapter['id']}/content", json={"content": 3})
    assert bad_content.status_code == 400
    assert client.get("/api/chapters/999/setup-suggestions").status_code == 404


def test_chapter_versions(client):
    chapter = client.post("/api/chapters", json={"title": "The Gate"}).get_json()["data"]
    client.put(f"/api/chapters/{chapter['id']}/content", json={"content": "First draft"})

    version = client.post(f"/api/chapters/{chapter['id']}/versions", json={"summary": "checkpoint"})
    assert version.status_code == 201

    client.put(f"/api/chapters/{chapter['id']}/content", json={"content": "Second draft"})
    rolled_back = client.post(
        f"/api/chapters/{chapter['id']}/rollback", json={"version_id": version.get_json()["data"]["id"]}
    )
    assert rolled_back.status_code == 200
    restored = client.get(f"/api/chapters/{chapter['id']}?include_content=true").get_json()["data"]
    assert restored["content"] == "First draft"

    missing_ids = client.get("/api/versions/compare?version_id1=1")
    assert missing_ids.status_code == 400


def test_reorder_rejects_non_integer_ids(client):
    response = client.post("/api/chapters/reorder", json={"chapter_ids": ["1", 2]})

    assert response.status_code == 400
    assert response.get_json()["error"]["context"] == {"field": "chapter_ids"}


def test_export_returns_attachment(client):
    client.post("/api/chapters", json={"title": "The Gate"})

    markdown = client.post("/api/export/chapters", json={"format": "md"})
    bible = client.post("/api/export/story-bible", json={})
    bad_format = client.post("/api/export/chapters", json={"format": "epub"})

    assert markdown.status_code == 200
    assert markdown.mimetype == "text/markdown"
    assert markdown.headers["Content-Disposition"] == 'attachment; filename="export.md"'
    assert b"## The Gate" in markdown.data
    assert bible.headers["Content-Disposition"] == 'attachment; filename="story-bible.md"'
    assert bad_format.status_code == 400


def test_decompose_validation(client):
    response = client.post("/api/intake/decompose", json={"text": "Lin Mo", "hint": "poem"})

    assert response.status_code == 400
    assert response.get_json()["error"]["context"] == {"field": "hint"}


def test_intake_commit(client):
    response = client.post(
        "/api/intake/commit",
        json={"entities": [{"entity_type": "character", "action": "create", "data": {"name": "Lin Mo"}}]},
    )
    empty = client.post("/api/intake/commit", json={"entities": []})

    assert response.status_code == 201
    assert response.get_json()["data"]["created"][0]["type"] == "character"
    assert empty.status_code == 400


def test_import_chapters_streams_events(client, monkeypatch):
    seen = []

    def fake_extract(self, chapters):
        seen.extend(chapters)
        yield {"type": "progress", "pass": 1, "message": "Extracting characters"}
        yield {"type": "done", "result": {"characters": []}}
        yield {"type": "progress", "pass": 2, "message": "never sent"}

    monkeypatch.setattr(IntakeService, "extract_from_chapters", fake_extract)

    response = client.post(
        "/api/intake/import-chapters", json={"chapters": [{"title": "One", "content": "Lin Mo walks."}]}
    )

    frames = [chunk for chunk in response.get_data(as_text=True).split("\n\n") if chunk]
    events = [json.loads(frame[len("data: "):]) for frame in frames]
    assert response.headers["Content-Type"].startswith("text/event-stream")
    assert response.headers["Cache-Control"] == "no-cache"
    assert [event["type"] for event in events] == ["progress", "done"]
    assert seen[0]["title"] == "One"


def test_import_chapters_rejects_empty_list(client):
    response = client.post("/api/intake/import-chapters", json={"chapters": []})

    assert response.status_code == 400
    assert response.get_json()["error"]["context"] == {"field": "chapters"}


def test_split_chapters(client):
    response = client.post(
        "/api/intake/split-chapters",
        json={"text": "Chapter 1: Beginning\nLine a\nChapter 2 The Road\nLine c"},
    )

    titles = [chapter["title"] for chapter in response.get_json()["data"]]
    assert titles == ["Beginning", "The Road"]


def test_read_docx_upload(client):
    document = Document()
    document.add_paragraph("Chapter 1")
    document.add_paragraph("Lin Mo walks.")
    buffer = io.BytesIO()
    document.save(buffer)
    buffer.seek(0)

    response = client.post(
        "/api/intake/read-docx",
        data={"file": (buffer, "draft.docx")},
        content_type="multipart/form-data",
    )
    wrong_type = client.post(
        "/api/intake/read-docx",
        data={"file": (io.BytesIO(b"plain"), "draft.txt")},
        content_type="multipart/form-data",
    )

    assert response.get_json()["data"] == {"filename": "draft.docx", "text": "Chapter 1\nLin Mo walks."}
    assert wrong_type.status_code == 400


def test_seed_routes(client):
    assert client.get("/api/seed/status").get_json()["data"] == {"is_empty": True}

    loaded = client.post("/api/seed/load", json={"lang": "en"})
    bad = client.post("/api/seed/load", json={"lang": "fr"})

    assert loaded.get_json()["data"]["counts"]["characters"] > 0
    assert client.get("/api/seed/status").get_json()["data"] == {"is_empty": False}
    assert bad.status_code == 400
    assert client.post("/api/seed/clear").get_json()["data"] == {"cleared": True}


def test_explicit_nulls_on_required_columns_are_rejected(client):
    character = _create_character(client)
    su = _create_character(client, "Su Yan", "supporting")
    volume = client.post("/api/volumes", json={"name": "Book One"}).get_json()["data"]
    arc = client.post("/api/arcs", json={"name": "Homecoming"}).get_json()["data"]
    relationship = client.post(
        "/api/relationships", json={"source_id": character["id"], "target_id": su["id"], "type": "companion"}
    ).get_json()["data"]
    item = client.post("/api/foreshadowing", json={"content": "The cracked jade"}).get_json()["data"]

    cases = [
        (f"/api/characters/{character['id']}", "role"),
        (f"/api/volumes/{volume['id']}", "status"),
        (f"/api/arcs/{arc['id']}", "progress"),
        (f"/api/relationships/{relationship['id']}", "type"),
        (f"/api/foreshadowing/{item['id']}", "status"),
    ]
    for url, field in cases:
        response = client.patch(url, json={field: None})

        assert response.status_code == 400, url
        error = response.get_json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["context"] == {"field": field}

    assert client.get(f"/api/characters/{character['id']}").get_json()["data"]["role"] == "main"


def test_non_string_values_are_rejected(client):
    location = client.post("/api/locations", json={"name": 5})
    character = client.post("/api/characters", json={"name": 5, "role": "main"})
    decompose = client.post("/api/intake/decompose", json={"text": 5})
    listed = client.post("/api/characters", json={"name": ["Lin Mo"], "role": "main"})

    assert location.status_code == 400
    assert location.get_json()["error"] == {
        "code": "VALIDATION_ERROR",
        "message": "name must be a string",
        "context": {"field": "name"},
    }
    assert character.status_code == 400
    assert character.get_json()["error"]["context"] == {"field": "name"}
    assert decompose.status_code == 400
    assert decompose.get_json()["error"]["message"] == "text must be a string"
    assert listed.status_code == 400


def test_non_string_patch_values_are_rejected(client):
    character = _create_character(client)
    arc = client.post("/api/arcs", json={"name": "Homecoming"}).get_json()["data"]

    renamed = client.patch(f"/api/characters/{character['id']}", json={"name": 42})
    described = client.patch(f"/api/arcs/{arc['id']}", json={"name": {"text": "x"}})

    assert renamed.status_code == 400
    assert renamed.get_json()["error"]["message"] == "name must be a string"
    assert described.status_code == 400
