from __future__ import annotations

from fastapi.testclient import TestClient

from famtree import layout


def test_tree_list_page_links_trees(client: TestClient) -> None:
    created = client.post(
        "/api/trees",
        json={"name": "Htmlton", "rootPerson": {"firstName": "Page", "lastName": "Htmlton"}},
    ).json()

    response = client.get("/")

    assert response.status_code == 200
    assert f'href="/trees/{created["id"]}"' in response.text
    assert "Htmlton" in response.text


def test_diagram_page_renders_svg(client: TestClient) -> None:
    created = client.post(
        "/api/trees",
        json={"name": "Drawn", "rootPerson": {"firstName": "Top", "lastName": "Drawn", "gender": "male"}},
    ).json()
    client.post(
        f"/api/trees/{created['id']}/units",
        json={
            "action": "addChild",
            "unitId": created["rootId"],
            "person": {"firstName": "Bottom", "lastName": "Drawn", "birthDate": "1990"},
        },
    )

    response = client.get(f"/trees/{created['id']}")

    assert response.status_code == 200
    assert "<svg" in response.text
    assert response.text.count("<rect") == 2
    assert "<line" in response.text
    assert "Top Drawn" in response.text
    assert "1990" in response.text


def test_diagram_page_for_missing_tree_shows_message(client: TestClient) -> None:
    response = client.get("/trees/unknown")

    assert response.status_code == 200
    assert "Could not load tree: Tree not found" in response.text
    assert "<svg" not in response.text


def test_diagram_page_reports_layout_failure(client: TestClient, settings, monkeypatch) -> None:
    created = client.post(
        "/api/trees",
        json={"name": "Undrawn", "rootPerson": {"firstName": "Solo", "lastName": "Undrawn"}},
    ).json()

    def unavailable(dot):
        raise layout.LayoutUnavailable("Graphviz 'dot' executable not found")

    monkeypatch.setattr(layout, "render_plain", unavailable)
    monkeypatch.setattr(settings, "layout_engine", "graphviz")

    response = client.get(f"/trees/{created['id']}")

    assert response.status_code == 200
    assert "Could not lay out tree: Graphviz" in response.text
    assert "executable not found" in response.text
    assert "<svg" not in response.text
