"""FastAPI application exposing family tree functionality."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import httpx
from fastapi import (
    APIRouter,
    Body,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import domain, layout, schemas, services, snapshot
from .blobstore import BlobStore, create_blob_store
from .config import Settings, get_settings
from .database import Database, get_blob_store, get_session

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

CACHE_CONTROL = "public, max-age=31536000, immutable"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _raise_for_outcome(outcome: domain.Outcome) -> Any:
    if outcome.ok:
        return outcome.value
    if outcome.reason == domain.FailureReason.not_found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=outcome.message)
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=outcome.message)


def _error_message(response: httpx.Response) -> str:
    """``detail`` of an API error: a string, or a list of validation errors."""

    detail = response.json()["detail"]
    if isinstance(detail, list):
        return "; ".join(error["msg"] for error in detail)
    return detail


async def _fetch(request: Request, path: str) -> httpx.Response:
    transport = httpx.ASGITransport(app=request.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://app") as client:
        return await client.get(path)


def _diagram_view(diagram: Dict[str, Any]) -> Dict[str, Any]:
    """Precompute SVG geometry for the diagram template."""

    nodes = {node["id"]: node for node in diagram["nodes"]}
    if not nodes:
        return {"view_box": "0 0 0 0", "nodes": [], "edges": []}

    padding = 40
    min_x = min(node["position"]["x"] for node in nodes.values()) - padding
    min_y = min(node["position"]["y"] for node in nodes.values()) - padding
    max_x = max(node["position"]["x"] + node["width"] for node in nodes.values()) + padding
    max_y = max(node["position"]["y"] + node["height"] for node in nodes.values()) + padding

    node_views = []
    for node in nodes.values():
        persons = node["data"]["unit"]["persons"]
        slot_width = node["width"] / max(len(persons), 1)
        node_views.append(
            {
                "x": node["position"]["x"],
                "y": node["position"]["y"],
                "width": node["width"],
                "height": node["height"],
                "type": node["data"]["unit"]["type"],
                "persons": [
                    {
                        "name": f"{person['firstName']} {person['lastName']}",
                        "dates": " - ".join(
                            filter(None, [person.get("birthDate"), person.get("deathDate")])
                        ),
                        "x": node["position"]["x"] + slot_width * (index + 0.5),
                    }
                    for index, person in enumerate(persons)
                ],
            }
        )

    edge_views = []
    for edge in diagram["edges"]:
        source = nodes.get(edge["source"])
        target = nodes.get(edge["target"])
        if source is None or target is None:
            continue
        x1 = source["position"]["x"] + source["width"] / 2
        handle = edge.get("sourceHandle")
        if handle and handle.startswith("mother-"):
            persons = source["data"]["unit"]["persons"]
            slot = int(handle.split("-", 1)[1])
            x1 = source["position"]["x"] + source["width"] * (slot + 0.5) / max(len(persons), 1)
        edge_views.append(
            {
                "x1": x1,
                "y1": source["position"]["y"] + source["height"],
                "x2": target["position"]["x"] + target["width"] / 2,
                "y2": target["position"]["y"],
                "color": edge["data"]["color"],
            }
        )

    return {
        "view_box": f"{min_x} {min_y} {max_x - min_x} {max_y - min_y}",
        "nodes": node_views,
        "edges": edge_views,
    }


def _diagram_to_schema(tree: domain.FamilyTree, diagram: layout.Diagram) -> schemas.DiagramRead:
    children = tree.children_index()
    return schemas.DiagramRead(
        engine=diagram.engine,
        nodes=[
            schemas.DiagramNode(
                id=node.id,
                position=schemas.Position(x=node.x, y=node.y),
                width=node.width,
                height=node.height,
                level=node.level,
                data=schemas.DiagramNodeData(
                    unit=snapshot.unit_to_schema(tree.units[node.id], children[node.id])
                ),
            )
            for node in diagram.nodes.values()
        ],
        edges=[
            schemas.DiagramEdge(
                id=edge.id,
                source=edge.source,
                target=edge.target,
                type=edge.type,
                source_handle=edge.source_handle,
                data=schemas.DiagramEdgeData(color=edge.color),
            )
            for edge in diagram.edges
        ],
    )


# Pages -----------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
async def tree_list_page(request: Request) -> HTMLResponse:
    response = await _fetch(request, "/api/trees")
    context: Dict[str, Any] = {"trees": [], "message": None, "message_type": "success"}
    if response.status_code == status.HTTP_200_OK:
        context["trees"] = response.json()
    else:
        context["message"] = f"Could not load trees: {_error_message(response)}"
        context["message_type"] = "error"
    return templates.TemplateResponse(request, "tree_list.html", context)


@router.get("/trees/{tree_id}", response_class=HTMLResponse)
async def tree_diagram_page(request: Request, tree_id: str) -> HTMLResponse:
    tree_response = await _fetch(request, f"/api/trees/{tree_id}")
    context: Dict[str, Any] = {"tree": None, "diagram": None, "message": None, "message_type": "error"}
    if tree_response.status_code != status.HTTP_200_OK:
        context["message"] = f"Could not load tree: {_error_message(tree_response)}"
        return templates.TemplateResponse(request, "tree_diagram.html", context)

    layout_response = await _fetch(request, f"/api/trees/{tree_id}/layout")
    context["tree"] = tree_response.json()
    if layout_response.status_code == status.HTTP_200_OK:
        context["diagram"] = _diagram_view(layout_response.json())
    else:
        context["message"] = f"Could not lay out tree: {_error_message(layout_response)}"
    return templates.TemplateResponse(request, "tree_diagram.html", context)


# Trees -----------------------------------------------------------------------


@router.get("/api/trees", response_model=List[schemas.TreeSummary])
def list_trees(session: Session = Depends(get_session)) -> List[schemas.TreeSummary]:
    return [schemas.TreeSummary(id=row.id, name=row.name) for row in services.list_trees(session)]


@router.post("/api/trees", response_model=schemas.TreeCreated, status_code=status.HTTP_201_CREATED)
def create_tree(
    payload: schemas.TreeCreate, session: Session = Depends(get_session)
) -> schemas.TreeCreated:
    person = domain.create_person(**payload.root_person.model_dump())
    tree = domain.create_family_tree(payload.name, domain.create_family_unit([person]))
    services.create_tree(session, tree)
    session.commit()
    return schemas.TreeCreated(id=tree.id, name=tree.name, root_id=tree.root_id)


@router.post(
    "/api/trees/import", response_model=schemas.TreeCreated, status_code=status.HTTP_201_CREATED
)
def import_tree(
    payload: Dict[str, Any] = Body(...), session: Session = Depends(get_session)
) -> schemas.TreeCreated:
    try:
        tree = snapshot.import_tree(payload)
    except snapshot.SnapshotError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    services.create_tree(session, tree)
    session.commit()
    return schemas.TreeCreated(id=tree.id, name=tree.name, root_id=tree.root_id)


@router.get(
    "/api/trees/{tree_id}",
    response_model=schemas.FamilyTreeRead,
    response_model_exclude_none=True,
)
def get_tree(tree_id: str, session: Session = Depends(get_session)) -> schemas.FamilyTreeRead:
    return snapshot.tree_to_schema(services.require_tree(session, tree_id))


@router.get(
    "/api/trees/{tree_id}/layout",
    response_model=schemas.DiagramRead,
    response_model_exclude_none=True,
)
def get_tree_layout(
    tree_id: str,
    engine: Optional[Literal["auto", "graphviz", "fallback"]] = Query(default=None),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> schemas.DiagramRead:
    tree = services.require_tree(session, tree_id)
    try:
        diagram = layout.layout_family_tree(tree, engine or settings.layout_engine)
    except layout.LayoutUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _diagram_to_schema(tree, diagram)


@router.delete("/api/trees/{tree_id}", response_model=schemas.SuccessResult)
def delete_tree(tree_id: str, session: Session = Depends(get_session)) -> schemas.SuccessResult:
    if not services.tree_exists(session, tree_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tree not found")
    services.delete_tree(session, tree_id)
    session.commit()
    return schemas.SuccessResult()


# Units -----------------------------------------------------------------------


@router.post(
    "/api/trees/{tree_id}/units",
    response_model=schemas.UnitActionResult,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def apply_unit_action(
    tree_id: str,
    payload: schemas.UnitActionRequest,
    session: Session = Depends(get_session),
) -> schemas.UnitActionResult:
    tree = services.require_tree(session, tree_id)
    person = domain.create_person(**payload.person.model_dump())

    if payload.action == schemas.UnitAction.add_child:
        child = _raise_for_outcome(
            domain.add_child(tree, payload.unit_id, person, payload.mother_index)
        )
        services.add_unit(session, tree_id, child)
        result = schemas.UnitActionResult(
            person=snapshot.person_to_schema(person),
            unit=snapshot.unit_to_schema(child, []),
        )
    else:
        if payload.action == schemas.UnitAction.add_spouse:
            _raise_for_outcome(domain.add_spouse(tree, payload.unit_id, person))
        else:
            _raise_for_outcome(domain.add_mistress(tree, payload.unit_id, person))
        unit = tree.units[payload.unit_id]
        services.add_person(session, unit.id, person)
        services.update_unit(
            session,
            unit.id,
            unit_type=unit.type,
            primary_person_index=unit.primary_person_index,
        )
        result = schemas.UnitActionResult(
            person=snapshot.person_to_schema(person), unit_type=unit.type
        )

    session.commit()
    logger.info("Applied %s to unit %s in tree %s", payload.action.value, payload.unit_id, tree_id)
    return result


@router.delete("/api/trees/{tree_id}/units/{unit_id}", response_model=schemas.UnitDeleted)
def delete_unit(
    tree_id: str, unit_id: str, session: Session = Depends(get_session)
) -> schemas.UnitDeleted:
    tree = services.require_tree(session, tree_id)
    _raise_for_outcome(domain.remove_unit(tree, unit_id))

    deleted_ids = services.delete_unit(session, tree_id, unit_id)
    session.commit()
    return schemas.UnitDeleted(deleted_ids=deleted_ids)


# Persons ---------------------------------------------------------------------


@router.put("/api/trees/{tree_id}/persons/{person_id}", response_model=schemas.SuccessResult)
def update_person(
    tree_id: str,
    person_id: str,
    payload: schemas.PersonUpdate,
    session: Session = Depends(get_session),
) -> schemas.SuccessResult:
    tree = services.require_tree(session, tree_id)
    changes = payload.model_dump(exclude_unset=True)
    _raise_for_outcome(domain.update_person(tree, person_id, changes))

    services.update_person(session, person_id, changes)
    session.commit()
    return schemas.SuccessResult()


# Images ----------------------------------------------------------------------


def _image_extension(filename: Optional[str]) -> str:
    if filename and "." in filename:
        extension = filename.rsplit(".", 1)[1].lower()
        if extension:
            return extension
    return "jpg"


@router.post("/api/images", response_model=schemas.ImageUploaded, status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: Optional[UploadFile] = File(default=None),
    person_id: Optional[str] = Form(default=None, alias="personId"),
    store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_app_settings),
) -> schemas.ImageUploaded:
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

    if file.content_type not in settings.allowed_image_types:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Allowed: jpg, png, gif, webp",
        )

    data = await file.read()
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Max size: {settings.max_upload_bytes // (1024 * 1024)}MB",
        )

    name = f"{uuid.uuid4()}.{_image_extension(file.filename)}"
    key = f"{person_id}/{name}" if person_id else name
    try:
        store.put(key, data, content_type=file.content_type)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("Uploaded image %s (%d bytes)", key, len(data))
    return schemas.ImageUploaded(key=key)


@router.get("/api/images", response_model=List[schemas.ImageInfo])
def list_images(
    prefix: str = Query(default=""), store: BlobStore = Depends(get_blob_store)
) -> List[schemas.ImageInfo]:
    return [
        schemas.ImageInfo(key=item.key, size=item.size, content_type=item.content_type)
        for item in store.list(prefix)
    ]


@router.get("/api/images/{key:path}")
def get_image(key: str, store: BlobStore = Depends(get_blob_store)) -> Response:
    if not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing image key")
    try:
        blob = store.get(key)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if blob is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")

    headers = {"Cache-Control": CACHE_CONTROL}
    if blob.etag:
        headers["ETag"] = f'"{blob.etag}"'
    return Response(
        content=blob.body or b"",
        media_type=blob.content_type or "image/jpeg",
        headers=headers,
    )


@router.delete("/api/images/{key:path}", status_code=status.HTTP_204_NO_CONTENT)
def delete_image(key: str, store: BlobStore = Depends(get_blob_store)) -> Response:
    if not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing image key")
    try:
        store.delete(key)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Application -----------------------------------------------------------------


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


async def _database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error while handling %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Database error"},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; stores are opened by the lifespan, not on import."""

    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = Database(settings.database_url)
        database.create_all()
        app.state.database = database
        app.state.blob_store = create_blob_store(settings)
        logger.info("%s started with database %s", settings.app_name, database.engine.url)
        try:
            yield
        finally:
            app.state.database = None
            app.state.blob_store = None
            database.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.include_router(router)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, _database_error_handler)
    return app


app = create_app()
