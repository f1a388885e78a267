# backend/app/connections/router.py

"""
ワークスペース接続・プロパティマッピング・OAuth 用の FastAPI ルーター定義。

- /notion/connections        接続一覧の参照 / 登録 / 更新 / 削除
- /notion/property-mapping   ワークスペースごとのマッピング参照 / 更新
- /notion/databases          参照可能なデータベース一覧
- /notion/properties         タスク DB のプロパティ一覧
- /notion/auth/*             OAuth アプリ設定・認可開始・コールバック
- /role/verify               マネージャー用シークレットの確認
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from app.notion.client import NotionAPIError, NotionClientError
from app.notion.config import OAuthAppSettings, get_oauth_app_settings
from app.notion.schemas import Connection, ConnectionSummary, PropertyMapping
from app.utils.config import get_env

from . import store
from .schemas import (
    AppCredentialsRequest,
    AppCredentialsStatus,
    ConnectionListResponse,
    ConnectionUpdateRequest,
    DatabaseListResponse,
    OkResponse,
    PropertyListResponse,
    PropertyMappingUpdateRequest,
    RoleVerifyRequest,
    TokenConnectRequest,
    TokenConnectResponse,
)
from .service import ConnectionService, DatabaseDetectionError, build_authorize_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notion", tags=["notion-connections"])
role_router = APIRouter(prefix="/role", tags=["role"])


# テスト時に FastAPI dependency_overrides で差し替え可能にする
def get_connection_service() -> ConnectionService:
    return ConnectionService()


def _fail(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "message": message})


def _upstream_status(exc: NotionClientError) -> int:
    if isinstance(exc, NotionAPIError) and exc.status_code >= 400:
        return exc.status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _same_secret(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def _find_connection(request: Request, workspace_id: str) -> Optional[Connection]:
    for connection in store.read_connections(request.cookies):
        if connection.workspace_id == workspace_id:
            return connection
    return None


@router.get("/connections", response_model=ConnectionListResponse)
def list_connections(request: Request) -> ConnectionListResponse:
    """Cookie に保存された接続一覧を返す（アクセストークンは含めない）。"""
    connections = store.read_connections(request.cookies)
    return ConnectionListResponse(
        connections=[ConnectionSummary.from_connection(c) for c in connections]
    )


@router.post(
    "/connections",
    response_model=TokenConnectResponse,
    summary="アクセストークンを直接登録",
)
def connect_with_token(
    body: TokenConnectRequest,
    request: Request,
    response: Response,
    service: ConnectionService = Depends(get_connection_service),
):
    """
    インテグレーションのアクセストークンからワークスペースを登録する。

    Tasks / Projects / Sprints の各データベースは名前から自動検出する。
    """
    if not body.access_token:
        return _fail("accessToken is required")

    try:
        connection, detected = service.connect_with_token(body.access_token)
    except DatabaseDetectionError as exc:
        return _fail(str(exc))
    except NotionClientError as exc:
        logger.warning("Failed to save integration token. error=%s", exc)
        return _fail(str(exc) or "Unable to save integration token", status.HTTP_500_INTERNAL_SERVER_ERROR)

    current = store.read_connections(request.cookies)
    store.write_connections(response, store.upsert_connection(current, connection))
    return TokenConnectResponse(workspace_name=connection.workspace_name, detected=detected)


@router.put("/connections", response_model=OkResponse)
def update_connection(body: ConnectionUpdateRequest, request: Request, response: Response):
    """ワークスペースのタスク / プロジェクト / スプリント DB の選択を更新する。"""
    if (
        not body.workspace_id
        or body.tasks_db_id is None
        or body.projects_db_id is None
        or body.sprints_db_id is None
    ):
        return _fail("workspaceId, tasksDbId, projectsDbId, sprintsDbId are required")

    updated = [
        c.model_copy(
            update={
                "tasks_db_id": body.tasks_db_id,
                "projects_db_id": body.projects_db_id,
                "sprints_db_id": body.sprints_db_id,
            }
        )
        if c.workspace_id == body.workspace_id
        else c
        for c in store.read_connections(request.cookies)
    ]
    store.write_connections(response, updated)
    return OkResponse()


@router.delete("/connections", response_model=OkResponse)
def delete_connection(
    request: Request,
    response: Response,
    workspace_id: Optional[str] = Query(None, alias="workspaceId"),
):
    """接続を 1 件削除する。最後の 1 件なら Cookie ごと消す。"""
    if not workspace_id:
        return _fail("workspaceId is required")

    remaining = [
        c for c in store.read_connections(request.cookies) if c.workspace_id != workspace_id
    ]
    store.write_connections(response, remaining)
    return OkResponse()


@router.get("/property-mapping")
def get_property_mapping(
    request: Request,
    workspace_id: Optional[str] = Query(None, alias="workspaceId"),
) -> dict:
    """workspaceId 指定時はそのワークスペースの、無ければ全マッピングを返す。"""
    mappings = store.read_mappings(request.cookies)
    if workspace_id:
        mapping = mappings.get(workspace_id, PropertyMapping())
        return {"ok": True, "mapping": mapping.to_json()}
    return {
        "ok": True,
        "mappings": {key: mapping.to_json() for key, mapping in mappings.items()},
    }


@router.put("/property-mapping")
def update_property_mapping(
    body: PropertyMappingUpdateRequest,
    request: Request,
    response: Response,
):
    """
    マッピングを保存する。既知の 9 キーの、空でない文字列だけを残す。
    """
    if not body.workspace_id or body.mapping is None:
        return _fail("workspaceId and mapping are required")

    sanitized = PropertyMapping.model_validate(body.mapping)
    mappings = store.read_mappings(request.cookies)
    mappings[body.workspace_id] = sanitized
    store.write_mappings(response, mappings)
    return {"ok": True, "mapping": sanitized.to_json()}


@router.get("/databases", response_model=DatabaseListResponse)
def list_databases(
    request: Request,
    workspace_id: Optional[str] = Query(None, alias="workspaceId"),
    service: ConnectionService = Depends(get_connection_service),
):
    """接続済みワークスペースから参照可能なデータベースを一覧する。"""
    if not workspace_id:
        return _fail("workspaceId is required")

    connection = _find_connection(request, workspace_id)
    if connection is None:
        return _fail("Workspace not found in your connections", status.HTTP_404_NOT_FOUND)

    try:
        databases = service.list_databases(connection)
    except NotionClientError as exc:
        return _fail(str(exc) or "Failed to list databases", _upstream_status(exc))
    return DatabaseListResponse(databases=databases)


@router.get("/properties", response_model=PropertyListResponse)
def list_properties(
    request: Request,
    workspace_id: Optional[str] = Query(None, alias="workspaceId"),
    service: ConnectionService = Depends(get_connection_service),
):
    """タスク DB のプロパティ名と型を返す（マッピング画面用）。"""
    if not workspace_id:
        return _fail("workspaceId is required")

    connection = _find_connection(request, workspace_id)
    if connection is None or not connection.tasks_db_id:
        return _fail("Workspace not found or missing tasks database", status.HTTP_404_NOT_FOUND)

    try:
        properties = service.list_properties(connection)
    except NotionClientError as exc:
        return _fail(str(exc) or "Failed to fetch properties", _upstream_status(exc))
    return PropertyListResponse(properties=properties)


@router.post("/auth/credentials", response_model=OkResponse)
def save_app_credentials(body: AppCredentialsRequest, response: Response):
    """OAuth アプリのクレデンシャルを Cookie に保存する。"""
    if not (body.client_id and body.client_secret and body.redirect_uri):
        return _fail("clientId, clientSecret, and redirectUri are required")

    store.write_app_credentials(
        response,
        OAuthAppSettings(
            client_id=body.client_id,
            client_secret=body.client_secret,
            redirect_uri=body.redirect_uri,
        ),
    )
    return OkResponse()


@router.get("/auth/credentials", response_model=AppCredentialsStatus)
def get_app_credentials_status() -> AppCredentialsStatus:
    """環境変数の OAuth 設定有無と redirectUri だけを返す（シークレットは返さない）。"""
    settings = get_oauth_app_settings()
    return AppCredentialsStatus(
        has_credentials=settings is not None,
        redirect_uri=get_env("NOTION_REDIRECT_URI", required=False),
    )


@router.get("/auth/start")
def start_oauth(request: Request):
    """state を発行して Notion の認可画面へリダイレクトする。"""
    credentials = store.read_app_credentials(request.cookies, get_oauth_app_settings())
    if credentials is None:
        return _fail(
            "Missing Notion client credentials. Save them on the Connections page or set env vars.",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    state = secrets.token_urlsafe(24)
    response = RedirectResponse(build_authorize_url(credentials, state))
    store.write_oauth_state(response, state)
    return response


@router.get("/auth/callback")
def oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    service: ConnectionService = Depends(get_connection_service),
):
    """
    OAuth コールバック。state を検証し、code を交換して接続を追加する。
    """
    if error:
        return _fail(f"Notion OAuth error: {error}")
    if not code or not state:
        return _fail("Missing code or state in callback")

    saved_state = request.cookies.get(store.OAUTH_STATE_COOKIE)
    if not saved_state or not _same_secret(saved_state, state):
        return _fail("Invalid OAuth state")

    credentials = store.read_app_credentials(request.cookies, get_oauth_app_settings())
    if credentials is None:
        return _fail("Missing Notion app credentials", status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        connection = service.complete_oauth(code, credentials)
    except NotionClientError as exc:
        return _fail(str(exc) or "Failed to exchange code")

    merged = store.upsert_connection(store.read_connections(request.cookies), connection)
    response = RedirectResponse("/connections")
    store.write_connections(response, merged)
    store.clear_oauth_state(response)
    return response


@role_router.post("/verify", response_model=OkResponse)
def verify_role(body: RoleVerifyRequest):
    """マネージャー用シークレットを MANAGER_SECRET と照合する。"""
    if not body.secret:
        return _fail("Secret is required")

    manager_secret = get_env("MANAGER_SECRET", required=False)
    if not manager_secret:
        return _fail("Manager secret not configured", status.HTTP_500_INTERNAL_SERVER_ERROR)

    if not _same_secret(body.secret, manager_secret):
        return _fail("Invalid manager secret", status.HTTP_401_UNAUTHORIZED)

    return OkResponse()
