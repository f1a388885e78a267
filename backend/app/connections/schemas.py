# backend/app/connections/schemas.py

"""
接続管理エンドポイントのリクエスト / レスポンス定義。

必須項目の欠落は 422 ではなく {ok: false, message} の 400 で返したいので、
リクエストモデルの項目はすべて Optional にしてルーター側で検証する。
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.notion.schemas import (
    ConnectionSummary,
    DatabasePropertyInfo,
    DatabaseSummary,
    DetectedDatabases,
)


class TokenConnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: Optional[str] = Field(None, alias="accessToken")


class ConnectionUpdateRequest(BaseModel):
    """PUT /notion/connections: ワークスペースのデータベース選択を更新する。"""

    model_config = ConfigDict(populate_by_name=True)

    workspace_id: Optional[str] = Field(None, alias="workspaceId")
    tasks_db_id: Optional[str] = Field(None, alias="tasksDbId")
    projects_db_id: Optional[str] = Field(None, alias="projectsDbId")
    sprints_db_id: Optional[str] = Field(None, alias="sprintsDbId")


class PropertyMappingUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workspace_id: Optional[str] = Field(None, alias="workspaceId")
    mapping: Optional[Dict[str, Any]] = None


class AppCredentialsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: Optional[str] = Field(None, alias="clientId")
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    redirect_uri: Optional[str] = Field(None, alias="redirectUri")


class RoleVerifyRequest(BaseModel):
    secret: Optional[str] = None


class OkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    ok: bool = False
    message: str


class ConnectionListResponse(BaseModel):
    ok: bool = True
    connections: List[ConnectionSummary]


class TokenConnectResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    workspace_name: str = Field(..., alias="workspaceName")
    detected: DetectedDatabases


class DatabaseListResponse(BaseModel):
    ok: bool = True
    databases: List[DatabaseSummary]


class PropertyListResponse(BaseModel):
    ok: bool = True
    properties: List[DatabasePropertyInfo]


class AppCredentialsStatus(BaseModel):
    """環境変数の OAuth 設定有無。シークレットそのものは返さない。"""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    has_credentials: bool = Field(..., alias="hasCredentials")
    redirect_uri: Optional[str] = Field(None, alias="redirectUri")
