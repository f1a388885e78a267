# backend/app/notion/schemas.py

"""
Notion 接続まわりの入出力スキーマ定義。

JSON（Cookie / API）上は camelCase、Python 側は snake_case で扱う。
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# マッピング可能なセマンティックフィールド（snake_case 名 -> JSON キー）
MAPPING_FIELDS: Dict[str, str] = {
    "title": "title",
    "task_id": "taskId",
    "status": "status",
    "project": "project",
    "due": "due",
    "status_details": "statusDetails",
    "sprint": "sprint",
    "planned_estimate": "plannedEstimate",
    "health": "health",
}


class Connection(BaseModel):
    """
    連携済みの Notion ワークスペース 1 件。

    workspace_id が一意キー。access_token は秘匿情報なのでレスポンスには含めない。
    """

    model_config = ConfigDict(populate_by_name=True)

    workspace_id: str = Field(..., alias="workspaceId", description="Notion ワークスペース ID")
    workspace_name: str = Field(..., alias="workspaceName", description="表示用ワークスペース名")
    access_token: str = Field(..., alias="accessToken", description="Notion アクセストークン")
    tasks_db_id: Optional[str] = Field(None, alias="tasksDbId", description="タスク DB の ID")
    projects_db_id: Optional[str] = Field(None, alias="projectsDbId", description="プロジェクト DB の ID")
    sprints_db_id: Optional[str] = Field(None, alias="sprintsDbId", description="スプリント DB の ID")
    bot_id: Optional[str] = Field(None, alias="botId")
    connected_at: Optional[int] = Field(
        None,
        alias="connectedAt",
        description="連携した時刻（UNIX エポックミリ秒）",
    )
    shared: bool = Field(
        False,
        description="サーバ提供の共有クレデンシャル由来なら True",
    )


class ConnectionSummary(BaseModel):
    """GET /notion/connections で返す、トークンを除いた接続情報。"""

    model_config = ConfigDict(populate_by_name=True)

    workspace_id: str = Field(..., alias="workspaceId")
    workspace_name: str = Field(..., alias="workspaceName")
    tasks_db_id: str = Field("", alias="tasksDbId")
    projects_db_id: str = Field("", alias="projectsDbId")
    sprints_db_id: str = Field("", alias="sprintsDbId")
    connected_at: Optional[int] = Field(None, alias="connectedAt")

    @classmethod
    def from_connection(cls, connection: Connection) -> "ConnectionSummary":
        return cls(
            workspace_id=connection.workspace_id,
            workspace_name=connection.workspace_name,
            tasks_db_id=connection.tasks_db_id or "",
            projects_db_id=connection.projects_db_id or "",
            sprints_db_id=connection.sprints_db_id or "",
            connected_at=connection.connected_at,
        )


class PropertyMapping(BaseModel):
    """
    ワークスペースごとの「セマンティックフィールド -> Notion プロパティ名」上書き設定。

    未指定のフィールドは慣例名によるフォールバックで解決する。
    空文字は保持しない（境界で None に正規化する）。
    """

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    task_id: Optional[str] = Field(None, alias="taskId")
    status: Optional[str] = None
    project: Optional[str] = None
    due: Optional[str] = None
    status_details: Optional[str] = Field(None, alias="statusDetails")
    sprint: Optional[str] = None
    planned_estimate: Optional[str] = Field(None, alias="plannedEstimate")
    health: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _sanitize(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        value = value.strip()
        return value or None

    def get(self, field: str) -> Optional[str]:
        """snake_case のフィールド名でプロパティ名を引く。"""
        if field not in MAPPING_FIELDS:
            return None
        return getattr(self, field)

    def to_json(self) -> Dict[str, str]:
        """Cookie / API 用の camelCase 辞書（未設定キーは含めない）。"""
        return self.model_dump(by_alias=True, exclude_none=True)


class DatabaseSummary(BaseModel):
    """search で見つかったデータベース 1 件。"""

    id: str
    title: str


class DatabasePropertyInfo(BaseModel):
    """タスク DB のスキーマに含まれるプロパティ 1 件。"""

    name: str
    type: str = "unknown"


class DetectedDatabases(BaseModel):
    """トークン直接登録時に自動検出したデータベース ID。"""

    model_config = ConfigDict(populate_by_name=True)

    tasks_db_id: str = Field("", alias="tasksDbId")
    projects_db_id: str = Field("", alias="projectsDbId")
    sprints_db_id: str = Field("", alias="sprintsDbId")
