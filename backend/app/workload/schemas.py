# backend/app/workload/schemas.py

"""
ワークロード集計で扱う正規化済みモデル。

- Task: Notion の 1 行をスキーマ差異を吸収して統一形にしたもの
- Person: 担当者ごとにタスクをまとめた派生モデル（毎回再計算、保存しない）
"""

from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Estimate = Union[int, float, str]

UNASSIGNED_ID = "unassigned"
UNASSIGNED_NAME = "Unassigned"
SHARED_DATABASE_LABEL = "shared"


class LoadLevel(str, Enum):
    """タスク件数から決まる負荷区分。"""

    LIGHT = "light"
    BALANCED = "balanced"
    HEAVY = "heavy"


class FailureMode(str, Enum):
    """
    ワークスペース単位のクエリ失敗時の扱い。

    - ALL_OR_NOTHING: 1 件でも失敗したら集計全体を失敗にする（デフォルト）
    - ISOLATED: 失敗したワークスペースだけ除外し、errors に記録して続行する
    """

    ALL_OR_NOTHING = "all_or_nothing"
    ISOLATED = "isolated"


class Task(BaseModel):
    """
    正規化済みタスク。

    title / status / project / sprint は必ず空でない文字列になる。
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    page_id: str = Field(..., alias="pageId", description="Notion ページ ID")
    task_id: str = Field(..., alias="taskId", description="人が読むタスク ID（無ければ pageId）")
    title: str = Field(..., description="タスク名（無ければ Untitled task）")
    status: str = Field(..., description="ステータス名（無ければ Unknown）")
    project: str = Field(..., description="プロジェクト名（無ければワークスペース名）")
    due: Optional[str] = Field(None, description="期日（ISO 日付文字列）")
    sprint: str = Field(..., description="スプリント名（無ければ No Sprint added）")
    status_details: Optional[str] = Field(None, alias="statusDetails")
    planned_estimate: Optional[Estimate] = Field(
        None,
        alias="plannedEstimate",
        description="見積もり。数値またはフリーテキスト",
    )
    health: Optional[str] = None
    workspace_id: str = Field(..., alias="workspaceId")
    workspace_name: str = Field(..., alias="workspaceName")
    database_id: str = Field(..., alias="databaseId")


class PersonTask(BaseModel):
    """Person.tasks に入るタスク表現（スペース名付き）。"""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    task_id: str = Field(..., alias="taskId")
    title: str
    project: str
    space: str
    status: str
    due: Optional[str] = None
    status_details: Optional[str] = Field(None, alias="statusDetails")
    sprint: str
    planned_estimate: Optional[Estimate] = Field(None, alias="plannedEstimate")
    health: Optional[str] = None


class Person(BaseModel):
    """担当者ごとの集計結果。"""

    id: str
    name: str
    role: str = "Member"
    load: LoadLevel = LoadLevel.LIGHT
    spaces: List[str] = Field(default_factory=list)
    databases: List[str] = Field(default_factory=list)
    tasks: List[PersonTask] = Field(default_factory=list)


class WorkspaceError(BaseModel):
    """ISOLATED モードで除外されたワークスペースの情報。"""

    model_config = ConfigDict(populate_by_name=True)

    workspace_id: str = Field(..., alias="workspaceId")
    workspace_name: str = Field(..., alias="workspaceName")
    message: str


class TasksResponse(BaseModel):
    """get_tasks の結果（成功 / 失敗のタグ付き）。"""

    ok: bool
    message: Optional[str] = None
    tasks: List[Task] = Field(default_factory=list)
    errors: List[WorkspaceError] = Field(default_factory=list)
    status_code: int = Field(200, exclude=True)


class PeopleResponse(BaseModel):
    """get_people の結果（成功 / 失敗のタグ付き）。"""

    ok: bool
    message: Optional[str] = None
    people: List[Person] = Field(default_factory=list)
    errors: List[WorkspaceError] = Field(default_factory=list)
    status_code: int = Field(200, exclude=True)
