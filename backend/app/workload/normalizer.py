# backend/app/workload/normalizer.py

"""
Notion の生の行（ページ）を正規化済み Task に変換する。

副作用なし・例外なし。同じ入力からは常に同じ Task を返す。
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.notion.properties import first_select_or_multi_select, people_of
from app.notion.schemas import Connection

from .fields import resolve_field
from .schemas import SHARED_DATABASE_LABEL, UNASSIGNED_ID, UNASSIGNED_NAME, Task

ASSIGNEE_PROPERTIES: Tuple[str, ...] = ("Assignee", "Owner", "Owners")
SPACE_PROPERTY = "Space"


def _properties_of(row: Any) -> Dict[str, Any]:
    properties = row.get("properties") if isinstance(row, dict) else None
    return properties if isinstance(properties, dict) else {}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def database_label(connection: Connection) -> str:
    """
    タスクに付与する DB 識別子。共有接続では実 ID を出さず "shared" にする。
    """
    if connection.shared:
        return SHARED_DATABASE_LABEL
    return connection.tasks_db_id or ""


def normalize_row(
    row: Any,
    connection: Connection,
    mapping: Any = None,
    relation_titles: Optional[Mapping[str, str]] = None,
) -> Task:
    """
    1 行を Task に変換する。

    title / status / project / sprint は必ず空でない文字列になる。
    project / sprint はリレーション先タイトル（解決済みなら）を最優先する。
    """
    props = _properties_of(row)
    raw_id = row.get("id") if isinstance(row, dict) else None
    page_id = raw_id if isinstance(raw_id, str) else ""
    titles = relation_titles or {}

    def resolve(field: str, default: Any = None) -> Any:
        return resolve_field(
            props,
            field,
            mapping,
            relation_titles=titles,
            default=default,
        )

    return Task(
        page_id=page_id,
        task_id=_text(resolve("task_id")) or page_id,
        title=_text(resolve("title")) or "Untitled task",
        status=_text(resolve("status")) or "Unknown",
        project=_text(resolve("project", default=connection.workspace_name))
        or "Project",
        due=_text(resolve("due")),
        sprint=_text(resolve("sprint")) or "No Sprint added",
        status_details=_text(resolve("status_details")),
        planned_estimate=resolve("planned_estimate"),
        health=_text(resolve("health")),
        workspace_id=connection.workspace_id,
        workspace_name=connection.workspace_name,
        database_id=database_label(connection),
    )


def assignees_of(row: Any) -> List[Tuple[str, str]]:
    """
    行の担当者を (id, 表示名) のリストで返す。

    Assignee / Owner / Owners のうち people 列として存在する最初のものを使う。
    空なら ("unassigned", "Unassigned") の 1 件。
    """
    props = _properties_of(row)

    people: List[Dict[str, Any]] = []
    for name in ASSIGNEE_PROPERTIES:
        found = people_of(props.get(name))
        if found is not None:
            people = found
            break

    assignees = []
    for person in people:
        person_id = person.get("id")
        if not isinstance(person_id, str) or not person_id:
            continue
        name = person.get("name")
        assignees.append((person_id, name if isinstance(name, str) and name else person_id))

    return assignees or [(UNASSIGNED_ID, UNASSIGNED_NAME)]


def space_of(row: Any, connection: Connection) -> str:
    """Space 列（select / multi_select）の値。無ければワークスペース名。"""
    return (
        first_select_or_multi_select(_properties_of(row).get(SPACE_PROPERTY))
        or connection.workspace_name
    )
