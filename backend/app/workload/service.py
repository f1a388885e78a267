# backend/app/workload/service.py

"""
複数ワークスペースのタスクを集約するサービス層。

責務:
- 接続一覧の正規化（DB 未設定の除外・重複排除・共有クレデンシャルの付与）
- ワークスペースごとのタスク DB クエリ（並列、上限付き）
- 行の正規化と担当者ごとの集計（Person / load 判定）
- 呼び出し側には例外ではなくタグ付き結果（TasksResponse / PeopleResponse）を返す
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from app.notion.client import NotionAPIError, NotionClient, NotionClientError
from app.notion.config import NotionConfig, SharedConnectionSettings, get_notion_config
from app.notion.schemas import Connection, PropertyMapping

from .normalizer import assignees_of, database_label, normalize_row, space_of
from .relations import resolve_relation_titles
from .schemas import (
    FailureMode,
    LoadLevel,
    PeopleResponse,
    Person,
    PersonTask,
    Task,
    TasksResponse,
    WorkspaceError,
)

logger = logging.getLogger(__name__)

NO_CONNECTIONS_MESSAGE = (
    "No connected workspaces with database IDs. "
    "Connect and set a tasks database per workspace."
)
UNKNOWN_ERROR_MESSAGE = "Unknown error querying Notion"
ALL_WORKSPACES_FAILED_STATUS = 502

ClientFactory = Callable[[str], NotionClient]


class NoConnectionsError(RuntimeError):
    """集計対象のワークスペースが 1 件も無い（空状態。障害ではない）。"""

    def __init__(self, message: str = NO_CONNECTIONS_MESSAGE) -> None:
        super().__init__(message)
        self.message = message


class WorkspaceQueryError(RuntimeError):
    """1 ワークスペースのタスク DB クエリに失敗した。"""

    def __init__(
        self,
        connection: Connection,
        message: str,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.workspace_id = connection.workspace_id
        self.workspace_name = connection.workspace_name
        self.message = message
        self.status_code = status_code


@dataclass
class WorkspaceTasks:
    """1 ワークスペース分のクエリ結果（生の行と正規化済みタスク）。"""

    connection: Connection
    rows: List[Dict[str, Any]]
    tasks: List[Task]


@dataclass
class AggregationResult:
    workspaces: List[WorkspaceTasks] = field(default_factory=list)
    errors: List[WorkspaceError] = field(default_factory=list)

    @property
    def tasks(self) -> List[Task]:
        return [task for workspace in self.workspaces for task in workspace.tasks]

    @property
    def all_failed(self) -> bool:
        """ISOLATED モードで全ワークスペースが失敗した。"""
        return not self.workspaces and bool(self.errors)


def _failure_status(status_code: Optional[int]) -> int:
    """失敗をエラー系の HTTP ステータスにそろえる（未設定や 2xx は 500）。"""
    if status_code is None or status_code < 400:
        return 500
    return status_code


def classify_load(task_count: int) -> LoadLevel:
    """
    タスク件数だけで負荷区分を決める。

    7 件以上 -> heavy、4〜6 件 -> balanced、それ以下 -> light。
    """
    if task_count > 6:
        return LoadLevel.HEAVY
    if task_count > 3:
        return LoadLevel.BALANCED
    return LoadLevel.LIGHT


def dedupe_connections(connections: Iterable[Connection]) -> List[Connection]:
    """
    workspace_id が重複する接続を 1 件にまとめる。

    新しい接続は先頭に追加される前提なので先勝ち。
    ただし後ろの方が connected_at が新しければそちらを採用する。
    """
    kept: Dict[str, Connection] = {}
    for connection in connections:
        current = kept.get(connection.workspace_id)
        if current is None:
            kept[connection.workspace_id] = connection
        elif (connection.connected_at or 0) > (current.connected_at or 0):
            kept[connection.workspace_id] = connection
    return list(kept.values())


def shared_connection(settings: SharedConnectionSettings) -> Connection:
    """共有クレデンシャルから合成接続を作る。"""
    return Connection(
        workspace_id=settings.workspace_id,
        workspace_name=settings.workspace_name,
        access_token=settings.access_token,
        tasks_db_id=settings.database_id,
        shared=True,
    )


def _mapping_for(mappings: Optional[Mapping[str, Any]], workspace_id: str) -> PropertyMapping:
    raw = (mappings or {}).get(workspace_id)
    if isinstance(raw, PropertyMapping):
        return raw
    if isinstance(raw, dict):
        return PropertyMapping.model_validate(raw)
    return PropertyMapping()


def build_people(workspaces: Iterable[WorkspaceTasks]) -> List[Person]:
    """
    担当者 ID ごとにタスクをまとめる。担当者なしの行は "unassigned" にまとめる。

    複数担当者の行はそれぞれの担当者に入る。load は件数から毎回計算する。
    """
    people: Dict[str, Person] = {}

    for workspace in workspaces:
        connection = workspace.connection
        database = database_label(connection)

        for row, task in zip(workspace.rows, workspace.tasks):
            space = space_of(row, connection)
            person_task = PersonTask(
                id=task.page_id or task.task_id or "unknown",
                task_id=task.task_id,
                title=task.title,
                project=task.project,
                space=space,
                status=task.status,
                due=task.due,
                status_details=task.status_details,
                sprint=task.sprint,
                planned_estimate=task.planned_estimate,
                health=task.health,
            )

            for person_id, person_name in assignees_of(row):
                person = people.get(person_id)
                if person is None:
                    person = Person(id=person_id, name=person_name)
                    people[person_id] = person
                person.tasks.append(person_task)
                if space not in person.spaces:
                    person.spaces.append(space)
                if database not in person.databases:
                    person.databases.append(database)

    for person in people.values():
        person.load = classify_load(len(person.tasks))
    return list(people.values())


class WorkloadService:
    """
    接続一覧とマッピングを受け取り、統合タスク一覧 / 担当者一覧を返すサービス。

    - client_factory: アクセストークンから NotionClient を作る callable（テストで差し替え）
    - shared: 共有クレデンシャル（None なら無効）。グローバル状態ではなく注入する
    - failure_mode: ワークスペース単位の失敗の扱い（デフォルトは全体失敗）
    """

    def __init__(
        self,
        *,
        client_factory: Optional[ClientFactory] = None,
        config: Optional[NotionConfig] = None,
        shared: Optional[SharedConnectionSettings] = None,
        failure_mode: FailureMode = FailureMode.ALL_OR_NOTHING,
    ) -> None:
        self.config = config or get_notion_config()
        self._client_factory = client_factory or (
            lambda token: NotionClient(token, config=self.config)
        )
        self._shared = shared
        self.failure_mode = failure_mode

    def resolve_connections(self, connections: Iterable[Connection]) -> List[Connection]:
        """
        集計対象の接続一覧を作る。

        1. タスク DB 未設定の接続は黙って除外（設定途中のワークスペース）
        2. workspace_id の重複を排除
        3. 共有クレデンシャルがあれば先頭に追加
        """
        usable = [c for c in connections if c.tasks_db_id]
        resolved = dedupe_connections(usable)
        if self._shared is not None:
            resolved.insert(0, shared_connection(self._shared))
        return resolved

    def fetch_workspace(self, connection: Connection, mapping: PropertyMapping) -> WorkspaceTasks:
        """
        1 ワークスペースのタスク DB を 1 ページ分クエリし、全行を正規化する。
        """
        client = self._client_factory(connection.access_token)
        try:
            rows = client.query_database(
                connection.tasks_db_id, page_size=self.config.query_page_size
            )
        except NotionAPIError as exc:
            raise WorkspaceQueryError(connection, exc.message, exc.status_code) from exc
        except NotionClientError as exc:
            raise WorkspaceQueryError(
                connection,
                str(exc)
                or f"Failed to query Notion for workspace {connection.workspace_name}",
            ) from exc

        rows = [row for row in rows if isinstance(row, dict)]
        relation_titles = resolve_relation_titles(
            rows, client, mapping, max_workers=self.config.max_concurrency
        )
        tasks = [normalize_row(row, connection, mapping, relation_titles) for row in rows]
        return WorkspaceTasks(connection=connection, rows=rows, tasks=tasks)

    def aggregate(
        self,
        connections: Iterable[Connection],
        mappings: Optional[Mapping[str, Any]] = None,
        *,
        failure_mode: Optional[FailureMode] = None,
    ) -> AggregationResult:
        """
        全ワークスペースを並列にクエリして結果をまとめる。

        :raises NoConnectionsError: 対象の接続が 1 件も無い場合
        :raises WorkspaceQueryError: ALL_OR_NOTHING で、いずれかのクエリが失敗した場合
        """
        mode = failure_mode or self.failure_mode
        targets = self.resolve_connections(connections)
        if not targets:
            raise NoConnectionsError()

        results: Dict[int, WorkspaceTasks] = {}
        errors: List[WorkspaceError] = []
        workers = max(1, min(self.config.max_concurrency, len(targets)))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(
                    self.fetch_workspace,
                    connection,
                    _mapping_for(mappings, connection.workspace_id),
                ): index
                for index, connection in enumerate(targets)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    results[index] = future.result()
                except WorkspaceQueryError as exc:
                    logger.warning(
                        "Workspace query failed. workspace=%s error=%s",
                        exc.workspace_name,
                        exc.message,
                    )
                    if mode is FailureMode.ALL_OR_NOTHING:
                        for pending in futures:
                            pending.cancel()
                        raise
                    errors.append(
                        WorkspaceError(
                            workspace_id=exc.workspace_id,
                            workspace_name=exc.workspace_name,
                            message=exc.message,
                        )
                    )

        result = AggregationResult(
            workspaces=[results[index] for index in sorted(results)],
            errors=errors,
        )
        logger.info(
            "Aggregated %d tasks from %d workspaces (%d failed).",
            len(result.tasks),
            len(result.workspaces),
            len(errors),
        )
        return result

    def get_tasks(
        self,
        connections: Iterable[Connection],
        mappings: Optional[Mapping[str, Any]] = None,
        *,
        failure_mode: Optional[FailureMode] = None,
    ) -> TasksResponse:
        """
        統合タスク一覧を返す。例外は投げず、失敗は ok=False で表す。
        """
        try:
            result = self.aggregate(connections, mappings, failure_mode=failure_mode)
        except NoConnectionsError as exc:
            return TasksResponse(ok=False, message=exc.message, status_code=400)
        except WorkspaceQueryError as exc:
            return TasksResponse(
                ok=False,
                message=exc.message,
                status_code=_failure_status(exc.status_code),
            )
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error while aggregating tasks.")
            return TasksResponse(ok=False, message=UNKNOWN_ERROR_MESSAGE, status_code=500)

        if result.all_failed:
            return TasksResponse(
                ok=False,
                message=result.errors[0].message,
                errors=result.errors,
                status_code=ALL_WORKSPACES_FAILED_STATUS,
            )
        return TasksResponse(ok=True, tasks=result.tasks, errors=result.errors)

    def get_people(
        self,
        connections: Iterable[Connection],
        mappings: Optional[Mapping[str, Any]] = None,
        *,
        failure_mode: Optional[FailureMode] = None,
    ) -> PeopleResponse:
        """
        担当者ごとの集計を返す。例外は投げず、失敗は ok=False で表す。
        """
        try:
            result = self.aggregate(connections, mappings, failure_mode=failure_mode)
        except NoConnectionsError as exc:
            return PeopleResponse(ok=False, message=exc.message, status_code=400)
        except WorkspaceQueryError as exc:
            return PeopleResponse(
                ok=False,
                message=exc.message,
                status_code=_failure_status(exc.status_code),
            )
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error while aggregating people.")
            return PeopleResponse(ok=False, message=UNKNOWN_ERROR_MESSAGE, status_code=500)

        if result.all_failed:
            return PeopleResponse(
                ok=False,
                message=result.errors[0].message,
                errors=result.errors,
                status_code=ALL_WORKSPACES_FAILED_STATUS,
            )
        return PeopleResponse(
            ok=True,
            people=build_people(result.workspaces),
            errors=result.errors,
        )
