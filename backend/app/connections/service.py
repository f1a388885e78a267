# backend/app/connections/service.py

"""
ワークスペース接続の登録・参照まわりのサービス層。

- アクセストークン直接登録（ワークスペース情報とデータベースの自動検出）
- データベース一覧 / タスク DB のプロパティ一覧
- OAuth の認可 URL 生成と code 交換
"""

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple
from urllib.parse import urlencode

from app.notion.client import (
    NotionAPIError,
    NotionClient,
    NotionClientError,
    exchange_oauth_code,
)
from app.notion.config import NotionConfig, OAuthAppSettings, get_notion_config
from app.notion.properties import plain_text_from
from app.notion.schemas import (
    Connection,
    DatabasePropertyInfo,
    DatabaseSummary,
    DetectedDatabases,
)

logger = logging.getLogger(__name__)

NOTION_AUTHORIZE_URL = "https://api.notion.com/v1/oauth/authorize"

DEFAULT_WORKSPACE_ID = "workspace"
DEFAULT_WORKSPACE_NAME = "Notion Workspace"

TASKS_PATTERNS: Tuple[Pattern[str], ...] = (re.compile("task"), re.compile("todo"))
PROJECTS_PATTERNS: Tuple[Pattern[str], ...] = (re.compile("project"),)
SPRINTS_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile("sprint"),
    re.compile("iteration"),
    re.compile("cycle"),
)


class DatabaseDetectionError(RuntimeError):
    """Tasks / Projects / Sprints のいずれかを自動検出できなかった。"""

    def __init__(self, detected: DetectedDatabases) -> None:
        super().__init__(
            "Could not auto-detect Tasks, Projects, or Sprints databases. "
            "Please name them accordingly (Tasks/Projects/Sprints) and try again, or use OAuth."
        )
        self.detected = detected


def _now_millis() -> int:
    return int(time.time() * 1000)


def _database_title(raw: Dict[str, Any]) -> str:
    return plain_text_from(raw, "title") or "Untitled"


def to_database_summaries(results: Sequence[Any]) -> List[DatabaseSummary]:
    """search 結果を {id, title} に変換する。id の無いものは捨てる。"""
    summaries = []
    for raw in results:
        if not isinstance(raw, dict):
            continue
        database_id = raw.get("id")
        if not isinstance(database_id, str) or not database_id:
            continue
        summaries.append(DatabaseSummary(id=database_id, title=_database_title(raw)))
    return summaries


def pick_database(
    databases: Sequence[DatabaseSummary],
    patterns: Sequence[Pattern[str]],
) -> str:
    """タイトル（小文字化）がいずれかのパターンに一致する最初の DB の ID。"""
    for database in databases:
        title = database.title.lower()
        if any(pattern.search(title) for pattern in patterns):
            return database.id
    return ""


def detect_databases(databases: Sequence[DatabaseSummary]) -> DetectedDatabases:
    return DetectedDatabases(
        tasks_db_id=pick_database(databases, TASKS_PATTERNS),
        projects_db_id=pick_database(databases, PROJECTS_PATTERNS),
        sprints_db_id=pick_database(databases, SPRINTS_PATTERNS),
    )


def _workspace_identity(me: Dict[str, Any]) -> Tuple[str, str]:
    bot = me.get("bot") if isinstance(me.get("bot"), dict) else {}
    owner = bot.get("owner") if isinstance(bot.get("owner"), dict) else {}

    workspace_id = me.get("id") or DEFAULT_WORKSPACE_ID
    workspace_name = (
        me.get("name")
        or bot.get("workspace_name")
        or owner.get("workspace_name")
        or DEFAULT_WORKSPACE_NAME
    )
    return workspace_id, workspace_name


def build_authorize_url(credentials: OAuthAppSettings, state: str) -> str:
    """Notion の OAuth 認可画面 URL を組み立てる。"""
    query = urlencode(
        {
            "response_type": "code",
            "owner": "workspace",
            "client_id": credentials.client_id,
            "redirect_uri": credentials.redirect_uri,
            "state": state,
        }
    )
    return f"{NOTION_AUTHORIZE_URL}?{query}"


class ConnectionService:
    """
    NotionClient を使って接続の登録・参照を行うサービス。

    client_factory を差し替えればテストで API を呼ばずに済む。
    """

    def __init__(
        self,
        *,
        client_factory: Optional[Callable[[str], NotionClient]] = None,
        config: Optional[NotionConfig] = None,
    ) -> None:
        self.config = config or get_notion_config()
        self._client_factory = client_factory or (
            lambda token: NotionClient(token, config=self.config)
        )

    def connect_with_token(self, access_token: str) -> Tuple[Connection, DetectedDatabases]:
        """
        アクセストークンから接続を作る。

        1. /users/me でワークスペース情報を取得（失敗時はデフォルト値）
        2. /search でデータベースを一覧し、名前から Tasks / Projects / Sprints を推定

        :raises DatabaseDetectionError: 3 種のいずれかが見つからない場合
        :raises NotionClientError: データベース一覧の取得に失敗した場合
        """
        client = self._client_factory(access_token)

        try:
            workspace_id, workspace_name = _workspace_identity(client.get_me())
        except NotionClientError as exc:
            logger.warning("Failed to resolve workspace identity; using defaults. error=%s", exc)
            workspace_id, workspace_name = DEFAULT_WORKSPACE_ID, DEFAULT_WORKSPACE_NAME

        databases = to_database_summaries(client.search_databases())
        detected = detect_databases(databases)
        if not (detected.tasks_db_id and detected.projects_db_id and detected.sprints_db_id):
            raise DatabaseDetectionError(detected)

        connection = Connection(
            workspace_id=workspace_id,
            workspace_name=workspace_name,
            access_token=access_token,
            tasks_db_id=detected.tasks_db_id,
            projects_db_id=detected.projects_db_id,
            sprints_db_id=detected.sprints_db_id,
            connected_at=_now_millis(),
        )
        return connection, detected

    def list_databases(self, connection: Connection) -> List[DatabaseSummary]:
        client = self._client_factory(connection.access_token)
        return to_database_summaries(client.search_databases())

    def list_properties(self, connection: Connection) -> List[DatabasePropertyInfo]:
        """タスク DB のスキーマからプロパティ名と型の一覧を返す。"""
        client = self._client_factory(connection.access_token)
        schema = client.retrieve_database(connection.tasks_db_id)

        properties = schema.get("properties")
        if not isinstance(properties, dict):
            return []
        return [
            DatabasePropertyInfo(
                name=name,
                type=(meta.get("type") if isinstance(meta, dict) else None) or "unknown",
            )
            for name, meta in properties.items()
        ]

    def complete_oauth(self, code: str, credentials: OAuthAppSettings) -> Connection:
        """
        authorization code を交換して新しい接続を作る。

        :raises NotionClientError: 交換に失敗した場合（メッセージは Notion のもの）
        """
        payload = exchange_oauth_code(
            code,
            client_id=credentials.client_id,
            client_secret=credentials.client_secret,
            redirect_uri=credentials.redirect_uri,
            config=self.config,
        )
        if not payload.get("access_token"):
            raise NotionAPIError("Failed to exchange code", 400)

        return Connection(
            workspace_id=payload.get("workspace_id") or DEFAULT_WORKSPACE_ID,
            workspace_name=payload.get("workspace_name") or DEFAULT_WORKSPACE_NAME,
            access_token=payload["access_token"],
            bot_id=payload.get("bot_id"),
            connected_at=_now_millis(),
        )
