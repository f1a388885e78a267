# backend/app/connections/store.py

"""
ブラウザごとの接続情報を Cookie に保存・読み出しするモジュール。

- 接続一覧（アクセストークン含む。HttpOnly）
- ワークスペースごとのプロパティマッピング
- OAuth アプリのクレデンシャル
- OAuth の state（10 分で失効）

値はすべて JSON 文字列。壊れた Cookie は「未設定」として扱う。
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from fastapi import Response
from pydantic import ValidationError

from app.notion.config import OAuthAppSettings
from app.notion.schemas import Connection, PropertyMapping

logger = logging.getLogger(__name__)

CONNECTIONS_COOKIE = "notion_connections"
PROPERTY_MAPPING_COOKIE = "notion_property_mappings"
APP_CREDENTIALS_COOKIE = "notion_app_credentials"
OAUTH_STATE_COOKIE = "notion_oauth_state"

COOKIE_MAX_AGE = 60 * 60 * 24 * 30
OAUTH_STATE_MAX_AGE = 60 * 10


def _load_json(cookies: Mapping[str, str], name: str) -> Any:
    raw = cookies.get(name)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed cookie. name=%s", name)
        return None


def _set_json_cookie(response: Response, name: str, value: Any, max_age: int = COOKIE_MAX_AGE) -> None:
    response.set_cookie(
        name,
        json.dumps(value, separators=(",", ":")),
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
    )


def read_connections(cookies: Mapping[str, str]) -> List[Connection]:
    """
    Cookie から接続一覧を読む。

    workspaceId / workspaceName / accessToken のどれかが欠けた要素は捨てる。
    """
    parsed = _load_json(cookies, CONNECTIONS_COOKIE)
    if not isinstance(parsed, list):
        return []

    connections = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        if not (item.get("workspaceId") and item.get("workspaceName") and item.get("accessToken")):
            continue
        try:
            connections.append(Connection.model_validate(item))
        except ValidationError:
            logger.warning(
                "Dropping invalid connection entry. workspace_id=%s",
                item.get("workspaceId"),
            )
    return connections


def upsert_connection(connections: List[Connection], connection: Connection) -> List[Connection]:
    """
    新しい接続を先頭に追加し、同じ workspace_id の古い接続を取り除く。
    """
    return [connection] + [c for c in connections if c.workspace_id != connection.workspace_id]


def write_connections(response: Response, connections: List[Connection]) -> None:
    """接続一覧を Cookie に書く。空になった場合は Cookie を削除する。"""
    if not connections:
        response.delete_cookie(CONNECTIONS_COOKIE, path="/")
        return

    _set_json_cookie(
        response,
        CONNECTIONS_COOKIE,
        [c.model_dump(by_alias=True, exclude_none=True, exclude={"shared"}) for c in connections],
    )


def read_mappings(cookies: Mapping[str, str]) -> Dict[str, PropertyMapping]:
    """Cookie からワークスペース ID -> PropertyMapping の辞書を読む。"""
    parsed = _load_json(cookies, PROPERTY_MAPPING_COOKIE)
    if not isinstance(parsed, dict):
        return {}

    return {
        workspace_id: PropertyMapping.model_validate(mapping)
        for workspace_id, mapping in parsed.items()
        if isinstance(mapping, dict)
    }


def write_mappings(response: Response, mappings: Mapping[str, PropertyMapping]) -> None:
    _set_json_cookie(
        response,
        PROPERTY_MAPPING_COOKIE,
        {workspace_id: mapping.to_json() for workspace_id, mapping in mappings.items()},
    )


def read_app_credentials(
    cookies: Mapping[str, str],
    fallback: Optional[OAuthAppSettings] = None,
) -> Optional[OAuthAppSettings]:
    """
    Cookie に保存された OAuth アプリ情報を返す。無い / 不完全なら fallback（環境変数）。
    """
    parsed = _load_json(cookies, APP_CREDENTIALS_COOKIE)
    if isinstance(parsed, dict):
        client_id = parsed.get("clientId")
        client_secret = parsed.get("clientSecret")
        redirect_uri = parsed.get("redirectUri")
        if client_id and client_secret and redirect_uri:
            return OAuthAppSettings(
                client_id=client_id,
                client_secret=client_secret,
                redirect_uri=redirect_uri,
            )
    return fallback


def write_app_credentials(response: Response, credentials: OAuthAppSettings) -> None:
    _set_json_cookie(
        response,
        APP_CREDENTIALS_COOKIE,
        {
            "clientId": credentials.client_id,
            "clientSecret": credentials.client_secret,
            "redirectUri": credentials.redirect_uri,
        },
    )


def write_oauth_state(response: Response, state: str) -> None:
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
    )


def clear_oauth_state(response: Response) -> None:
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/")
