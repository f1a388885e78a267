# backend/app/notion/client.py

"""
Notion API との通信を担当するクライアントモジュール。

1 つのアクセストークン（= 1 ワークスペース接続）ごとにインスタンスを作る。
"""

import base64
from typing import Any, Dict, List, Optional

import httpx

from .config import NotionConfig, get_notion_config


class NotionClientError(RuntimeError):
    """Notion クライアント全般の例外（通信失敗など）。"""


class NotionAPIError(NotionClientError):
    """
    Notion API が 2xx 以外を返した場合の例外。

    message には Notion 側のエラーメッセージをそのまま入れる（翻訳しない）。
    """

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotionAuthError(NotionAPIError):
    """認証・権限関連のエラー（401 / 403）。"""


# 2xx だが中身が想定外の形だった場合に使うステータス
MALFORMED_RESPONSE_STATUS = 502


def _error_message(response: httpx.Response, fallback: str) -> str:
    """
    エラーレスポンスから Notion のメッセージを取り出す。
    JSON でない / message が無い場合は fallback を返す。
    """
    try:
        payload = response.json()
    except ValueError:
        return fallback

    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


def _raise_for_status(response: httpx.Response, fallback: str) -> None:
    """
    HTTP レスポンスコードに応じて適切な例外を投げる。
    """
    if response.status_code < 400:
        return

    message = _error_message(
        response, f"{fallback} (status={response.status_code})"
    )
    if response.status_code in (401, 403):
        raise NotionAuthError(message, response.status_code)
    raise NotionAPIError(message, response.status_code)


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise NotionAPIError(
            "Unexpected Notion API response format: body is not JSON.",
            MALFORMED_RESPONSE_STATUS,
        ) from exc
    if not isinstance(data, dict):
        raise NotionAPIError(
            "Unexpected Notion API response format: body is not an object.",
            MALFORMED_RESPONSE_STATUS,
        )
    return data


class NotionClient:
    """
    Notion API の薄いラッパークライアント。

    - データベースの query（1 ページのみ）
    - ページ 1 件の取得（リレーション先タイトル解決用）
    - データベース一覧（search）・スキーマ取得
    - トークンに紐づく bot / ワークスペース情報の取得
    """

    def __init__(
        self,
        access_token: str,
        config: Optional[NotionConfig] = None,
    ) -> None:
        self.config = config or get_notion_config()
        self._access_token = access_token

    @property
    def timeout(self) -> float:
        return self.config.timeout_seconds

    def _build_headers(self) -> Dict[str, str]:
        """
        Notion API 呼び出しに必要なヘッダーを構築。
        """
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Notion-Version": self.config.api_version,
            "Content-Type": "application/json",
        }

    def _get(self, path: str, failure: str) -> Dict[str, Any]:
        url = f"{self.config.api_base_url}{path}"
        try:
            response = httpx.get(
                url,
                headers=self._build_headers(),
                timeout=self.timeout,
            )
        except httpx.RequestError as exc:
            raise NotionClientError(f"{failure}: {exc}") from exc

        _raise_for_status(response, failure)
        return _json_object(response)

    def _post(self, path: str, payload: Dict[str, Any], failure: str) -> Dict[str, Any]:
        url = f"{self.config.api_base_url}{path}"
        try:
            response = httpx.post(
                url,
                headers=self._build_headers(),
                json=payload,
                timeout=self.timeout,
            )
        except httpx.RequestError as exc:
            raise NotionClientError(f"{failure}: {exc}") from exc

        _raise_for_status(response, failure)
        return _json_object(response)

    def query_database(
        self,
        database_id: str,
        page_size: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        データベースの行を最終編集日時の降順で 1 ページ分だけ取得する。

        返り値は Notion API の生のページオブジェクトのリスト。
        """
        payload: Dict[str, Any] = {
            "page_size": page_size or self.config.query_page_size,
            "sorts": [{"timestamp": "last_edited_time", "direction": "descending"}],
        }
        data = self._post(
            f"/databases/{database_id}/query",
            payload,
            "Failed to query Notion database",
        )

        results = data.get("results", [])
        if not isinstance(results, list):
            raise NotionAPIError(
                "Unexpected Notion API response format: 'results' is not a list.",
                MALFORMED_RESPONSE_STATUS,
            )
        return results

    def retrieve_page(self, page_id: str) -> Dict[str, Any]:
        """ページ 1 件を取得する。"""
        return self._get(f"/pages/{page_id}", "Failed to fetch Notion page")

    def retrieve_database(self, database_id: str) -> Dict[str, Any]:
        """データベースのスキーマ（properties）を取得する。"""
        return self._get(
            f"/databases/{database_id}", "Failed to fetch properties"
        )

    def search_databases(self, page_size: int = 100) -> List[Dict[str, Any]]:
        """
        トークンから参照可能なデータベースを一覧する。
        """
        data = self._post(
            "/search",
            {
                "filter": {"property": "object", "value": "database"},
                "page_size": page_size,
            },
            "Failed to list databases",
        )
        results = data.get("results", [])
        return results if isinstance(results, list) else []

    def get_me(self) -> Dict[str, Any]:
        """トークンに紐づく bot ユーザー情報を取得する。"""
        return self._get("/users/me", "Failed to resolve workspace identity")


def exchange_oauth_code(
    code: str,
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    config: Optional[NotionConfig] = None,
) -> Dict[str, Any]:
    """
    OAuth の authorization code をアクセストークンに交換する。

    Bearer ではなく Basic 認証（client_id:client_secret）を使う。
    返り値は {access_token, workspace_id, workspace_name, bot_id, ...}。
    """
    config = config or get_notion_config()
    basic = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode(
        "ascii"
    )

    try:
        response = httpx.post(
            f"{config.api_base_url}/oauth/token",
            headers={
                "Authorization": f"Basic {basic}",
                "Content-Type": "application/json",
                "Notion-Version": config.api_version,
            },
            json={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            timeout=config.timeout_seconds,
        )
    except httpx.RequestError as exc:
        raise NotionClientError(f"Failed to exchange code: {exc}") from exc

    if response.status_code >= 400:
        raise NotionAPIError(
            _error_message(response, "Failed to exchange code"),
            response.status_code,
        )
    return _json_object(response)
