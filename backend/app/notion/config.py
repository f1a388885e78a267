# backend/app/notion/config.py

"""
Notion 連携に必要な設定値をまとめるモジュール。

- API エンドポイント・バージョン・タイムアウト・並列数
- ゲスト閲覧用の共有クレデンシャル（任意）
- OAuth アプリのクレデンシャル（任意）
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from app.utils.config import get_env, get_env_int


@dataclass(frozen=True)
class NotionConfig:
    """Notion API 用の設定値コンテナ。"""

    api_base_url: str
    api_version: str
    timeout_seconds: float
    max_concurrency: int
    query_page_size: int


@dataclass(frozen=True)
class SharedConnectionSettings:
    """
    サーバ運営者が用意する共有（ゲスト用）クレデンシャル。

    NOTION_OWNER_ACCESS_TOKEN と NOTION_OWNER_DATABASE_ID の両方が
    設定されている場合のみ有効になる。
    """

    access_token: str
    database_id: str
    workspace_id: str = "shared-workspace"
    workspace_name: str = "Shared Notion Workspace"


@dataclass(frozen=True)
class OAuthAppSettings:
    """Notion OAuth アプリのクレデンシャル。"""

    client_id: str
    client_secret: str
    redirect_uri: str


@lru_cache()
def get_notion_config() -> NotionConfig:
    """
    環境変数から Notion 設定を読み込む。

    任意:
      - NOTION_API_BASE_URL    (デフォルト: https://api.notion.com/v1)
      - NOTION_API_VERSION     (デフォルト: 2022-06-28)
      - NOTION_TIMEOUT_SECONDS (デフォルト: 10)
      - NOTION_MAX_CONCURRENCY (デフォルト: 5)
      - NOTION_QUERY_PAGE_SIZE (デフォルト: 50)
    """
    api_base_url = get_env(
        "NOTION_API_BASE_URL",
        default="https://api.notion.com/v1",
        required=False,
    )
    api_version = get_env(
        "NOTION_API_VERSION",
        default="2022-06-28",
        required=False,
    )

    max_concurrency = get_env_int("NOTION_MAX_CONCURRENCY", default=5)
    if max_concurrency < 1:
        raise RuntimeError("NOTION_MAX_CONCURRENCY must be >= 1.")

    return NotionConfig(
        api_base_url=api_base_url.rstrip("/"),
        api_version=api_version,
        timeout_seconds=float(get_env_int("NOTION_TIMEOUT_SECONDS", default=10)),
        max_concurrency=max_concurrency,
        query_page_size=get_env_int("NOTION_QUERY_PAGE_SIZE", default=50),
    )


def get_shared_connection_settings() -> Optional[SharedConnectionSettings]:
    """
    共有クレデンシャルを環境変数から読み出す。未設定なら None。

    キャッシュしない（テストや運用中の切り替えで即時反映させるため）。
    """
    access_token = get_env("NOTION_OWNER_ACCESS_TOKEN", required=False)
    database_id = get_env("NOTION_OWNER_DATABASE_ID", required=False)
    if not access_token or not database_id:
        return None

    return SharedConnectionSettings(
        access_token=access_token,
        database_id=database_id,
        workspace_id=get_env(
            "NOTION_OWNER_WORKSPACE_ID",
            default="shared-workspace",
            required=False,
        ),
        workspace_name=get_env(
            "NOTION_OWNER_WORKSPACE_NAME",
            default="Shared Notion Workspace",
            required=False,
        ),
    )


def get_oauth_app_settings() -> Optional[OAuthAppSettings]:
    """
    環境変数に設定された OAuth アプリ情報を返す。3 つ揃っていなければ None。
    """
    client_id = get_env("NOTION_CLIENT_ID", required=False)
    client_secret = get_env("NOTION_CLIENT_SECRET", required=False)
    redirect_uri = get_env("NOTION_REDIRECT_URI", required=False)
    if not (client_id and client_secret and redirect_uri):
        return None

    return OAuthAppSettings(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
    )
