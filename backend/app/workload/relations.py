# backend/app/workload/relations.py

"""
project / sprint などのリレーション列が参照するページのタイトルを一括取得する。

1 ページ分のクエリ結果に含まれる参照先 ID を重複排除し、
上限付きのスレッドプールで並列に GET /pages/{id} する。
個々の取得失敗は結果から落とすだけで、集計全体は止めない。
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Iterable, List, Optional

from app.notion.client import NotionClient, NotionClientError
from app.notion.properties import first_title_property, plain_text_from, relation_ids

from .fields import RELATION_FIELDS, relation_property_name

logger = logging.getLogger(__name__)


def collect_relation_ids(rows: Iterable[Any], mapping: Any = None) -> List[str]:
    """
    全行のリレーション列（project / sprint）から参照先ページ ID を集める。

    出現順を保ったまま重複を除く。
    """
    prop_names = [
        name
        for name in (relation_property_name(field, mapping) for field in RELATION_FIELDS)
        if name
    ]

    seen: Dict[str, None] = {}
    for row in rows:
        properties = row.get("properties") if isinstance(row, dict) else None
        if not isinstance(properties, dict):
            continue
        for name in prop_names:
            for page_id in relation_ids(properties.get(name)):
                seen.setdefault(page_id, None)
    return list(seen)


def page_title(page: Any, fallback_id: str) -> str:
    """
    取得したページからタイトルを取り出す。

    Name -> Title -> type == "title" の列 -> ページ ID の順。
    """
    page = page if isinstance(page, dict) else {}
    properties = page.get("properties")
    properties = properties if isinstance(properties, dict) else {}

    return (
        plain_text_from(properties.get("Name"), "title")
        or plain_text_from(properties.get("Title"), "title")
        or first_title_property(properties)
        or (page.get("id") if isinstance(page.get("id"), str) else "")
        or fallback_id
    )


def resolve_relation_titles(
    rows: List[Any],
    client: NotionClient,
    mapping: Any = None,
    *,
    max_workers: Optional[int] = None,
) -> Dict[str, str]:
    """
    ページ ID -> タイトル の辞書を返す。

    - 参照が 1 件も無ければ API を呼ばずに空辞書を返す
    - 並列数は max_workers（未指定なら client の設定値）で制限する
    - 1 件ごとのタイムアウトは client の HTTP タイムアウトに従う
    """
    ids = collect_relation_ids(rows, mapping)
    if not ids:
        return {}

    workers = max(1, min(max_workers or client.config.max_concurrency, len(ids)))
    titles: Dict[str, str] = {}

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(client.retrieve_page, page_id): page_id for page_id in ids}
        for future in as_completed(futures):
            page_id = futures[future]
            try:
                page = future.result()
            except NotionClientError as exc:
                logger.warning(
                    "Failed to resolve relation title; falling back. page_id=%s error=%s",
                    page_id,
                    exc,
                )
                continue
            titles[page_id] = page_title(page, page_id)

    return titles
