# backend/app/workload/fields.py

"""
セマンティックフィールド（status / sprint など）ごとの値解決。

解決順はフィールドごとの FieldRule（設定テーブル）で決まる:

1. （project / sprint のみ）リレーション先タイトルの解決結果
2. ユーザーのマッピングで指定されたプロパティ
3. 慣例名のプロパティ（上から順に）
4. （plannedEstimate のみ）大文字小文字を無視した名前一致
5. 行全体からのフォールバック（title のみ: type == "title" の列）
6. フィールドごとのデフォルト値

慣例名を増やすときは FIELD_RULES のタプルに追加するだけでよい。
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from app.notion.properties import (
    date_start,
    find_property_case_insensitive,
    first_title_property,
    generic_text_or_number,
    numeric_value,
    plain_text_from,
    relation_display_names,
    relation_ids,
    select_label,
)

Extractor = Callable[[Any], Any]
RowFallback = Callable[[Mapping[str, Any]], Any]


def _title_text(prop: Any) -> str:
    return plain_text_from(prop, "title") or plain_text_from(prop, "rich_text")


def _rich_text(prop: Any) -> str:
    return plain_text_from(prop, "rich_text")


def _relation_name_or_text(prop: Any) -> str:
    names = relation_display_names(prop)
    return names[0] if names else plain_text_from(prop, "rich_text")


def _estimate(prop: Any) -> Any:
    value = numeric_value(prop)
    return value if value is not None else generic_text_or_number(prop)


@dataclass(frozen=True)
class FieldRule:
    """1 つのセマンティックフィールドの解決ルール。"""

    field: str
    extractor: Extractor
    conventional_names: Tuple[str, ...] = ()
    default: Any = None
    case_insensitive: bool = False
    relation_lookup: bool = False
    row_fallback: Optional[RowFallback] = None


FIELD_RULES: Dict[str, FieldRule] = {
    rule.field: rule
    for rule in (
        FieldRule(
            "title",
            _title_text,
            ("Name", "Title", "Task"),
            default="Untitled task",
            row_fallback=first_title_property,
        ),
        FieldRule("task_id", _rich_text, ("Task ID", "TaskId", "ID")),
        FieldRule("status", select_label, ("Status",), default="Unknown"),
        # default はワークスペース名（行ごとに変わるため normalizer 側で渡す）
        FieldRule(
            "project",
            _relation_name_or_text,
            ("Project", "Project Name"),
            relation_lookup=True,
        ),
        FieldRule("due", date_start, ("Due", "Deadline", "ETA")),
        FieldRule(
            "status_details",
            _rich_text,
            ("Status Details", "Details", "Notes"),
        ),
        FieldRule(
            "sprint",
            _relation_name_or_text,
            ("Sprint", "Sprint Name"),
            default="No Sprint added",
            relation_lookup=True,
        ),
        FieldRule(
            "planned_estimate",
            _estimate,
            (
                "Planned Estimates",
                "Planned Estimate",
                "Estimate",
                "Estimation",
                "Points",
                "Story Points",
                "Effort",
                "Hours",
            ),
            case_insensitive=True,
        ),
        FieldRule("health", generic_text_or_number, ("Health", "Risk", "State")),
    )
}

# リレーション先タイトルを事前解決する対象フィールド
RELATION_FIELDS: Tuple[str, ...] = tuple(
    name for name, rule in FIELD_RULES.items() if rule.relation_lookup
)


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != []


def relation_property_name(field: str, mapping: Any = None) -> Optional[str]:
    """
    リレーション解決に使うプロパティ名（マッピング優先、無ければ先頭の慣例名）。
    """
    mapped = mapping.get(field) if mapping else None
    if mapped:
        return mapped
    names = FIELD_RULES[field].conventional_names
    return names[0] if names else None


def relation_title_for(prop: Any, relation_titles: Mapping[str, str]) -> Optional[str]:
    """relation が参照する ID のうち、タイトル解決済みの最初のものを返す。"""
    for page_id in relation_ids(prop):
        title = relation_titles.get(page_id)
        if title:
            return title
    return None


def _candidate_properties(
    properties: Mapping[str, Any],
    rule: FieldRule,
    mapped: Optional[str],
    names: Tuple[str, ...],
) -> Iterable[Any]:
    if mapped and mapped in properties:
        yield properties[mapped]
    for name in names:
        if name in properties:
            yield properties[name]
    if rule.case_insensitive:
        hit = find_property_case_insensitive(properties, (mapped, *names))
        if hit is not None:
            yield hit


def resolve_field(
    properties: Any,
    field: str,
    mapping: Any = None,
    conventional_names: Optional[List[str]] = None,
    *,
    relation_titles: Optional[Mapping[str, str]] = None,
    default: Any = None,
) -> Any:
    """
    1 つのセマンティックフィールドの値を解決する。

    :param properties: 行の properties（生 JSON）
    :param field: FIELD_RULES のキー（snake_case）
    :param mapping: PropertyMapping または同じキーを持つ dict
    :param conventional_names: 慣例名の上書き（None ならルールの既定）
    :param relation_titles: ページ ID -> タイトル（project / sprint 用）
    :param default: ルールの既定値を上書きするデフォルト値
    :return: 最初に見つかった空でない値。無ければデフォルト値
    """
    rule = FIELD_RULES[field]
    props: Mapping[str, Any] = properties if isinstance(properties, Mapping) else {}
    names = tuple(conventional_names) if conventional_names is not None else rule.conventional_names
    mapped = mapping.get(field) if mapping else None

    if rule.relation_lookup and relation_titles:
        source = mapped or (names[0] if names else None)
        if source:
            title = relation_title_for(props.get(source), relation_titles)
            if title:
                return title

    for prop in _candidate_properties(props, rule, mapped, names):
        value = rule.extractor(prop)
        if _present(value):
            return value

    if rule.row_fallback is not None:
        value = rule.row_fallback(props)
        if _present(value):
            return value

    return default if default is not None else rule.default
