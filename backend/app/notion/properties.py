# backend/app/notion/properties.py

"""
Notion のプロパティ値（1 セル分の生 JSON）から値を取り出す純粋関数群。

どのデータベースのどの列かは知らない。形が想定と違う場合は例外を投げず、
空文字 / 空リスト / None を返す（外部スキーマはユーザーごとにバラバラなため）。
"""

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

Number = Union[int, float]
NumberOrText = Union[int, float, str]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _parse_number(text: str) -> Optional[Number]:
    """
    文字列を数値として解釈する。有限値でなければ None。
    """
    try:
        number = float(text)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _number_or_text(text: str) -> Optional[NumberOrText]:
    text = text.strip()
    if not text:
        return None
    number = _parse_number(text)
    return text if number is None else number


def format_number(value: Number) -> str:
    """数値を表示用文字列にする（3.0 -> "3"）。"""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def plain_text_from(prop: Any, container_key: str = "rich_text") -> str:
    """
    title / rich_text 配列の plain_text を連結して trim したものを返す。

    :param container_key: "title" または "rich_text"
    """
    items = _as_dict(prop).get(container_key)
    if not isinstance(items, list):
        return ""

    parts = []
    for item in items:
        text = _as_dict(item).get("plain_text")
        parts.append(text if isinstance(text, str) else "")
    return "".join(parts).strip()


def select_label(prop: Any) -> str:
    """
    status / select の name を返す。両方ある場合は status を優先。
    """
    data = _as_dict(prop)
    for key in ("status", "select"):
        name = _as_dict(data.get(key)).get("name")
        if isinstance(name, str) and name:
            return name
    return ""


def relation_ids(prop: Any) -> List[str]:
    """relation プロパティが参照しているページ ID の一覧。"""
    relation = _as_dict(prop).get("relation")
    if not isinstance(relation, list):
        return []

    ids = []
    for entry in relation:
        entry_id = _as_dict(entry).get("id")
        if isinstance(entry_id, str) and entry_id:
            ids.append(entry_id)
    return ids


def relation_display_names(prop: Any) -> List[str]:
    """
    relation の表示名一覧を返す。

    - relation: 各要素の name（無ければ id）
    - rollup: array 内の title 型要素のタイトル文字列
    """
    data = _as_dict(prop)

    relation = data.get("relation")
    if isinstance(relation, list):
        names = []
        for entry in relation:
            entry = _as_dict(entry)
            name = entry.get("name") or entry.get("id")
            if isinstance(name, str) and name:
                names.append(name)
        return names

    array = _as_dict(data.get("rollup")).get("array")
    if isinstance(array, list):
        titles = (plain_text_from(item, "title") for item in array)
        return [title for title in titles if title]

    return []


def numeric_value(prop: Any) -> Optional[NumberOrText]:
    """
    number / rollup / formula / rich_text から見積もり値を取り出す。

    数値として解釈できないテキストはテキストのまま返す。何も無ければ None。
    """
    data = _as_dict(prop)

    if "number" in data:
        value = data.get("number")
        return value if _is_number(value) else None

    rollup = data.get("rollup")
    if isinstance(rollup, dict):
        if _is_number(rollup.get("number")):
            return rollup["number"]
        array = rollup.get("array")
        if isinstance(array, list):
            for item in array:
                if _is_number(_as_dict(item).get("number")):
                    return item["number"]
            for item in array:
                if isinstance(_as_dict(item).get("rich_text"), list):
                    return _number_or_text(plain_text_from(item, "rich_text"))

    formula = data.get("formula")
    if isinstance(formula, dict):
        if _is_number(formula.get("number")):
            return formula["number"]
        text = formula.get("string")
        if isinstance(text, str) and text.strip():
            number = _parse_number(text)
            return text if number is None else number

    if isinstance(data.get("rich_text"), list):
        return _number_or_text(plain_text_from(data, "rich_text"))

    return None


def generic_text_or_number(prop: Any) -> Optional[str]:
    """
    formula / select / title / rich_text / string のどれでもよい列から文字列を取り出す。
    最初に空でない値が見つかったものを返す。
    """
    data = _as_dict(prop)
    if not data:
        return None

    formula = data.get("formula")
    if isinstance(formula, dict):
        if isinstance(formula.get("string"), str) and formula["string"]:
            return formula["string"]
        if _is_number(formula.get("number")):
            return format_number(formula["number"])

    label = select_label(data)
    if label:
        return label

    text = plain_text_from(data, "title") or plain_text_from(data, "rich_text")
    if text:
        return text

    raw = data.get("string")
    if isinstance(raw, str) and raw:
        return raw
    return None


def date_start(prop: Any) -> Optional[str]:
    """date プロパティの start（ISO 文字列）をそのまま返す。"""
    start = _as_dict(_as_dict(prop).get("date")).get("start")
    return start if isinstance(start, str) and start else None


def first_select_or_multi_select(prop: Any) -> Optional[str]:
    """select の name、無ければ multi_select 先頭の name。"""
    data = _as_dict(prop)
    name = _as_dict(data.get("select")).get("name")
    if isinstance(name, str) and name:
        return name

    options = data.get("multi_select")
    if isinstance(options, list) and options:
        name = _as_dict(options[0]).get("name")
        if isinstance(name, str) and name:
            return name
    return None


def people_of(prop: Any) -> Optional[List[Dict[str, Any]]]:
    """
    people プロパティのユーザー一覧。people キー自体が無ければ None。

    空リストは「担当者なし」として None と区別する。
    """
    people = _as_dict(prop).get("people")
    if not isinstance(people, list):
        return None
    return [person for person in people if isinstance(person, dict)]


def first_title_property(properties: Any) -> str:
    """
    行の全プロパティを走査し、type == "title" の列からタイトルを取り出す。
    """
    if not isinstance(properties, Mapping):
        return ""

    for value in properties.values():
        if _as_dict(value).get("type") == "title":
            text = plain_text_from(value, "title")
            if text:
                return text
    return ""


def find_property_case_insensitive(
    properties: Any,
    candidates: Iterable[Optional[str]],
) -> Optional[Any]:
    """
    プロパティ名を大文字小文字を無視して探し、最初に見つかった値を返す。
    """
    if not isinstance(properties, Mapping):
        return None

    lowered = {}
    for key in properties:
        if isinstance(key, str):
            lowered.setdefault(key.lower(), key)

    for candidate in candidates:
        if not candidate:
            continue
        hit = lowered.get(candidate.lower())
        if hit is not None:
            return properties[hit]
    return None
