# backend/app/workload/config.py

"""
ワークロード集計の設定値。
"""

from app.utils.config import get_env

from .schemas import FailureMode


def get_failure_mode() -> FailureMode:
    """
    WORKLOAD_FAILURE_MODE からワークスペース失敗時の扱いを読み出す。

    - all_or_nothing（デフォルト）: 1 件でも失敗したら全体を失敗にする
    - isolated: 失敗したワークスペースだけ除外して続行する
    """
    raw = get_env(
        "WORKLOAD_FAILURE_MODE",
        default=FailureMode.ALL_OR_NOTHING.value,
        required=False,
    )
    try:
        return FailureMode(raw.lower())
    except ValueError as exc:
        raise RuntimeError(
            f"Invalid WORKLOAD_FAILURE_MODE: {raw!r} "
            "(expected 'all_or_nothing' or 'isolated')"
        ) from exc
