# backend/app/workload/router.py

"""
ワークロード集計用の FastAPI ルーター定義。

- /notion/tasks   全ワークスペースの統合タスク一覧
- /notion/people  担当者ごとの集計と負荷区分
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.connections import store
from app.notion.config import get_shared_connection_settings

from .config import get_failure_mode
from .schemas import FailureMode, PeopleResponse, TasksResponse
from .service import WorkloadService

router = APIRouter(prefix="/notion", tags=["workload"])


# テスト時に FastAPI dependency_overrides で差し替え可能にする
def get_workload_service() -> WorkloadService:
    return WorkloadService(
        shared=get_shared_connection_settings(),
        failure_mode=get_failure_mode(),
    )


@router.get(
    "/tasks",
    response_model=TasksResponse,
    summary="統合タスク一覧",
    description="Cookie に保存された全ワークスペースのタスク DB を集約して返す。",
)
def get_tasks(
    request: Request,
    failure_mode: Optional[FailureMode] = Query(
        None,
        alias="failureMode",
        description="all_or_nothing / isolated（未指定ならサーバ設定）",
    ),
    service: WorkloadService = Depends(get_workload_service),
) -> JSONResponse:
    """
    - 接続が無い場合は 400 と {ok: false, message, tasks: []}
    - クエリ失敗時は Notion のメッセージをそのまま返す
    """
    result = service.get_tasks(
        store.read_connections(request.cookies),
        store.read_mappings(request.cookies),
        failure_mode=failure_mode,
    )
    return JSONResponse(
        status_code=result.status_code,
        content=result.model_dump(mode="json", by_alias=True),
    )


@router.get(
    "/people",
    response_model=PeopleResponse,
    summary="担当者ごとのワークロード",
    description="統合タスクを担当者ごとにまとめ、件数から light / balanced / heavy を付ける。",
)
def get_people(
    request: Request,
    failure_mode: Optional[FailureMode] = Query(None, alias="failureMode"),
    service: WorkloadService = Depends(get_workload_service),
) -> JSONResponse:
    result = service.get_people(
        store.read_connections(request.cookies),
        store.read_mappings(request.cookies),
        failure_mode=failure_mode,
    )
    return JSONResponse(
        status_code=result.status_code,
        content=result.model_dump(mode="json", by_alias=True),
    )
