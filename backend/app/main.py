# backend/app/main.py

"""
バックエンドアプリケーションのエントリーポイント。

- /notion/tasks, /notion/people: 複数ワークスペースの統合ワークロード
- /notion/connections ほか: 接続・マッピング・OAuth の管理
"""

from fastapi import FastAPI

from app.connections.router import role_router
from app.connections.router import router as connections_router
from app.workload.router import router as workload_router


def create_app() -> FastAPI:
    """
    FastAPI アプリケーションファクトリ。

    - ワークロード集計エンドポイント (/notion/tasks, /notion/people)
    - 接続管理エンドポイント (/notion/connections など, /role/verify)
    - ヘルスチェックエンドポイント (/health)
    """
    app = FastAPI(title="Notion Workload Dashboard Backend")

    # ルーター登録
    app.include_router(workload_router)
    app.include_router(connections_router)
    app.include_router(role_router)

    @app.get("/health", tags=["health"])
    def health_check() -> dict:
        """
        簡易ヘルスチェックエンドポイント。
        モニタリングや動作確認用。
        """
        return {"status": "ok"}

    return app


# uvicorn 実行時のエントリーポイント
app = create_app()
