# backend/app/notion/__init__.py

"""
Notion 連携用モジュール群。

主な責務:
- Notion API（データベース query / ページ取得 / search / OAuth）の呼び出し
- 生のプロパティ値から型ごとの値を取り出す
- 接続情報・プロパティマッピングのスキーマ定義
"""
