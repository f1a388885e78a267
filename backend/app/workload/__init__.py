# backend/app/workload/__init__.py

"""
複数ワークスペースのタスク集約モジュール群。

主な責務:
- スキーマがバラバラな Notion の行を統一形の Task に正規化する
- リレーション列の参照先タイトルを一括解決する
- 担当者ごとに集計し、負荷区分（light / balanced / heavy）を付ける
"""
