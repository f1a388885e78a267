# backend/app/connections/__init__.py

"""
ワークスペース接続の管理（Cookie ストア・トークン登録・OAuth）。
"""
