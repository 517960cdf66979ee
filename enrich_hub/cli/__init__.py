# enrich_hub/cli/__init__.py
"""Enrich-Hub 命令行界面。"""
