# enrich_hub/providers/__init__.py
"""适配器插件包。`enrich_hub.registry.discover_providers` 会自动发现本包下的模块。"""
