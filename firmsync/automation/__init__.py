# firmsync/automation/__init__.py
"""
Автоматизация FirmSync.

Хост-приложение работает через firmsync.automation.runtime:
  ensure_automation_started() → process_trigger() / trigger_*() → stop_automation()
"""
