"""arq worker settings module.

Import path for arq CLI: arq provelt.workers.settings.WorkerSettings
"""

from __future__ import annotations

from provelt.workers.reconcile import WorkerSettings

__all__ = ["WorkerSettings"]
