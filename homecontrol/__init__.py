"""HomeControl - recurrence resolution and push delivery for family task coordination

Components:
    recurrence/: Next-occurrence resolution for (possibly recurring) tasks
    tasks/: Task document store and the occurrence sync hook
    mobile/: Quiet hours, push routing, the delivery queue and its worker

Configuration: args/push.yaml
Data: data/mobile.db, data/tasks.db
"""

from pathlib import Path

# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
ARGS_DIR = PROJECT_ROOT / "args"
DATA_PATH = PROJECT_ROOT / "data"

__all__ = ["PROJECT_ROOT", "ARGS_DIR", "DATA_PATH"]
