from enum import Enum


class INSTALL_STATUS(Enum):
    in_progress = (0, "Installing")
    success = (1, "Installed")
    failed = (99, "Failed")  # failures sort last

    def __init__(self, order, label):
        self.order = order
        self.label = label

    @property
    def value(self):
        return self.name


class EXECUTION_MODE(Enum):
    local = "local"
    ssh = "ssh"


class AUTH_TYPE(Enum):
    password = "password"
    key = "key"


class BACKUP_STORAGE_TYPE(Enum):
    local = "local"
    storage = "storage"
    pbs = "pbs"


# Predefined auto-sync intervals -> cron expressions
SYNC_INTERVALS = {
    "15min": "*/15 * * * *",
    "30min": "*/30 * * * *",
    "1hour": "0 * * * *",
    "6hours": "0 */6 * * *",
    "12hours": "0 */12 * * *",
    "24hours": "0 0 * * *",
}
DEFAULT_SYNC_INTERVAL = "1hour"

DEFAULT_REPO_URL = "https://github.com/community-scripts/ProxmoxVE"
# Tag the upstream framework writes into every LXC config it creates
COMMUNITY_SCRIPT_TAG = "community-script"
