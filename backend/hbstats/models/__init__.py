from hbstats.models.target import Target
from hbstats.models.heartbeat import Heartbeat, HeartbeatStatus
from hbstats.models.summary import StatHourly, StatDaily
from hbstats.models.retention import RetentionPolicy

__all__ = [
    "Target",
    "Heartbeat", "HeartbeatStatus",
    "StatHourly", "StatDaily",
    "RetentionPolicy",
]
