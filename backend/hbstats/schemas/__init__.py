from hbstats.schemas.uptime import UptimeStats, UptimePoint, SummaryRowResponse
from hbstats.schemas.retention import RetentionPolicyUpdate, RetentionPolicyResponse
