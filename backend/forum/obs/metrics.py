"""Central registry for Prometheus metrics used by the moderation backend."""

from __future__ import annotations

from prometheus_client import Counter

MODERATION_ACTIONS = Counter(
	"forum_moderation_actions_total",
	"Privileged moderation mutations committed",
	["action"],
)

MODERATION_DENIED = Counter(
	"forum_moderation_denied_total",
	"Moderation requests rejected by the permission evaluator",
	["check"],
)

MODERATION_CONFLICTS = Counter(
	"forum_moderation_conflicts_total",
	"Moderation mutations rejected because the record already changed state",
	["entity"],
)

REPORTS_CREATED = Counter(
	"forum_reports_created_total",
	"Reports filed by members",
	["target"],
)

PENDING_COUNT_CACHE = Counter(
	"forum_pending_count_cache_total",
	"Pending report badge cache lookups",
	["result"],
)
