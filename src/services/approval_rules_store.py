"""Redis-based store for per-agent approval rule overrides."""

import logging

from redis import Redis

from models.suggestion import AgentApprovalRule, ApprovalRules

logger = logging.getLogger(__name__)

ANY_TYPE = "*"


class RedisApprovalRulesStore:
    """Stores ApprovalRules per agent, optionally narrowed to one suggestion type."""

    def __init__(self, redis_client: Redis):
        if redis_client is None:
            raise ValueError("redis_client is required")
        self._redis = redis_client

    def _rule_key(self, agent_id: str, suggestion_type: str | None) -> str:
        return f"approval_rules:{agent_id}:{suggestion_type or ANY_TYPE}"

    def _index_key(self) -> str:
        return "approval_rules"

    def set_rule(self, rule: AgentApprovalRule) -> AgentApprovalRule:
        """Create or replace the rule for (agent, type)."""
        if rule is None:
            raise ValueError("rule is required")

        key = self._rule_key(rule.agent_id, rule.suggestion_type)
        self._redis.set(key, rule.model_dump_json())
        self._redis.sadd(self._index_key(), key)
        logger.info(
            f"Approval rules set for agent {rule.agent_id} "
            f"({rule.suggestion_type or 'all types'})"
        )
        return rule

    def get_rule(
        self, agent_id: str, suggestion_type: str | None = None
    ) -> AgentApprovalRule | None:
        """Exact rule for (agent, type), if stored."""
        if not agent_id:
            raise ValueError("agent_id is required")

        data = self._redis.get(self._rule_key(agent_id, suggestion_type))
        if data is None:
            return None
        return AgentApprovalRule.model_validate_json(data)

    def rules_for(
        self, agent_id: str | None, suggestion_type: str | None
    ) -> ApprovalRules | None:
        """Most specific rules for an agent: type-specific first, then agent-wide."""
        if not agent_id:
            return None

        if suggestion_type:
            rule = self.get_rule(agent_id, suggestion_type)
            if rule is not None:
                return rule.rules
        rule = self.get_rule(agent_id)
        return rule.rules if rule is not None else None

    def delete_rule(self, agent_id: str, suggestion_type: str | None = None) -> bool:
        """Remove the rule for (agent, type). Returns whether one existed."""
        key = self._rule_key(agent_id, suggestion_type)
        self._redis.srem(self._index_key(), key)
        return bool(self._redis.delete(key))

    def list_rules(self) -> list[AgentApprovalRule]:
        """All stored rules, ordered by agent then type."""
        rules = []
        for key in self._redis.smembers(self._index_key()):
            data = self._redis.get(key)
            if data is not None:
                rules.append(AgentApprovalRule.model_validate_json(data))
        return sorted(rules, key=lambda r: (r.agent_id, r.suggestion_type or ""))
