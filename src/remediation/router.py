"""Finding router: exact-match routing of findings to delivery sinks.

Each ``RoutingRule`` names one source and one finding type. A finding that
matches a rule is delivered to every sink bound to that rule. The same rule
objects render the EventBridge patterns used by the deployed stack, so the
in-process router and the infrastructure cannot drift apart.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

logger = logging.getLogger(__name__)

Sink = Callable[[Dict[str, Any]], Any]


@dataclass(frozen=True)
class RoutingRule:
    """Declarative match rule: required source and required finding type."""
    name: str
    source: str
    finding_type: str
    sinks: Tuple[str, ...] = ("notification",)
    # Action targets an operator is offered for findings matched by this rule
    actions: Tuple[str, ...] = ()
    description: str = ""

    def matches(self, event: Mapping[str, Any]) -> bool:
        detail = event.get("detail") or {}
        return event.get("source") == self.source and detail.get("type") == self.finding_type

    def event_pattern(self) -> Dict[str, Any]:
        """EventBridge pattern equivalent to ``matches``."""
        return {"source": [self.source], "detail": {"type": [self.finding_type]}}


@dataclass
class Delivery:
    """Record of one payload handed to one sink."""
    rule: str
    sink: str
    delivered: bool
    result: Any = None
    error: str | None = None


@dataclass
class FindingRouter:
    """Evaluates routing rules against incoming events and fans out matches."""
    rules: Sequence[RoutingRule]
    sinks: Dict[str, Sink] = field(default_factory=dict)

    def matching_rules(self, event: Mapping[str, Any]) -> List[RoutingRule]:
        return [rule for rule in self.rules if rule.matches(event)]

    def route(self, event: Dict[str, Any]) -> List[Delivery]:
        """Deliver ``event`` to every sink of every matching rule.

        Sink failures are logged and recorded on the returned delivery; they
        never prevent delivery to the remaining sinks.
        """
        deliveries: List[Delivery] = []
        for rule in self.matching_rules(event):
            for sink_name in rule.sinks:
                sink = self.sinks.get(sink_name)
                if sink is None:
                    logger.warning(f"Rule {rule.name} targets unknown sink '{sink_name}'")
                    deliveries.append(Delivery(rule.name, sink_name, False, error="unknown sink"))
                    continue
                try:
                    result = sink(event)
                    # Sinks that swallow their own errors report them by returning False
                    deliveries.append(Delivery(rule.name, sink_name, result is not False, result=result))
                except Exception as e:
                    logger.error(f"Delivery of rule {rule.name} to sink {sink_name} failed: {str(e)}")
                    deliveries.append(Delivery(rule.name, sink_name, False, error=str(e)))

        if not deliveries:
            logger.info("Event matched no routing rule")
        return deliveries
