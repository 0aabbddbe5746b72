"""
Prevention Rules
================

Turns diagnoses into standing prevention rules.

Rules are merged by (trigger, condition): a recurring diagnosis strengthens the
existing rule instead of adding a duplicate. Concrete enforcement belongs to
the host, which can pass an apply hook; each rule id is handed to that hook at
most once.
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from selfcorrect.models import Activity, Diagnosis, PreventionRule, generate_id, utc_now_iso
from selfcorrect.store import LearningStore

logger = logging.getLogger(__name__)

ApplyHook = Callable[[PreventionRule], Union[None, Awaitable[None]]]

EFFECTIVENESS_WEIGHT = 0.2


class PreventionRuleGenerator:
    """Generates, applies and scores prevention rules."""

    def __init__(self, store: LearningStore, apply_hook: Optional[ApplyHook] = None):
        self.store = store
        self.apply_hook = apply_hook

    async def generate(self, activity: Activity, diagnosis: Diagnosis) -> PreventionRule:
        """Create or strengthen the rule for this diagnosis and persist it."""
        await self.store.reload()
        rule = self.store.find_prevention_rule(activity.type.value, diagnosis.root_cause)
        if rule is None:
            rule = PreventionRule(
                id=generate_id("rule"),
                trigger=activity.type.value,
                condition=diagnosis.root_cause,
                confidence=diagnosis.confidence,
                created=utc_now_iso(),
            )
        else:
            rule.occurrences += 1
            rule.confidence = max(rule.confidence, diagnosis.confidence)

        await self.store.save_prevention_rule(rule)
        await self.apply_prevention_rule(rule)

        self.store.log_correction(
            "prevention_rule",
            f"Generated prevention rule for {diagnosis.description}",
            diagnosis.confidence,
        )
        return rule

    async def apply_prevention_rule(self, rule: PreventionRule) -> bool:
        """
        Hand a rule to the host hook.

        Returns False when the rule was already applied, so re-running never
        duplicates its effect.
        """
        if rule.applied:
            return False

        if self.apply_hook is None:
            logger.debug("No prevention hook installed; recording intent for %s", rule.id)
        else:
            result = self.apply_hook(rule)
            if inspect.isawaitable(result):
                await result

        rule.applied = True
        await self.store.save_prevention_rule(rule)
        return True

    async def record_outcome(self, rule_id: str, success: bool) -> Optional[PreventionRule]:
        """Update a rule's effectiveness from an observed outcome."""
        await self.store.reload()
        rule = self.store.get_prevention_rule(rule_id)
        if rule is None:
            return None

        outcome = "success" if success else "failure"
        rule.outcomes[outcome] = rule.outcomes.get(outcome, 0) + 1
        target = 1.0 if success else 0.0
        rule.effectiveness = (1 - EFFECTIVENESS_WEIGHT) * rule.effectiveness + EFFECTIVENESS_WEIGHT * target

        await self.store.save_prevention_rule(rule)
        return rule
