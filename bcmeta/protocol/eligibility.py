"""
Load Eligibility Classifier.
Decides which discovered sub-forms need an explicit follow-up load.
"""

from typing import Protocol

from .form_tree import ControlNode, SubForm


class LoadEligibilityPolicy(Protocol):
    """Replaceable rule deciding whether a sub-form must be loaded."""

    def should_load(self, container: ControlNode, form: ControlNode) -> bool:
        ...


class DelayedControlsPolicy:
    """
    Load iff the container is not explicitly hidden and either the form
    defers its controls or the container carries expression properties.

    Derived from captured traffic of one server version. Captured fixtures
    under tests/fixtures are the regression anchors for this rule.
    """

    def should_load(self, container: ControlNode, form: ControlNode) -> bool:
        if container.properties.get("Visible") is False:
            return False
        return form.has_delayed_controls or container.has_expression_properties


default_policy = DelayedControlsPolicy()


def eligible_sub_forms(
    sub_forms: list[SubForm],
    policy: LoadEligibilityPolicy | None = None
) -> list[SubForm]:
    """Filter sub-forms through a policy, keeping discovery order."""
    policy = policy or default_policy
    return [s for s in sub_forms if policy.should_load(s.container, s.form)]
