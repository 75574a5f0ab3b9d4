"""Shared constants for the stepwise engine."""

GENERIC_PACK_KEY = "generic"

DEFAULT_EDITABLE_FIELDS = ("name", "description", "steps")
PATCHABLE_FIELDS = frozenset({"name", "description", "steps"})
REQUIRED_PATCH_FIELDS = frozenset({"name", "steps"})

DEFAULT_APPROVAL_STEP_TYPES = ("approval_step",)

DEFAULT_EVENTS_KEY = "stepwise:events"
DEFAULT_EMIT_TIMEOUT = 5.0
