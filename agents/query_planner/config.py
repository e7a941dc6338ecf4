"""
Configuration for the Query Planner Agent.

Required tool-input keys (with their accepted spellings) used by the plan
validator, and defaults applied when normalizing reasoning output.
"""

PLACEHOLDER_DESCRIPTION = "No description provided"
OUTPUT_VARIABLE_TEMPLATE = "step{n}"

ENTITY_KINDS = ("company", "employee")

# key -> accepted spellings, mirroring the tool input aliases
COLLECTION_KEYS = ("collection",)
PIPELINE_KEYS = ("pipeline",)
ENTITY_ID_KEYS = ("entityId", "entity_id", "companyId", "id")
PATH_KEYS = ("path", "jsonPath", "json_path")
ENTITY_KIND_KEYS = ("entityKind", "entity_kind", "entity", "entityType")
FIELDS_KEYS = ("fields",)
FILTER_KEYS = ("filter",)

# Keys a reasoning model may use instead of the canonical step keys
STEP_NUMBER_KEYS = ("stepNumber", "step", "step_number")
TOOL_INPUT_KEYS = ("toolInput", "input", "tool_input", "args")
