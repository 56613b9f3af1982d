"""Shared constants for MCP tool handlers."""

# JSON schema of the synchronization id parameter, shared by every tool
# that addresses one synchronization.
SYNCHRONIZATION_ID_SCHEMA = {
    "type": "string",
    "description": "Id of a configured synchronization",
}

# Mutation types accepted by sync_reconcile_object.
MUTATION_TYPES = ["create", "update", "delete"]
