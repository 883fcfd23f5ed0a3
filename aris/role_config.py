from __future__ import annotations

import os
from enum import StrEnum
from typing import TypedDict


class Role(StrEnum):
    DESIGNER = "designer"
    PLANNER = "planner"
    UI_SPECIALIST = "ui-specialist"
    IMPLEMENTER = "implementer"
    EXECUTOR = "executor"
    REVIEWER = "reviewer"


class RoleConfig(TypedDict, total=False):
    description: str
    capabilities: list[str]
    timeout_override: float | None


DEFAULT_ROLE_CONFIG: dict[str, RoleConfig] = {
    "designer": {
        "description": "Produces architecture blueprints and API contracts",
        "capabilities": ["blueprint", "architecture", "api-design"],
    },
    "planner": {
        "description": "Breaks designs into milestones and tracks progress",
        "capabilities": ["plan", "milestones", "resource-allocation"],
    },
    "ui-specialist": {
        "description": "Designs interfaces, components and responsive layouts",
        "capabilities": ["ui", "component-design", "layout"],
    },
    "implementer": {
        "description": "Generates and edits code from approved designs",
        "capabilities": ["code-generation", "edit"],
    },
    "executor": {
        "description": "Builds, tests, deploys and monitors projects",
        "capabilities": ["build", "deploy", "monitor"],
    },
    "reviewer": {
        "description": "Audits code for quality, security and learned rules",
        "capabilities": ["audit", "lint-check", "security-scan", "compliance-check"],
    },
}


def get_env_keys(role: str) -> dict[str, str]:
    role_upper = role.upper().replace("-", "_")
    return {
        "timeout_override": f"ROLE_{role_upper}_TIMEOUT",
        "capabilities": f"ROLE_{role_upper}_CAPABILITIES",
    }


def get_role_from_env(role: str) -> RoleConfig:
    result = RoleConfig()
    for key, env_key in get_env_keys(role).items():
        value = os.getenv(env_key)
        if not value:
            continue
        if key == "timeout_override":
            result["timeout_override"] = float(value)
        else:
            result["capabilities"] = [tag.strip() for tag in value.split(",") if tag.strip()]
    return result


def resolve_role(role: str) -> RoleConfig:
    """Merge the built-in role config with environment overrides.

    Unknown roles resolve to an empty config so custom Worker roles work
    without being declared here.
    """
    default_config = DEFAULT_ROLE_CONFIG.get(str(role), {})
    merged_config = RoleConfig(**default_config)
    merged_config.update(get_role_from_env(str(role)))
    return merged_config
