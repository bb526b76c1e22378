"""Pydantic configuration models for provisioning plans."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class Action(StrEnum):
    """What a step does to its resource."""

    CREATE_OR_UPDATE = "create_or_update"
    READ = "read"
    DELETE = "delete"


class ClientType(StrEnum):
    """Supported Resource API client implementations."""

    ARM = "arm"
    MEMORY = "memory"


StepId = Annotated[str, Field(pattern=r"^[a-zA-Z][a-zA-Z0-9_-]*$")]


class RunPolicy(BaseModel):
    """How a plan is executed and cleaned up."""

    tear_down_on_exit: bool = True
    # 0 means unbounded.
    parallelism: int = Field(default=0, ge=0)
    poll_timeout_seconds: float | None = Field(default=3600.0, gt=0)
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=5, ge=1)
    retry_initial_wait_seconds: float = Field(default=1.0, gt=0)
    retry_max_wait_seconds: float = Field(default=60.0, gt=0)
    jitter: bool = True


class ClientConfig(BaseModel):
    """Resource API client settings.

    ``subscription_id`` and ``access_token`` are normally injected from the
    environment (``AZURE_SUBSCRIPTION_ID`` / ``AZURE_ACCESS_TOKEN``) through
    ``${VAR}`` references in the packaged defaults.
    """

    client_type: ClientType = ClientType.ARM
    endpoint: str = "https://management.azure.com"
    subscription_id: str | None = None
    access_token: SecretStr | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    default_api_version: str = "2021-04-01"
    # In-memory control plane only: Running polls before an operation succeeds.
    simulated_polls: int = Field(default=1, ge=0)

    @field_validator("subscription_id", mode="before")
    @classmethod
    def blank_subscription_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("access_token", mode="before")
    @classmethod
    def blank_token_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class StepConfig(BaseModel, extra="forbid"):
    """Declaration of a single resource step.

    Dependencies are the union of ``depends_on``, ``parent`` and every
    ``{"$ref": "<step_id>.<path>"}`` value found in ``payload``.
    """

    step_id: StepId
    kind: str = Field(min_length=1)
    name: str = Field(min_length=1)
    action: Action = Action.CREATE_OR_UPDATE
    parent: StepId | None = None
    depends_on: list[StepId] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    api_version: str | None = None
    delete_on_teardown: bool = True

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        """Kinds are ``<Namespace>/<type>[/<child type>...]``."""
        parts = v.split("/")
        if len(parts) < 2 or not all(parts):
            msg = (
                f"kind '{v}' must look like 'Microsoft.EventHub/namespaces' "
                f"(namespace followed by one or more resource types)"
            )
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_self_reference(self) -> Self:
        if self.parent == self.step_id or self.step_id in self.depends_on:
            msg = f"step '{self.step_id}' cannot depend on itself"
            raise ValueError(msg)
        return self


class PlanConfig(BaseModel, extra="forbid"):
    """A complete provisioning plan: steps, execution policy and client."""

    plan_id: StepId
    # Injected into top-level create payloads that do not set their own.
    location: str | None = None
    steps: list[StepConfig] = Field(min_length=1)
    policy: RunPolicy = RunPolicy()
    client: ClientConfig = ClientConfig()

    @model_validator(mode="after")
    def check_unique_step_ids(self) -> Self:
        seen: set[str] = set()
        for step in self.steps:
            if step.step_id in seen:
                msg = f"duplicate step_id '{step.step_id}'"
                raise ValueError(msg)
            seen.add(step.step_id)
        return self
